from __future__ import annotations

from dataclasses import dataclass
import logging
import math
from typing import Any, Dict, List, Optional

import requests


class GeocodingError(RuntimeError):
    """Raised when the city search request fails or returns unusable data."""


@dataclass(frozen=True)
class Place:
    name: str
    country: str
    state: str
    latitude: Optional[float]
    longitude: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "country": self.country,
            "state": self.state,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


_NAME_KEYS = ("city", "town", "village", "hamlet", "municipality", "county")


class GeocodingClient:
    def __init__(
        self,
        *,
        base_url: str,
        user_agent: str,
        timeout_seconds: int = 8,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._user_agent = user_agent
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._logger = logging.getLogger(self.__class__.__name__)

    def search(self, query: str, limit: int = 12) -> List[Place]:
        query = query.strip()
        if len(query) < 2:
            return []
        data = self._get(
            "/search",
            {"q": query, "format": "jsonv2", "addressdetails": "1", "limit": str(limit)},
        )
        places: List[Place] = []
        seen = set()
        for item in data:
            if not isinstance(item, dict):
                continue
            place = _place_from_item(item)
            if not place.name or not place.country:
                continue
            key = (place.name, place.country)
            if key in seen:
                continue
            seen.add(key)
            places.append(place)
        return places

    def _get(self, path: str, params: Dict[str, str]) -> List[Any]:
        url = f"{self._base_url}{path}"
        headers = {"Accept-Language": "en", "User-Agent": self._user_agent}
        try:
            resp = self._session.get(
                url, params=params, headers=headers, timeout=self._timeout_seconds
            )
        except requests.RequestException as exc:
            raise GeocodingError(f"Request failed for {url}: {exc}") from exc

        if resp.status_code != 200:
            self._logger.warning("City search failed: %s %s", resp.status_code, resp.text)
            raise GeocodingError(f"City search failed with status {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise GeocodingError("City search returned invalid JSON") from exc

        if not isinstance(data, list):
            raise GeocodingError("City search response must be a JSON array")
        return data


def _place_from_item(item: Dict[str, Any]) -> Place:
    address = item.get("address") or {}
    raw_name = next((address[key] for key in _NAME_KEYS if address.get(key)), None)
    raw_name = raw_name or item.get("name") or item.get("display_name") or ""
    return Place(
        name=str(raw_name).split(",")[0].strip(),
        country=address.get("country", ""),
        state=address.get("state") or address.get("region") or "",
        latitude=_finite(item.get("lat")),
        longitude=_finite(item.get("lon")),
    )


def _finite(value: Any) -> Optional[float]:
    if not isinstance(value, str):
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    return number if math.isfinite(number) else None

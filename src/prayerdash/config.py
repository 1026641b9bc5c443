from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from prayerdash.prayer_times import PRAYER_NAMES, is_valid_hhmm


class ConfigError(ValueError):
    """Raised when configuration loading or validation fails."""


@dataclass(frozen=True)
class LocationConfig:
    city: str
    country: str
    latitude: Optional[float]
    longitude: Optional[float]
    timezone: str


@dataclass(frozen=True)
class PrayerConfig:
    calculation_method: str
    madhab: str
    high_latitude_rule: str
    custom_times: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class GeocodingConfig:
    base_url: str
    user_agent: str
    timeout_seconds: int


@dataclass(frozen=True)
class ControlPanelAuthConfig:
    username: str
    password_hash: str


@dataclass(frozen=True)
class ControlPanelConfig:
    enabled: bool
    host: str
    port: int
    auth: ControlPanelAuthConfig


@dataclass(frozen=True)
class LoggingConfig:
    file_path: Optional[str]


@dataclass(frozen=True)
class AppConfig:
    location: LocationConfig
    prayer: PrayerConfig
    geocoding: GeocodingConfig
    control_panel: ControlPanelConfig
    logging: LoggingConfig


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return ``base`` with ``override`` laid on top; nested mappings merge."""
    result = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = _deep_merge(current, value)
        else:
            result[key] = value
    return result


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to read config file: {path}") from exc
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in config file: {path}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {path} must be a mapping")
    return data


def _optional_float(value: Any, name: str) -> Optional[float]:
    # Out-of-range coordinates are left for the engine to replace.
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number, got {value!r}") from exc


def _section(data: Dict[str, Any], name: str, *, required: bool = True) -> Dict[str, Any]:
    if name not in data:
        if required:
            raise ConfigError(f"Missing config section: {name}")
        return {}
    value = data[name] or {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section {name} must be a mapping")
    return value


def _location_config(data: Dict[str, Any]) -> LocationConfig:
    return LocationConfig(
        city=data.get("city", "London"),
        country=data.get("country", "United Kingdom"),
        latitude=_optional_float(data.get("latitude"), "latitude"),
        longitude=_optional_float(data.get("longitude"), "longitude"),
        timezone=data["timezone"],
    )


def _prayer_config(data: Dict[str, Any]) -> PrayerConfig:
    overrides = data.get("custom_times") or {}
    if not isinstance(overrides, dict):
        raise ConfigError("prayer.custom_times must be a mapping")
    return PrayerConfig(
        calculation_method=str(data.get("calculation_method", "MuslimWorldLeague")),
        madhab=str(data.get("madhab", "hanafi")),
        high_latitude_rule=str(data.get("high_latitude_rule", "angle_based")),
        custom_times={str(name): str(value) for name, value in overrides.items() if value},
    )


def _geocoding_config(data: Dict[str, Any]) -> GeocodingConfig:
    return GeocodingConfig(
        base_url=data["base_url"],
        user_agent=data["user_agent"],
        timeout_seconds=int(data.get("timeout_seconds", 8)),
    )


def _control_panel_config(data: Dict[str, Any]) -> ControlPanelConfig:
    credentials = data.get("auth") or {}
    return ControlPanelConfig(
        enabled=bool(data["enabled"]),
        host=data.get("host", "127.0.0.1"),
        port=int(data.get("port", 8080)),
        auth=ControlPanelAuthConfig(
            username=credentials.get("username") or "",
            password_hash=credentials.get("password_hash") or "",
        ),
    )


class ConfigLoader:
    """Reads ``config.yml``, then ``config.d/*.yml`` in name order, then
    ``secrets.yml``; later files win key by key.
    """

    def __init__(
        self, root_dir: Path | None = None, config_path: Path | None = None
    ) -> None:
        self._root_dir = root_dir
        self._config_path = config_path

    def load(self) -> AppConfig:
        merged: Dict[str, Any] = {}
        for layer in self._layers():
            merged = _deep_merge(merged, _load_yaml(layer))
        config = self._build_config(merged)
        self._validate(config)
        return config

    def _layers(self) -> List[Path]:
        base = self._config_path or self._resolve_root_dir() / "config.yml"
        if not base.exists():
            raise ConfigError(f"Missing base config file: {base}")
        directory = base.parent
        layers = [base]
        layers.extend(sorted((directory / "config.d").glob("*.yml")))
        secrets = directory / "secrets.yml"
        if secrets.exists():
            layers.append(secrets)
        return layers

    def _resolve_root_dir(self) -> Path:
        if self._root_dir is not None:
            return self._root_dir
        return Path(os.getenv("PRAYERDASH_CONFIG_DIR") or "/etc/prayerdash")

    def _build_config(self, data: Dict[str, Any]) -> AppConfig:
        location_data = _section(data, "location")
        prayer_data = _section(data, "prayer")
        geocoding_data = _section(data, "geocoding")
        control_panel_data = _section(data, "control_panel")
        logging_data = _section(data, "logging", required=False)
        try:
            return AppConfig(
                location=_location_config(location_data),
                prayer=_prayer_config(prayer_data),
                geocoding=_geocoding_config(geocoding_data),
                control_panel=_control_panel_config(control_panel_data),
                logging=LoggingConfig(file_path=logging_data.get("file_path")),
            )
        except KeyError as exc:
            raise ConfigError(f"Missing config key: {exc.args[0]}") from exc
        except ConfigError:
            raise
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid config value: {exc}") from exc

    def _validate(self, config: AppConfig) -> None:
        try:
            ZoneInfo(config.location.timezone)
        except (ZoneInfoNotFoundError, TypeError, ValueError) as exc:
            raise ConfigError(f"Unknown timezone: {config.location.timezone}") from exc

        for name, value in config.prayer.custom_times.items():
            if name not in PRAYER_NAMES:
                raise ConfigError(f"Unknown prayer in custom_times: {name}")
            if not is_valid_hhmm(value):
                raise ConfigError(f"Custom time for {name} must be HH:MM, got {value!r}")

        panel = config.control_panel
        if panel.enabled and not panel.auth.username:
            raise ConfigError("Control panel username is required")
        if panel.enabled and not panel.auth.password_hash:
            raise ConfigError("Control panel password_hash is required")

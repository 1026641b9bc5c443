import sys
from pathlib import Path

import pytest


def pytest_sessionstart(session):
    """Ensure src/ is on sys.path for local test runs."""
    repo_root = Path(__file__).resolve().parents[1]
    src_path = repo_root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


@pytest.fixture
def london():
    from prayerdash.prayer_times import GeoCoordinate

    return GeoCoordinate(latitude=51.5074, longitude=-0.1278)


@pytest.fixture
def makkah():
    from prayerdash.prayer_times import GeoCoordinate

    return GeoCoordinate(latitude=21.4225, longitude=39.8262)

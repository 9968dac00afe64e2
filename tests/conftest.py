"""
Pytest Configuration and Shared Fixtures

Provides fake external clients, Maps result builders and a temporary
SQLite database for all test modules.
"""

import pytest
from typing import Any, Callable, Dict, List, Optional

from geoscale.database import init_db, reset_engine
from geoscale.utils.config import Settings


# ============================================================================
# Settings
# ============================================================================

@pytest.fixture
def settings() -> Settings:
    """Settings with no pacing delay and fake credentials."""
    return Settings(
        _env_file=None,
        DATAFORSEO_LOGIN="login@example.com",
        DATAFORSEO_PASSWORD="secret",
        GOOGLE_MAPS_API_KEY="maps-key",
        HEATMAP_REQUEST_DELAY=0,
    )


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Fresh SQLite database per test."""
    monkeypatch.delenv("POSTGRES_URL", raising=False)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'geoscale_test.db'}")
    reset_engine()
    init_db()
    yield
    reset_engine()


# ============================================================================
# Maps result builders
# ============================================================================

def maps_item(
    title: Optional[str],
    rank_group: Optional[int] = None,
    rank_absolute: Optional[int] = None,
    domain: Optional[str] = None,
) -> Dict[str, Any]:
    """One Google Maps SERP item as DataForSEO returns it."""
    return {
        "type": "maps_search",
        "title": title,
        "rank_group": rank_group,
        "rank_absolute": rank_absolute,
        "domain": domain,
    }


def ranked_items(business: str, position: int, total: int = 10) -> List[Dict[str, Any]]:
    """A result list with the business at `position` among competitors."""
    items = []
    for rank in range(1, total + 1):
        title = business if rank == position else f"Competitor Agency {rank}"
        items.append(maps_item(title, rank_group=rank, rank_absolute=rank))
    return items


# ============================================================================
# Fake external clients
# ============================================================================

class FakeRankingClient:
    """
    Stand-in for DataForSEOClient.

    `respond(keyword, latitude, longitude)` returns the items for a point or
    raises; every call costs `cost_per_call`.
    """

    def __init__(self, respond: Callable[[str, float, float], List[Dict[str, Any]]], cost_per_call: float = 0.002):
        self.respond = respond
        self.cost_per_call = cost_per_call
        self.total_cost = 0.0
        self.closed = False
        self.calls: List[Dict[str, Any]] = []

    async def get_maps_results(self, keyword, latitude, longitude, **kwargs):
        self.calls.append({"keyword": keyword, "latitude": latitude, "longitude": longitude, **kwargs})
        self.total_cost += self.cost_per_call
        return self.respond(keyword, latitude, longitude)


class FakeGeocoder:
    """Stand-in for GoogleMapsClient.reverse_geocode_locality."""

    def __init__(self, locate: Callable[[float, float], Optional[str]]):
        self.locate = locate
        self.calls: List[tuple] = []

    async def reverse_geocode_locality(self, latitude, longitude):
        self.calls.append((latitude, longitude))
        return self.locate(latitude, longitude)


@pytest.fixture
def dolphin_items():
    """Dolphin ICT at position 2 everywhere."""
    return lambda keyword, lat, lng: ranked_items("Dolphin ICT", 2)

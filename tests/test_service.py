"""
Tests for the heat map service and session state machine.

These tests verify:
- End-to-end scan for a stored project (grid, scan, weak locations, persistence)
- Project errors (unknown, no coordinates) and fatal scan aborts
- History save failures do not lose the report
- Seeding combinations from weak locations, nearby town search
- Session transitions
"""

from unittest.mock import AsyncMock, patch

import pytest

from geoscale.collector.client import DataForSEOError
from geoscale.database import (
    create_project,
    get_combination_phrases,
    get_grid_points,
    get_latest_scan,
    get_project,
    get_project_locations,
    store_locations,
)
from geoscale.heatmap.errors import (
    InvalidGridError,
    InvalidStateError,
    MissingCoordinatesError,
    NotConfiguredError,
    ProjectNotFoundError,
    ScanAbortedError,
)
from geoscale.heatmap.grid import generate_grid
from geoscale.heatmap.scanner import ScanResult, ScanStatus
from geoscale.heatmap.service import HeatMapService, HeatMapSession, ScanState
from geoscale.heatmap.weak_locations import WeakLocation
from geoscale.integrations.geocoding import PlaceResult

from tests.conftest import FakeGeocoder, FakeRankingClient, maps_item, ranked_items

PHRASE = "web design in doncaster"
CENTER = (53.5228, -1.1285)


@pytest.fixture
def project_id(temp_db):
    return create_project(
        "Dolphin ICT",
        base_location="Doncaster",
        latitude=CENTER[0],
        longitude=CENTER[1],
        base_keyword="web design",
        blog_url="https://www.dolphinict.co.uk",
    )


@pytest.fixture
def north_row_latitude():
    return generate_grid(CENTER[0], CENTER[1], 3, 5)[-1].latitude


@pytest.fixture
def ranking_client(north_row_latitude):
    """Position 2 everywhere except the north row, where the business is missing."""
    def respond(keyword, lat, lng):
        if lat == north_row_latitude:
            return [maps_item("Other Web Agency", rank_group=1)]
        return ranked_items("Dolphin ICT", 2)
    return FakeRankingClient(respond)


@pytest.fixture
def geocoder(north_row_latitude):
    return FakeGeocoder(lambda lat, lng: "Thorne" if lat == north_row_latitude else "Doncaster")


# =============================================================================
# RUN SCAN
# =============================================================================

class TestRunScan:

    @pytest.mark.asyncio
    async def test_full_scan(self, project_id, ranking_client, geocoder, settings):
        service = HeatMapService(ranking_client, geocoder, settings=settings)
        report = await service.run_scan(project_id, "Web Design in Doncaster", grid_size=3, radius_km=5)

        assert report.phrase == PHRASE
        assert report.status == ScanStatus.COMPLETE
        assert report.result.positions == [2] * 6 + [None] * 3
        assert report.aggregate.average_position == 2
        assert report.aggregate.ranked_count == 6
        assert report.aggregate.not_ranked_count == 3
        assert [loc.name for loc in report.weak_locations] == ["Thorne"]
        # Only the weak north row is geocoded
        assert len(geocoder.calls) == 3

        assert report.scan_id is not None
        latest = get_latest_scan(project_id, PHRASE)
        assert latest["id"] == report.scan_id
        assert latest["average_position"] == 2
        assert latest["weak_locations"] == [report.weak_locations[0].to_dict()]
        assert latest["status"] == "complete"
        assert latest["api_cost"] == pytest.approx(0.018)
        assert len(get_grid_points(project_id, PHRASE)) == 9

    @pytest.mark.asyncio
    async def test_default_preset(self, project_id, settings, dolphin_items):
        client = FakeRankingClient(dolphin_items)
        report = await HeatMapService(client, settings=settings).run_scan(project_id, PHRASE)

        assert report.config.grid_size == 5
        assert report.config.radius_km == 5
        assert len(client.calls) == 25

    @pytest.mark.asyncio
    async def test_named_preset(self, project_id, settings, dolphin_items):
        client = FakeRankingClient(dolphin_items)
        report = await HeatMapService(client, settings=settings).run_scan(
            project_id, PHRASE, preset="standard", persist=False,
        )
        assert (report.config.grid_size, report.config.radius_km) == (7, 10)
        assert len(client.calls) == 49

    @pytest.mark.asyncio
    async def test_without_geocoder(self, project_id, ranking_client, settings):
        report = await HeatMapService(ranking_client, settings=settings).run_scan(
            project_id, PHRASE, grid_size=3, radius_km=5,
        )
        assert report.weak_locations == []
        assert report.scan_id is not None

    @pytest.mark.asyncio
    async def test_tracked_towns_excluded(self, project_id, ranking_client, geocoder, settings):
        store_locations(project_id, [{"name": "Thorne"}])
        report = await HeatMapService(ranking_client, geocoder, settings=settings).run_scan(
            project_id, PHRASE, grid_size=3, radius_km=5,
        )
        assert report.weak_locations == []

    @pytest.mark.asyncio
    async def test_not_persisted(self, project_id, ranking_client, settings):
        report = await HeatMapService(ranking_client, settings=settings).run_scan(
            project_id, PHRASE, grid_size=3, radius_km=5, persist=False,
        )
        assert report.scan_id is None
        assert get_latest_scan(project_id, PHRASE) is None
        assert get_grid_points(project_id, PHRASE) == []

    @pytest.mark.asyncio
    async def test_history_failure_keeps_report(self, project_id, ranking_client, settings):
        service = HeatMapService(ranking_client, settings=settings)
        with patch(
            "geoscale.database.repository.save_heat_map_scan",
            side_effect=RuntimeError("database is locked"),
        ):
            report = await service.run_scan(project_id, PHRASE, grid_size=3, radius_km=5)

        assert report.scan_id is None
        assert report.aggregate.ranked_count == 6
        assert len(get_grid_points(project_id, PHRASE)) == 9

    @pytest.mark.asyncio
    async def test_progress_forwarded(self, project_id, ranking_client, settings):
        updates = []
        await HeatMapService(ranking_client, settings=settings).run_scan(
            project_id, PHRASE, grid_size=3, radius_km=5, on_progress=updates.append,
        )
        assert updates[-1].completed == 9
        assert updates[-1].estimated_percent == 100.0


class TestRunScanErrors:

    @pytest.mark.asyncio
    async def test_unknown_project(self, temp_db, ranking_client, settings):
        from uuid import uuid4
        with pytest.raises(ProjectNotFoundError):
            await HeatMapService(ranking_client, settings=settings).run_scan(uuid4(), PHRASE)

    @pytest.mark.asyncio
    async def test_missing_coordinates(self, temp_db, ranking_client, settings):
        project_id = create_project("No Address Ltd")
        with pytest.raises(MissingCoordinatesError):
            await HeatMapService(ranking_client, settings=settings).run_scan(project_id, PHRASE)
        assert ranking_client.calls == []

    @pytest.mark.asyncio
    async def test_invalid_grid(self, project_id, ranking_client, settings):
        with pytest.raises(InvalidGridError):
            await HeatMapService(ranking_client, settings=settings).run_scan(
                project_id, PHRASE, grid_size=0, radius_km=5,
            )

    @pytest.mark.asyncio
    async def test_no_ranking_client(self, project_id, settings):
        with pytest.raises(NotConfiguredError):
            await HeatMapService(None, settings=settings).run_scan(project_id, PHRASE)

    @pytest.mark.asyncio
    async def test_abort_saves_completed_points(self, project_id, settings):
        calls = {"n": 0}

        def respond(keyword, lat, lng):
            calls["n"] += 1
            if calls["n"] > 4:
                raise DataForSEOError("API error: Payment Required", status_code=40200)
            return ranked_items("Dolphin ICT", 1)

        service = HeatMapService(FakeRankingClient(respond), settings=settings)
        with pytest.raises(ScanAbortedError) as exc_info:
            await service.run_scan(project_id, PHRASE, grid_size=3, radius_km=5)

        assert exc_info.value.partial_result.completed_count == 4
        saved = get_grid_points(project_id, PHRASE)
        assert [p["position"] for p in saved] == [1, 1, 1, 1]
        assert get_latest_scan(project_id, PHRASE) is None

    @pytest.mark.asyncio
    async def test_every_point_failing_keeps_stored_data(self, project_id, dolphin_items, settings):
        await HeatMapService(FakeRankingClient(dolphin_items), settings=settings).run_scan(
            project_id, PHRASE, grid_size=3, radius_km=5,
        )
        first_scan = get_latest_scan(project_id, PHRASE)

        def respond(keyword, lat, lng):
            raise DataForSEOError("HTTP error: connection refused")

        geocoder = FakeGeocoder(lambda lat, lng: "Thorne")
        service = HeatMapService(FakeRankingClient(respond), geocoder, settings=settings)
        with pytest.raises(ScanAbortedError) as exc_info:
            await service.run_scan(project_id, PHRASE, grid_size=3, radius_km=5)

        assert exc_info.value.partial_result.status == ScanStatus.FAILED
        assert geocoder.calls == []
        assert [p["position"] for p in get_grid_points(project_id, PHRASE)] == [2] * 9
        assert get_latest_scan(project_id, PHRASE)["id"] == first_scan["id"]

    @pytest.mark.asyncio
    async def test_failed_points_keep_stored_cells(self, project_id, dolphin_items, settings):
        await HeatMapService(FakeRankingClient(dolphin_items), settings=settings).run_scan(
            project_id, PHRASE, grid_size=3, radius_km=5,
        )
        center = generate_grid(CENTER[0], CENTER[1], 3, 5)[4]

        def respond(keyword, lat, lng):
            if (lat, lng) == (center.latitude, center.longitude):
                raise DataForSEOError("Maps task failed: Internal Error", status_code=50000)
            return ranked_items("Dolphin ICT", 1)

        geocoder = FakeGeocoder(lambda lat, lng: "Thorne")
        service = HeatMapService(FakeRankingClient(respond), geocoder, settings=settings)
        report = await service.run_scan(project_id, PHRASE, grid_size=3, radius_km=5)

        assert report.status == ScanStatus.PARTIAL
        assert report.weak_locations == []
        assert geocoder.calls == []
        assert [p["position"] for p in get_grid_points(project_id, PHRASE)] == [1, 1, 1, 1, 2, 1, 1, 1, 1]

        latest = get_latest_scan(project_id, PHRASE)
        assert latest["id"] == report.scan_id
        assert latest["status"] == "partial"
        assert latest["failed_count"] == 1


# =============================================================================
# REPORT
# =============================================================================

class TestReport:

    @pytest.mark.asyncio
    async def test_to_dict(self, project_id, ranking_client, geocoder, settings):
        report = await HeatMapService(ranking_client, geocoder, settings=settings).run_scan(
            project_id, PHRASE, grid_size=3, radius_km=5,
        )
        data = report.to_dict()

        assert data["project_id"] == str(project_id)
        assert data["status"] == "complete"
        assert data["grid_size"] == 3
        assert data["aggregate"]["average_position"] == 2
        assert len(data["points"]) == 9
        assert data["points"][0]["color"] == "#22C55E"
        assert data["points"][0]["band"] == "top_3"
        assert data["points"][0]["density"] == "low"
        assert data["points"][8]["color"] == "#9CA3AF"
        assert data["weak_locations"][0]["name"] == "Thorne"
        assert data["scan_id"] == str(report.scan_id)


# =============================================================================
# COMBINATIONS & TOWNS
# =============================================================================

class TestSeedCombinations:

    def test_creates_locations_and_combinations(self, project_id, settings):
        service = HeatMapService(None, settings=settings)
        weak = [WeakLocation("Thorne", None, 53.61, -0.96), WeakLocation("Bawtry", 9, 53.43, -1.02)]

        assert service.seed_combinations(project_id, weak) == 2
        assert get_combination_phrases(project_id) == ["web design in bawtry", "web design in thorne"]

        locations = {loc["name"]: loc for loc in get_project_locations(project_id)}
        assert locations["Thorne"]["source"] == "heat_map"
        assert locations["Thorne"]["lat"] == 53.61

    def test_duplicates_skipped(self, project_id, settings):
        service = HeatMapService(None, settings=settings)
        weak = [WeakLocation("Thorne", None, 53.61, -0.96)]

        service.seed_combinations(project_id, weak)
        assert service.seed_combinations(project_id, weak) == 0
        assert len(get_project_locations(project_id)) == 1

    def test_near_me_keyword(self, project_id, settings):
        service = HeatMapService(None, settings=settings)
        service.seed_combinations(project_id, [WeakLocation("Thorne", None, 53.61, -0.96)], keywords=["IT support near me"])
        assert get_combination_phrases(project_id) == ["it support near thorne"]

    def test_unknown_project(self, temp_db, settings):
        from uuid import uuid4
        with pytest.raises(ProjectNotFoundError):
            HeatMapService(None, settings=settings).seed_combinations(uuid4(), [])


class TestFindNearbyTowns:

    @pytest.mark.asyncio
    async def test_stores_towns_and_center(self, project_id, settings):
        geocoder = AsyncMock()
        geocoder.geocode_location.return_value = PlaceResult("p0", "Doncaster", 53.52, -1.13, "South Yorkshire")
        geocoder.search_nearby_towns.return_value = [
            PlaceResult("p1", "Bawtry", 53.43, -1.02, "South Yorkshire"),
            PlaceResult("p2", "Thorne", 53.61, -0.96, "South Yorkshire"),
        ]

        result = await HeatMapService(None, geocoder, settings=settings).find_nearby_towns(project_id, radius_km=15)

        geocoder.geocode_location.assert_awaited_once_with("Doncaster")
        geocoder.search_nearby_towns.assert_awaited_once_with(53.52, -1.13, 15, max_results=20)
        assert [t["name"] for t in result["towns"]] == ["Bawtry", "Thorne"]
        assert result["stored"] == 2
        assert get_project(project_id)["latitude"] == 53.52

        locations = {loc["name"]: loc for loc in get_project_locations(project_id)}
        assert locations["Bawtry"]["place_id"] == "p1"
        assert locations["Bawtry"]["source"] == "nearby_search"

    @pytest.mark.asyncio
    async def test_requires_geocoder(self, project_id, settings):
        with pytest.raises(NotConfiguredError):
            await HeatMapService(None, settings=settings).find_nearby_towns(project_id)


class TestAddWeakLocation:

    @pytest.mark.asyncio
    async def test_adds_clicked_town(self, settings):
        service = HeatMapService(None, FakeGeocoder(lambda lat, lng: "Tickhill"), settings=settings)
        location, added = await service.add_weak_location(53.43, -1.11)
        assert added
        assert location.name == "Tickhill"


# =============================================================================
# SESSION
# =============================================================================

class TestHeatMapSession:
    """idle -> generating -> scanning -> scanned -> resolving -> report_ready"""

    def scan_result(self, points):
        return ScanResult.empty(PHRASE, points)

    def test_happy_path(self):
        session = HeatMapSession()
        assert session.state == ScanState.IDLE

        points = session.configure(*CENTER, 3, 5)
        assert session.state == ScanState.GENERATING
        assert len(points) == 9

        session.begin_scan()
        assert session.state == ScanState.SCANNING
        session.complete_scan(self.scan_result(points))
        assert session.state == ScanState.SCANNED
        session.begin_resolving()
        assert session.state == ScanState.RESOLVING_WEAK_LOCATIONS
        session.complete_report([WeakLocation("Thorne", None, 53.6, -0.9)])
        assert session.state == ScanState.REPORT_READY
        assert session.weak_locations[0].name == "Thorne"

    def test_resolving_can_be_skipped(self):
        session = HeatMapSession()
        points = session.configure(*CENTER, 2, 1)
        session.begin_scan()
        session.complete_scan(self.scan_result(points))
        session.complete_report()
        assert session.state == ScanState.REPORT_READY

    def test_reconfigure_discards_results(self):
        session = HeatMapSession()
        points = session.configure(*CENTER, 3, 5)
        session.begin_scan()
        session.complete_scan(self.scan_result(points))
        session.complete_report([WeakLocation("Thorne", None, 53.6, -0.9)])

        new_points = session.configure(*CENTER, 5, 10)
        assert session.state == ScanState.GENERATING
        assert len(new_points) == 25
        assert session.result is None
        assert session.weak_locations == []

    def test_cannot_scan_before_grid(self):
        with pytest.raises(InvalidStateError):
            HeatMapSession().begin_scan()

    def test_cannot_resolve_before_scan(self):
        session = HeatMapSession()
        session.configure(*CENTER, 3, 5)
        with pytest.raises(InvalidStateError):
            session.begin_resolving()

    def test_failed_scan_keeps_partial_result(self):
        session = HeatMapSession()
        points = session.configure(*CENTER, 3, 5)
        session.begin_scan()
        partial = self.scan_result(points)
        session.fail("rejected", partial)

        assert session.state == ScanState.FAILED
        assert session.result is partial
        session.begin_scan()
        assert session.state == ScanState.SCANNING

    def test_invalid_grid_leaves_state(self):
        session = HeatMapSession()
        with pytest.raises(InvalidGridError):
            session.configure(*CENTER, 0, 5)
        assert session.state == ScanState.IDLE

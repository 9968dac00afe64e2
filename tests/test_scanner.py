"""
Tests for the ranking scan orchestrator.

These tests verify:
- One Maps lookup per grid point, results in grid order
- Per-point failures are recorded and the scan continues
- Authentication/billing errors abort with the partial result attached
- Bounded worker pool (concurrency limit, cancellation)
- Progress reporting (observed count + time-based estimate)
"""

import asyncio
import json

import httpx
import pytest

from geoscale.collector.client import (
    DataForSEOClient,
    DataForSEOError,
    RetryConfig,
    format_location_coordinate,
)
from geoscale.heatmap.errors import ScanAbortedError
from geoscale.heatmap.grid import generate_grid
from geoscale.heatmap.matching import BusinessTarget
from geoscale.heatmap.scanner import (
    ProgressEstimator,
    RankingScanOrchestrator,
    ScanOptions,
    ScanResult,
    ScanStatus,
    estimate_scan,
)

from tests.conftest import FakeRankingClient, maps_item, ranked_items

TARGET = BusinessTarget("dolphin ict")
PHRASE = "web design in doncaster"


@pytest.fixture
def points():
    return generate_grid(53.5228, -1.1285, 3, 5)


def no_delay(**kwargs) -> ScanOptions:
    return ScanOptions(request_delay=0, **kwargs)


def maps_api_client(odd_point, task_status) -> DataForSEOClient:
    """Real client over MockTransport; odd_point gets task_status, the rest rank Dolphin ICT first."""
    odd_coordinate = format_location_coordinate(odd_point.latitude, odd_point.longitude)

    def handler(request):
        task = json.loads(request.content)[0]
        if task["location_coordinate"] == odd_coordinate:
            body = {"status_code": task_status, "status_message": "Task error", "result": None}
        else:
            body = {"status_code": 20000, "status_message": "Ok.", "result": [{"items": ranked_items("Dolphin ICT", 1)}]}
        return httpx.Response(200, json={"status_code": 20000, "cost": 0.002, "tasks": [body]})

    return DataForSEOClient(
        login="login",
        password="secret",
        retry_config=RetryConfig(max_retries=0, initial_delay=0),
        transport=httpx.MockTransport(handler),
    )


# =============================================================================
# ESTIMATES
# =============================================================================

class TestEstimates:

    def test_estimate_scan(self):
        estimate = estimate_scan(10)
        assert estimate.api_calls == 100
        assert estimate.estimated_cost == 5.0
        assert estimate.estimated_seconds == 25.0

    def test_estimate_with_workers(self):
        estimate = estimate_scan(10, concurrency=5)
        assert estimate.estimated_seconds == 5.0

    def test_estimate_custom_cost(self):
        assert estimate_scan(5, cost_per_call=0.002).estimated_cost == 0.05


class TestProgressEstimator:
    """Time-based progress, capped until finished."""

    def make(self, total_calls=4):
        now = {"t": 100.0}
        estimator = ProgressEstimator(total_calls, ms_per_call=250, clock=lambda: now["t"])
        return estimator, now

    def test_zero_before_start(self):
        estimator, _ = self.make()
        assert estimator.estimate() == 0.0
        assert estimator.elapsed_seconds == 0.0

    def test_grows_with_time(self):
        estimator, now = self.make()
        estimator.start()
        now["t"] += 0.5
        assert estimator.estimate() == pytest.approx(50.0)

    def test_capped_at_95(self):
        estimator, now = self.make()
        estimator.start()
        now["t"] += 10
        assert estimator.estimate() == 95.0

    def test_finished_is_100(self):
        estimator, _ = self.make()
        estimator.start()
        estimator.finish()
        assert estimator.estimate() == 100.0


# =============================================================================
# SCANNING
# =============================================================================

class TestScan:
    """Happy path scans."""

    @pytest.mark.asyncio
    async def test_every_point_checked(self, points, dolphin_items):
        client = FakeRankingClient(dolphin_items)
        result = await RankingScanOrchestrator(client, no_delay()).scan(points, PHRASE, TARGET)

        assert len(client.calls) == 9
        assert result.positions == [2] * 9
        assert result.business_counts == [10] * 9
        assert result.status == ScanStatus.COMPLETE
        assert result.failures == []
        assert result.completed_at is not None
        assert result.api_cost == pytest.approx(0.018)

    @pytest.mark.asyncio
    async def test_request_parameters(self, points, dolphin_items):
        client = FakeRankingClient(dolphin_items)
        await RankingScanOrchestrator(client, no_delay()).scan(points[:1], PHRASE, TARGET)

        call = client.calls[0]
        assert call["keyword"] == PHRASE
        assert call["latitude"] == points[0].latitude
        assert call["longitude"] == points[0].longitude
        assert call["zoom"] == 15
        assert call["language_code"] == "en"
        assert call["depth"] == 20

    @pytest.mark.asyncio
    async def test_not_ranked_points(self, points):
        north = points[-1].latitude

        def respond(keyword, lat, lng):
            if lat == north:
                return [maps_item("Someone Else", rank_group=1)]
            return ranked_items("Dolphin ICT", 5)

        result = await RankingScanOrchestrator(FakeRankingClient(respond), no_delay()).scan(points, PHRASE, TARGET)

        assert result.positions == [5] * 6 + [None] * 3
        assert result.business_counts == [10] * 6 + [1] * 3
        assert result.status == ScanStatus.COMPLETE
        aggregate = result.aggregate()
        assert aggregate.ranked_count == 6
        assert aggregate.not_ranked_count == 3

    @pytest.mark.asyncio
    async def test_empty_grid(self):
        result = await RankingScanOrchestrator(FakeRankingClient(lambda *a: []), no_delay()).scan([], PHRASE, TARGET)
        assert result.total_points == 0
        assert result.status == ScanStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_grid_data_rows(self, points, dolphin_items):
        result = await RankingScanOrchestrator(FakeRankingClient(dolphin_items), no_delay()).scan(points, PHRASE, TARGET)
        rows = result.grid_data()

        assert len(rows) == 9
        assert rows[0] == {
            "grid_x": 0,
            "grid_y": 0,
            "latitude": points[0].latitude,
            "longitude": points[0].longitude,
            "position": 2,
            "business_count": 10,
        }


class TestFailures:
    """Per-point errors are recorded, fatal ones abort."""

    @pytest.mark.asyncio
    async def test_point_failure_recorded(self, points):
        bad = points[4]

        def respond(keyword, lat, lng):
            if (lat, lng) == (bad.latitude, bad.longitude):
                raise DataForSEOError("Maps task failed: Internal Error", status_code=50000)
            return ranked_items("Dolphin ICT", 1)

        result = await RankingScanOrchestrator(FakeRankingClient(respond), no_delay()).scan(points, PHRASE, TARGET)

        assert result.positions[4] is None
        assert result.status == ScanStatus.PARTIAL
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert (failure.index, failure.x, failure.y) == (4, 1, 1)
        assert failure.status_code == 50000
        assert "Internal Error" in failure.error
        # Remaining points still checked
        assert result.positions[:4] == [1] * 4
        assert result.positions[5:] == [1] * 4

    @pytest.mark.asyncio
    async def test_http_error_recorded(self, points):
        def respond(keyword, lat, lng):
            if lat == points[0].latitude and lng == points[0].longitude:
                raise httpx.ConnectError("connection refused")
            return ranked_items("Dolphin ICT", 1)

        result = await RankingScanOrchestrator(FakeRankingClient(respond), no_delay()).scan(points, PHRASE, TARGET)

        assert result.failures[0].index == 0
        assert result.failures[0].error.startswith("HTTP error")
        assert result.completed_count == 9

    @pytest.mark.asyncio
    async def test_every_point_failing(self, points):
        def respond(keyword, lat, lng):
            raise DataForSEOError("Maps task failed", status_code=40501)

        result = await RankingScanOrchestrator(FakeRankingClient(respond), no_delay()).scan(points, PHRASE, TARGET)

        assert result.status == ScanStatus.FAILED
        assert len(result.failures) == 9
        assert result.aggregate().not_ranked_count == 9

    @pytest.mark.asyncio
    async def test_no_search_results_point_is_not_ranked(self, points):
        client = maps_api_client(points[1], 40102)
        async with client:
            result = await RankingScanOrchestrator(client, no_delay()).scan(points, PHRASE, TARGET)

        assert result.status == ScanStatus.COMPLETE
        assert result.failures == []
        assert result.positions[1] is None
        assert result.business_counts[1] == 0
        assert [p for i, p in enumerate(result.positions) if i != 1] == [1] * 8

    @pytest.mark.asyncio
    async def test_rate_limited_point_is_a_failure(self, points):
        client = maps_api_client(points[1], 40202)
        async with client:
            result = await RankingScanOrchestrator(client, no_delay()).scan(points, PHRASE, TARGET)

        assert result.status == ScanStatus.PARTIAL
        assert [(f.index, f.status_code) for f in result.failures] == [(1, 40202)]
        assert result.completed_count == 9

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [401, 402, 403, 40100, 40200])
    async def test_fatal_error_aborts(self, points, status_code):
        calls = {"n": 0}

        def respond(keyword, lat, lng):
            calls["n"] += 1
            if calls["n"] == 3:
                raise DataForSEOError("API error: rejected", status_code=status_code)
            return ranked_items("Dolphin ICT", 3)

        client = FakeRankingClient(respond)
        with pytest.raises(ScanAbortedError) as exc_info:
            await RankingScanOrchestrator(client, no_delay()).scan(points, PHRASE, TARGET)

        error = exc_info.value
        assert isinstance(error.cause, DataForSEOError)
        assert len(client.calls) == 3

        partial = error.partial_result
        assert isinstance(partial, ScanResult)
        assert partial.completed_count == 2
        assert partial.positions[:2] == [3, 3]
        assert partial.positions[2:] == [None] * 7
        assert partial.status == ScanStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_closed_client_aborts(self, points):
        client = FakeRankingClient(lambda *a: ranked_items("Dolphin ICT", 1))

        def respond(keyword, lat, lng):
            client.closed = True
            raise DataForSEOError("Client is closed")

        client.respond = respond
        with pytest.raises(ScanAbortedError) as exc_info:
            await RankingScanOrchestrator(client, no_delay()).scan(points, PHRASE, TARGET)

        assert exc_info.value.partial_result.completed_count == 0
        assert len(client.calls) == 1


# =============================================================================
# WORKER POOL
# =============================================================================

class SlowClient:
    """Records how many lookups are in flight at once."""

    def __init__(self, delay=0.01):
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.total_cost = 0.0
        self.closed = False
        self.calls = 0

    async def get_maps_results(self, keyword, latitude, longitude, **kwargs):
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        # Position depends on the point so ordering can be checked
        return [maps_item("Dolphin ICT", rank_group=int(round(abs(latitude) * 1000)) % 20 + 1)]


class TestWorkerPool:

    @pytest.mark.asyncio
    async def test_sequential_by_default(self, points):
        client = SlowClient()
        await RankingScanOrchestrator(client, no_delay()).scan(points, PHRASE, TARGET)
        assert client.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, points):
        client = SlowClient()
        result = await RankingScanOrchestrator(client, no_delay(concurrency=4)).scan(points, PHRASE, TARGET)

        assert client.calls == 9
        assert 1 < client.max_in_flight <= 4
        expected = [int(round(abs(p.latitude) * 1000)) % 20 + 1 for p in points]
        assert result.positions == expected

    @pytest.mark.asyncio
    async def test_failures_sorted_by_index(self, points):
        class FlakyClient(SlowClient):
            async def get_maps_results(self, keyword, latitude, longitude, **kwargs):
                await asyncio.sleep(0.001 * (10 - self.calls))
                self.calls += 1
                raise DataForSEOError("Maps task failed", status_code=50000)

        result = await RankingScanOrchestrator(FlakyClient(), no_delay(concurrency=3)).scan(points, PHRASE, TARGET)
        assert [f.index for f in result.failures] == list(range(9))

    @pytest.mark.asyncio
    async def test_cancellation_stops_workers(self, points):
        client = SlowClient(delay=10)
        task = asyncio.create_task(
            RankingScanOrchestrator(client, no_delay(concurrency=2)).scan(points, PHRASE, TARGET)
        )
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert client.calls == 2
        assert client.in_flight == 0


# =============================================================================
# PROGRESS
# =============================================================================

class TestProgress:

    @pytest.mark.asyncio
    async def test_progress_callbacks(self, points, dolphin_items):
        updates = []
        await RankingScanOrchestrator(FakeRankingClient(dolphin_items), no_delay()).scan(
            points, PHRASE, TARGET, on_progress=updates.append,
        )

        assert [u.completed for u in updates] == list(range(1, 10)) + [9]
        assert all(u.total == 9 for u in updates)
        assert all(u.estimated_percent <= 95.0 for u in updates[:-1])
        assert updates[-1].estimated_percent == 100.0
        assert updates[-1].percent == 100.0

    @pytest.mark.asyncio
    async def test_async_callback(self, points, dolphin_items):
        seen = []

        async def on_progress(progress):
            seen.append(progress.completed)

        await RankingScanOrchestrator(FakeRankingClient(dolphin_items), no_delay()).scan(
            points, PHRASE, TARGET, on_progress=on_progress,
        )
        assert seen[-1] == 9

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_scan(self, points, dolphin_items):
        def on_progress(progress):
            raise RuntimeError("UI went away")

        result = await RankingScanOrchestrator(FakeRankingClient(dolphin_items), no_delay()).scan(
            points, PHRASE, TARGET, on_progress=on_progress,
        )
        assert result.status == ScanStatus.COMPLETE


class TestScanOptions:

    def test_from_settings(self, settings):
        options = ScanOptions.from_settings(settings)
        assert options.zoom == 15
        assert options.depth == 20
        assert options.language_code == "en"
        assert options.concurrency == 1
        assert options.request_delay == 0
        assert options.ms_per_call == 250

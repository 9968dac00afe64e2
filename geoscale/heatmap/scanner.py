"""
Ranking Scan Orchestrator

Checks the project's Google Maps position at every grid point.

- Bounded worker pool: a fixed number of workers pull point indices from a
  queue; with one worker the scan is strictly sequential
- Per-worker delay between requests to respect DataForSEO rate limits
- A failed point is recorded (not ranked + PointFailure) and the scan goes on
- Authentication/billing rejections abort the scan; the partial result
  travels on ScanAbortedError
- Progress: true completed/total plus a time-based estimate, labelled as such
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

import httpx

from geoscale.collector.client import DataForSEOError
from .aggregate import ScanAggregate, aggregate_positions
from .errors import ScanAbortedError
from .grid import GridPoint
from .matching import BusinessTarget, count_businesses, find_business_position

logger = logging.getLogger(__name__)

DEFAULT_COST_PER_CALL = 0.05
DEFAULT_MS_PER_CALL = 250
ESTIMATE_CAP_PERCENT = 95.0


# =============================================================================
# ESTIMATES
# =============================================================================

@dataclass
class ScanEstimate:
    """Up-front cost and duration estimate for a grid."""
    api_calls: int
    estimated_cost: float
    estimated_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "api_calls": self.api_calls,
            "estimated_cost": self.estimated_cost,
            "estimated_seconds": self.estimated_seconds,
        }


def estimate_scan(
    grid_size: int,
    cost_per_call: float = DEFAULT_COST_PER_CALL,
    ms_per_call: int = DEFAULT_MS_PER_CALL,
    concurrency: int = 1,
) -> ScanEstimate:
    """One ranking call per grid point; duration shrinks with more workers."""
    calls = grid_size * grid_size
    return ScanEstimate(
        api_calls=calls,
        estimated_cost=round(calls * cost_per_call, 2),
        estimated_seconds=round(calls * ms_per_call / 1000.0 / max(1, concurrency), 1),
    )


class ProgressEstimator:
    """
    Time-based progress estimate.

    Assumes ms_per_call per lookup and never reports more than 95% until
    finish() is called.
    """

    def __init__(
        self,
        total_calls: int,
        ms_per_call: int = DEFAULT_MS_PER_CALL,
        concurrency: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.total_ms = max(1.0, total_calls * ms_per_call / max(1, concurrency))
        self._clock = clock
        self._started: Optional[float] = None
        self._finished = False

    def start(self):
        self._started = self._clock()
        self._finished = False

    def finish(self):
        self._finished = True

    @property
    def elapsed_seconds(self) -> float:
        if self._started is None:
            return 0.0
        return self._clock() - self._started

    def estimate(self) -> float:
        if self._finished:
            return 100.0
        if self._started is None:
            return 0.0
        percent = self.elapsed_seconds * 1000.0 / self.total_ms * 100.0
        return min(ESTIMATE_CAP_PERCENT, percent)


@dataclass
class ScanProgress:
    """Progress snapshot passed to callbacks."""
    completed: int
    total: int
    estimated_percent: float
    elapsed_seconds: float

    @property
    def percent(self) -> float:
        """Observed progress (points actually checked)."""
        if not self.total:
            return 100.0
        return 100.0 * self.completed / self.total


ProgressCallback = Callable[[ScanProgress], Any]


# =============================================================================
# RESULTS
# =============================================================================

class ScanStatus(Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"     # some points failed or were never checked
    FAILED = "failed"       # no point could be checked


@dataclass
class PointFailure:
    """A grid point whose lookup failed."""
    index: int
    x: int
    y: int
    latitude: float
    longitude: float
    error: str
    status_code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "x": self.x,
            "y": self.y,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "error": self.error,
            "status_code": self.status_code,
        }


@dataclass
class ScanResult:
    """Positions and densities for every grid point, in grid order."""
    keyword: str
    points: List[GridPoint]
    positions: List[Optional[int]]
    business_counts: List[Optional[int]]
    checked: List[bool]
    failures: List[PointFailure] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    api_cost: float = 0.0

    @classmethod
    def empty(cls, keyword: str, points: Sequence[GridPoint]) -> "ScanResult":
        n = len(points)
        return cls(
            keyword=keyword,
            points=list(points),
            positions=[None] * n,
            business_counts=[None] * n,
            checked=[False] * n,
        )

    @property
    def total_points(self) -> int:
        return len(self.points)

    @property
    def completed_count(self) -> int:
        return sum(self.checked)

    @property
    def status(self) -> ScanStatus:
        if self.total_points and len(self.failures) >= self.total_points:
            return ScanStatus.FAILED
        if self.failures or self.completed_count < self.total_points:
            return ScanStatus.PARTIAL
        return ScanStatus.COMPLETE

    @property
    def failed_indices(self) -> Set[int]:
        return {failure.index for failure in self.failures}

    def aggregate(self) -> ScanAggregate:
        return aggregate_positions(self.positions)

    def grid_data(self) -> List[Dict[str, Any]]:
        """Per-point rows for persistence and rendering."""
        return [
            {
                "grid_x": point.x,
                "grid_y": point.y,
                "latitude": point.latitude,
                "longitude": point.longitude,
                "position": self.positions[i],
                "business_count": self.business_counts[i],
            }
            for i, point in enumerate(self.points)
        ]

    def checked_grid_data(self) -> List[Dict[str, Any]]:
        """Rows for points that were looked up successfully."""
        failed = self.failed_indices
        return [
            row
            for i, row in enumerate(self.grid_data())
            if self.checked[i] and i not in failed
        ]


@dataclass
class ScanOptions:
    """Request and pacing options for a scan."""
    zoom: int = 15
    language_code: str = "en"
    depth: int = 20
    concurrency: int = 1
    request_delay: float = 0.2
    ms_per_call: int = DEFAULT_MS_PER_CALL

    @classmethod
    def from_settings(cls, settings) -> "ScanOptions":
        return cls(
            zoom=settings.HEATMAP_ZOOM,
            language_code=settings.HEATMAP_LANGUAGE_CODE,
            depth=settings.HEATMAP_SEARCH_DEPTH,
            concurrency=settings.HEATMAP_CONCURRENCY,
            request_delay=settings.HEATMAP_REQUEST_DELAY,
            ms_per_call=settings.HEATMAP_MS_PER_CALL,
        )


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class RankingScanOrchestrator:
    """
    Runs one ranking scan over a grid.

    Usage:
        orchestrator = RankingScanOrchestrator(client)
        result = await orchestrator.scan(points, "web design in doncaster", target)
    """

    def __init__(self, client, options: Optional[ScanOptions] = None):
        """
        Args:
            client: DataForSEOClient (anything with get_maps_results)
            options: ScanOptions (defaults used when omitted)
        """
        self.client = client
        self.options = options or ScanOptions()

    async def scan(
        self,
        points: Sequence[GridPoint],
        keyword: str,
        target: BusinessTarget,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ScanResult:
        """
        Check the target's position at every point.

        Raises:
            ScanAbortedError: On a fatal API error; carries the partial result
        """
        result = ScanResult.empty(keyword, points)
        total = len(points)
        concurrency = max(1, min(self.options.concurrency, total or 1))
        estimator = ProgressEstimator(total, self.options.ms_per_call, concurrency)
        cost_before = getattr(self.client, "total_cost", 0.0)

        queue: asyncio.Queue = asyncio.Queue()
        for index in range(total):
            queue.put_nowait(index)

        abort: Dict[str, Exception] = {}

        logger.info(
            f"Scanning '{keyword}' across {total} points with {concurrency} worker(s)"
        )
        estimator.start()

        async def worker():
            while not abort:
                try:
                    index = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return

                fatal = await self._check_point(index, result, keyword, target)
                if fatal is not None:
                    abort["error"] = fatal
                    return

                await self._report(on_progress, result, estimator)

                if self.options.request_delay > 0 and not queue.empty():
                    await asyncio.sleep(self.options.request_delay)

        await asyncio.gather(*(worker() for _ in range(concurrency)))

        result.failures.sort(key=lambda f: f.index)
        result.completed_at = datetime.utcnow()
        result.api_cost = round(getattr(self.client, "total_cost", 0.0) - cost_before, 4)

        if abort:
            error = abort["error"]
            logger.error(
                f"Scan for '{keyword}' aborted after {result.completed_count}/{total} points: {error}"
            )
            raise ScanAbortedError(
                f"Ranking scan aborted: {error}",
                partial_result=result,
                cause=error,
            )

        estimator.finish()
        await self._report(on_progress, result, estimator)

        aggregate = result.aggregate()
        logger.info(
            f"Scan complete for '{keyword}': {aggregate.ranked_count} ranked, "
            f"{aggregate.not_ranked_count} not ranked, {len(result.failures)} failed"
        )
        return result

    async def _check_point(
        self,
        index: int,
        result: ScanResult,
        keyword: str,
        target: BusinessTarget,
    ) -> Optional[Exception]:
        """Check one point. Returns the exception when it should abort the scan."""
        point = result.points[index]
        try:
            items = await self.client.get_maps_results(
                keyword,
                point.latitude,
                point.longitude,
                zoom=self.options.zoom,
                language_code=self.options.language_code,
                depth=self.options.depth,
            )
        except DataForSEOError as e:
            if e.is_fatal or getattr(self.client, "closed", False):
                return e
            self._record_failure(index, result, str(e), e.status_code)
            return None
        except httpx.HTTPError as e:
            self._record_failure(index, result, f"HTTP error: {e}")
            return None
        except Exception as e:
            self._record_failure(index, result, f"Unexpected error: {e}")
            return None

        position, match = find_business_position(items, target)
        result.positions[index] = position
        result.business_counts[index] = count_businesses(items)
        result.checked[index] = True

        if match is not None:
            logger.debug(f"Point {index}: found at position {position} - '{match.get('title')}'")
        else:
            logger.debug(f"Point {index}: not ranked in {len(items)} results")
        return None

    def _record_failure(
        self,
        index: int,
        result: ScanResult,
        message: str,
        status_code: Optional[int] = None,
    ):
        point = result.points[index]
        logger.warning(f"Point {index} ({point.search_location}) failed: {message}")
        result.positions[index] = None
        result.checked[index] = True
        result.failures.append(PointFailure(
            index=index,
            x=point.x,
            y=point.y,
            latitude=point.latitude,
            longitude=point.longitude,
            error=message,
            status_code=status_code,
        ))

    async def _report(
        self,
        on_progress: Optional[ProgressCallback],
        result: ScanResult,
        estimator: ProgressEstimator,
    ):
        if on_progress is None:
            return
        progress = ScanProgress(
            completed=result.completed_count,
            total=result.total_points,
            estimated_percent=estimator.estimate(),
            elapsed_seconds=estimator.elapsed_seconds,
        )
        try:
            outcome = on_progress(progress)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

"""
Heat Map Service

Ties the pipeline together for one project and phrase:

    project -> grid -> ranking scan -> aggregate -> weak locations -> persist

HeatMapSession tracks where a heat map is in that pipeline. Changing grid
parameters regenerates the grid and throws away in-memory results; stored
history is never touched.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from geoscale.database import repository
from geoscale.database.models import LocationSource
from geoscale.utils.config import Settings, get_settings
from .aggregate import ScanAggregate
from .classify import classify_density, classify_position
from .combinations import build_phrase
from .errors import (
    HeatMapError,
    InvalidStateError,
    MissingCoordinatesError,
    NotConfiguredError,
    ProjectNotFoundError,
    ScanAbortedError,
)
from .grid import GridConfig, GridPoint, generate_grid, get_preset
from .matching import BusinessTarget
from .scanner import (
    PointFailure,
    ProgressCallback,
    RankingScanOrchestrator,
    ScanOptions,
    ScanResult,
    ScanStatus,
)
from .weak_locations import WeakLocation, WeakLocationResolver

logger = logging.getLogger(__name__)


# =============================================================================
# SESSION STATE
# =============================================================================

class ScanState(Enum):
    IDLE = "idle"
    GENERATING = "generating"
    SCANNING = "scanning"
    SCANNED = "scanned"
    RESOLVING_WEAK_LOCATIONS = "resolving_weak_locations"
    REPORT_READY = "report_ready"
    FAILED = "failed"


_ALLOWED_TRANSITIONS = {
    ScanState.GENERATING: {ScanState.SCANNING},
    ScanState.SCANNING: {ScanState.SCANNED, ScanState.FAILED},
    ScanState.SCANNED: {ScanState.RESOLVING_WEAK_LOCATIONS, ScanState.REPORT_READY, ScanState.SCANNING},
    ScanState.RESOLVING_WEAK_LOCATIONS: {ScanState.REPORT_READY, ScanState.FAILED},
    ScanState.REPORT_READY: {ScanState.SCANNING},
    ScanState.FAILED: {ScanState.SCANNING},
}


class HeatMapSession:
    """
    In-memory state of one heat map.

    configure() is allowed from any state and always lands in GENERATING
    with a fresh grid. From there: begin_scan -> complete_scan ->
    begin_resolving -> complete_report.
    """

    def __init__(self):
        self.state = ScanState.IDLE
        self.config: Optional[GridConfig] = None
        self.points: List[GridPoint] = []
        self.result: Optional[ScanResult] = None
        self.weak_locations: List[WeakLocation] = []
        self.error: Optional[str] = None

    def configure(self, center_lat: float, center_lng: float, grid_size: int, radius_km: float) -> List[GridPoint]:
        """Set grid parameters. Discards any previous scan held in memory."""
        points = generate_grid(center_lat, center_lng, grid_size, radius_km)
        self.config = GridConfig(center_lat, center_lng, grid_size, radius_km)
        self.points = points
        self.result = None
        self.weak_locations = []
        self.error = None
        self.state = ScanState.GENERATING
        return points

    def _move(self, target: ScanState):
        if target not in _ALLOWED_TRANSITIONS.get(self.state, set()):
            raise InvalidStateError(f"Cannot move from {self.state.value} to {target.value}")
        self.state = target

    def begin_scan(self):
        self._move(ScanState.SCANNING)
        self.result = None
        self.weak_locations = []
        self.error = None

    def complete_scan(self, result: ScanResult):
        self._move(ScanState.SCANNED)
        self.result = result

    def begin_resolving(self):
        self._move(ScanState.RESOLVING_WEAK_LOCATIONS)

    def complete_report(self, weak_locations: Sequence[WeakLocation] = ()):
        self._move(ScanState.REPORT_READY)
        self.weak_locations = list(weak_locations)

    def fail(self, error: str, partial_result: Optional[ScanResult] = None):
        self._move(ScanState.FAILED)
        self.error = error
        if partial_result is not None:
            self.result = partial_result


# =============================================================================
# REPORT
# =============================================================================

@dataclass
class HeatMapReport:
    """Everything a heat map view needs for one scan."""
    project_id: Any
    phrase: str
    config: GridConfig
    result: ScanResult
    aggregate: ScanAggregate
    weak_locations: List[WeakLocation] = field(default_factory=list)
    geocode_failures: int = 0
    scan_id: Optional[Any] = None
    scanned_at: datetime = field(default_factory=datetime.utcnow)
    high_density_threshold: int = 20

    @property
    def status(self) -> ScanStatus:
        return self.result.status

    @property
    def failures(self) -> List[PointFailure]:
        return self.result.failures

    def to_dict(self) -> Dict[str, Any]:
        points = []
        for row in self.result.grid_data():
            band = classify_position(row["position"])
            row["color"] = band.color
            row["band"] = band.label
            row["density"] = classify_density(row["business_count"], self.high_density_threshold)
            points.append(row)

        return {
            "project_id": str(self.project_id),
            "phrase": self.phrase,
            "grid_size": self.config.grid_size,
            "radius_km": self.config.radius_km,
            "center_lat": self.config.center_lat,
            "center_lng": self.config.center_lng,
            "status": self.status.value,
            "aggregate": self.aggregate.to_dict(),
            "points": points,
            "weak_locations": [loc.to_dict() for loc in self.weak_locations],
            "failures": [f.to_dict() for f in self.failures],
            "geocode_failures": self.geocode_failures,
            "api_cost": self.result.api_cost,
            "scan_id": str(self.scan_id) if self.scan_id else None,
            "scanned_at": self.scanned_at.isoformat(),
        }


# =============================================================================
# SERVICE
# =============================================================================

class HeatMapService:
    """
    Runs heat map scans for stored projects.

    Usage:
        async with ExternalAPIClients() as clients:
            service = HeatMapService(clients.dataforseo, clients.google_maps)
            report = await service.run_scan(project_id, "web design in doncaster", preset="quick")
    """

    def __init__(
        self,
        ranking_client,
        geocoder=None,
        settings: Optional[Settings] = None,
        options: Optional[ScanOptions] = None,
    ):
        """
        Args:
            ranking_client: DataForSEOClient (anything with get_maps_results);
                scans raise NotConfiguredError without one
            geocoder: GoogleMapsClient; weak locations are skipped without one
            settings: Settings (get_settings() when omitted)
            options: ScanOptions (built from settings when omitted)
        """
        self.settings = settings or get_settings()
        self.ranking_client = ranking_client
        self.geocoder = geocoder
        self.options = options or ScanOptions.from_settings(self.settings)
        self.orchestrator = (
            RankingScanOrchestrator(ranking_client, self.options)
            if ranking_client is not None else None
        )
        self.resolver = (
            WeakLocationResolver(geocoder, threshold=self.settings.HEATMAP_WEAK_THRESHOLD)
            if geocoder is not None else None
        )

    def _load_project(self, project_id) -> Dict[str, Any]:
        project = repository.get_project(project_id)
        if not project:
            raise ProjectNotFoundError(project_id)
        if project["latitude"] is None or project["longitude"] is None:
            raise MissingCoordinatesError(project_id)
        return project

    async def run_scan(
        self,
        project_id,
        phrase: str,
        grid_size: Optional[int] = None,
        radius_km: Optional[float] = None,
        preset: Optional[str] = None,
        combination_id=None,
        on_progress: Optional[ProgressCallback] = None,
        resolve_weak_locations: bool = True,
        persist: bool = True,
    ) -> HeatMapReport:
        """
        Scan one phrase around a project's base coordinates.

        Grid parameters come from grid_size/radius_km, falling back to the
        preset (default "quick") for whichever is missing.

        Raises:
            ProjectNotFoundError, MissingCoordinatesError, InvalidGridError
            ScanAbortedError: fatal ranking API error (successful points are
                saved) or every point failed (nothing is saved)
        """
        if self.orchestrator is None:
            raise NotConfiguredError("DataForSEO credentials not configured")

        project = self._load_project(project_id)
        phrase = phrase.strip().lower()
        if not phrase:
            raise HeatMapError("Keyword phrase is required")

        defaults = get_preset(preset or "quick")
        grid_size = grid_size if grid_size is not None else int(defaults["grid_size"])
        radius_km = radius_km if radius_km is not None else float(defaults["radius_km"])

        session = HeatMapSession()
        points = session.configure(project["latitude"], project["longitude"], grid_size, radius_km)
        target = BusinessTarget.from_project(
            project["project_name"], project.get("company_name"), project.get("blog_url")
        )

        logger.info(
            f"Heat map for project {project_id}: '{phrase}' "
            f"{grid_size}x{grid_size} grid, {radius_km} km radius"
        )

        session.begin_scan()
        try:
            result = await self.orchestrator.scan(points, phrase, target, on_progress=on_progress)
        except ScanAbortedError as e:
            session.fail(str(e), e.partial_result)
            if persist and e.partial_result is not None:
                self._save_partial_grid(project_id, phrase, session.config, e.partial_result, combination_id)
            raise

        if result.status == ScanStatus.FAILED:
            error = ScanAbortedError(
                f"Every grid point failed for '{phrase}': {result.failures[0].error}",
                partial_result=result,
            )
            logger.error(str(error))
            session.fail(str(error), result)
            raise error
        session.complete_scan(result)

        geocode_failures = 0
        if resolve_weak_locations and self.resolver is not None:
            session.begin_resolving()
            weak = await self.resolver.resolve(
                points,
                result.positions,
                base_location=project.get("base_location"),
                tracked_locations=repository.get_tracked_location_names(project_id),
                skip_indices=result.failed_indices,
            )
            geocode_failures = weak.geocode_failures
            session.complete_report(weak.locations)
        else:
            session.complete_report()

        report = HeatMapReport(
            project_id=project_id,
            phrase=phrase,
            config=session.config,
            result=result,
            aggregate=result.aggregate(),
            weak_locations=session.weak_locations,
            geocode_failures=geocode_failures,
            scanned_at=result.completed_at or datetime.utcnow(),
            high_density_threshold=self.settings.HEATMAP_HIGH_DENSITY_THRESHOLD,
        )

        if persist:
            report.scan_id = self._persist(report, combination_id)

        return report

    def _save_partial_grid(self, project_id, phrase: str, config: GridConfig, result: ScanResult, combination_id):
        checked = result.checked_grid_data()
        if not checked:
            return
        try:
            repository.save_grid_points(
                project_id, phrase, config.grid_size, config.radius_km, checked,
                combination_id=combination_id, prune=False,
            )
        except Exception as e:
            logger.error(f"Failed to save partial grid for '{phrase}': {e}")

    def _persist(self, report: HeatMapReport, combination_id=None) -> Optional[Any]:
        """Save grid rows and a history record. Returns the scan id, or None on failure."""
        grid_data = report.result.grid_data()
        config = report.config

        # Failed points keep whatever was stored for them before
        complete = report.status == ScanStatus.COMPLETE
        repository.save_grid_points(
            report.project_id, report.phrase, config.grid_size, config.radius_km,
            grid_data if complete else report.result.checked_grid_data(),
            combination_id=combination_id, prune=complete,
        )

        try:
            return repository.save_heat_map_scan(
                project_id=report.project_id,
                keyword_combination=report.phrase,
                grid_size=config.grid_size,
                radius_km=config.radius_km,
                center_lat=config.center_lat,
                center_lng=config.center_lng,
                average_position=report.aggregate.average_position,
                ranked_count=report.aggregate.ranked_count,
                not_ranked_count=report.aggregate.not_ranked_count,
                weak_locations=[loc.to_dict() for loc in report.weak_locations],
                grid_data=grid_data,
                failed_count=len(report.failures),
                status=report.status.value,
                api_cost=report.result.api_cost,
                scanned_at=report.scanned_at,
            )
        except Exception as e:
            logger.error(f"Failed to save scan history for '{report.phrase}': {e}")
            return None

    # -------------------------------------------------------------------------
    # Weak locations -> combinations
    # -------------------------------------------------------------------------

    async def add_weak_location(
        self,
        latitude: float,
        longitude: float,
        existing: Sequence[WeakLocation] = (),
    ) -> Tuple[WeakLocation, bool]:
        """Add a map-clicked town to a report's weak location list."""
        if self.resolver is None:
            raise NotConfiguredError("Google Maps API key not configured")
        return await self.resolver.add_location_at(latitude, longitude, existing)

    def seed_combinations(
        self,
        project_id,
        weak_locations: Sequence[WeakLocation],
        keywords: Optional[Sequence[str]] = None,
    ) -> int:
        """
        Track weak towns and create keyword + town combinations for them.

        Args:
            keywords: Defaults to the project's base keyword

        Returns:
            Number of new combinations
        """
        project = repository.get_project(project_id)
        if not project:
            raise ProjectNotFoundError(project_id)

        keywords = [k for k in (keywords or [project.get("base_keyword")]) if k and k.strip()]
        if not keywords:
            raise HeatMapError(f"Project {project_id} has no base keyword")
        if not weak_locations:
            return 0

        location_ids = repository.store_locations(
            project_id,
            [{"name": loc.name, "lat": loc.lat, "lng": loc.lng} for loc in weak_locations],
            source=LocationSource.HEAT_MAP,
        )

        combinations = []
        for keyword in keywords:
            for loc in weak_locations:
                name = loc.name.strip()
                combinations.append({
                    "keyword": keyword.strip(),
                    "phrase": build_phrase(keyword, name),
                    "location_id": location_ids.get(name),
                })

        created = repository.store_combinations(project_id, combinations)
        logger.info(
            f"Seeded {created} combinations from {len(weak_locations)} weak locations "
            f"for project {project_id}"
        )
        return created

    # -------------------------------------------------------------------------
    # Nearby towns
    # -------------------------------------------------------------------------

    async def find_nearby_towns(
        self,
        project_id,
        location: Optional[str] = None,
        radius_km: float = 25,
        max_results: int = 20,
    ) -> Dict[str, Any]:
        """
        Find towns around a project's base location and track them.

        Geocodes the location (project base location by default), stores the
        center coordinates on the project and adds every nearby town.
        """
        if self.geocoder is None:
            raise NotConfiguredError("Google Maps API key not configured")

        project = repository.get_project(project_id)
        if not project:
            raise ProjectNotFoundError(project_id)

        query = location or project.get("base_location")
        if not query:
            raise MissingCoordinatesError(project_id)

        center = await self.geocoder.geocode_location(query)
        if center is None:
            raise HeatMapError(f"Could not find location '{query}'")

        repository.update_project_coordinates(project_id, center.lat, center.lng)

        towns = await self.geocoder.search_nearby_towns(
            center.lat, center.lng, radius_km, max_results=max_results
        )
        ids = repository.store_locations(
            project_id,
            [town.to_dict() for town in towns],
            source=LocationSource.NEARBY_SEARCH,
        )

        logger.info(f"Found {len(towns)} towns within {radius_km} km of {center.name}")
        return {
            "center": center.to_dict(),
            "towns": [town.to_dict() for town in towns],
            "stored": len(ids),
        }

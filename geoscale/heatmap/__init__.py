"""
GeoScale - Heat Map Package

- Grid: square (or hexagonal) coordinate grids around a center
- Scanner: per-point Google Maps position checks via DataForSEO
- Classify/Aggregate: colour bands, density, average position
- Weak locations: reverse geocoded towns where the business ranks poorly
- Service: end-to-end scan for a stored project
"""

from .errors import (
    HeatMapError,
    InvalidGridError,
    InvalidStateError,
    ProjectNotFoundError,
    MissingCoordinatesError,
    LocationNotFoundError,
    NotConfiguredError,
    ScanAbortedError,
)
from .grid import (
    GridPoint,
    GridConfig,
    GRID_PRESETS,
    get_preset,
    radius_for_zoom,
    generate_grid,
    generate_hexagonal_grid,
    calculate_distance,
)
from .classify import (
    PositionBand,
    POSITION_BANDS,
    classify_position,
    position_color,
    is_weak_position,
    classify_density,
)
from .aggregate import ScanAggregate, aggregate_positions
from .matching import BusinessTarget, find_business_position, count_businesses
from .scanner import (
    ScanEstimate,
    estimate_scan,
    ProgressEstimator,
    ScanProgress,
    ScanStatus,
    PointFailure,
    ScanResult,
    ScanOptions,
    RankingScanOrchestrator,
)
from .weak_locations import WeakLocation, WeakLocationReport, WeakLocationResolver
from .combinations import build_phrase, build_phrases
from .service import ScanState, HeatMapSession, HeatMapReport, HeatMapService

__all__ = [
    # Errors
    "HeatMapError",
    "InvalidGridError",
    "InvalidStateError",
    "ProjectNotFoundError",
    "MissingCoordinatesError",
    "LocationNotFoundError",
    "NotConfiguredError",
    "ScanAbortedError",

    # Grid
    "GridPoint",
    "GridConfig",
    "GRID_PRESETS",
    "get_preset",
    "radius_for_zoom",
    "generate_grid",
    "generate_hexagonal_grid",
    "calculate_distance",

    # Classification
    "PositionBand",
    "POSITION_BANDS",
    "classify_position",
    "position_color",
    "is_weak_position",
    "classify_density",
    "ScanAggregate",
    "aggregate_positions",

    # Scanning
    "BusinessTarget",
    "find_business_position",
    "count_businesses",
    "ScanEstimate",
    "estimate_scan",
    "ProgressEstimator",
    "ScanProgress",
    "ScanStatus",
    "PointFailure",
    "ScanResult",
    "ScanOptions",
    "RankingScanOrchestrator",

    # Weak locations
    "WeakLocation",
    "WeakLocationReport",
    "WeakLocationResolver",
    "build_phrase",
    "build_phrases",

    # Service
    "ScanState",
    "HeatMapSession",
    "HeatMapReport",
    "HeatMapService",
]

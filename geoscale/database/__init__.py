"""
GeoScale Database Layer

Usage:
    from geoscale.database import init_db, create_project, get_latest_scan

    init_db()
    project_id = create_project("Dolphin ICT", base_location="Doncaster",
                                latitude=53.5228, longitude=-1.1285)
    latest = get_latest_scan(project_id, "web design in doncaster")
"""

# Models
from .models import (
    Base,
    Project,
    ProjectLocation,
    Combination,
    RankingGridPoint,
    HeatMapScan,
    CombinationStatus,
    LocationSource,
)

# Session management
from .session import (
    get_db_context,
    get_engine,
    reset_engine,
    init_db,
    check_db_connection,
)

# Repository (high-level data operations)
from .repository import (
    create_project,
    get_project,
    update_project_coordinates,
    get_project_locations,
    get_tracked_location_names,
    store_locations,
    store_combinations,
    get_combination_phrases,
    save_grid_points,
    get_grid_points,
    delete_grid_points,
    save_heat_map_scan,
    get_scan_history,
    get_latest_scan,
    get_scan_trend,
)

__all__ = [
    # Models
    "Base",
    "Project",
    "ProjectLocation",
    "Combination",
    "RankingGridPoint",
    "HeatMapScan",
    "CombinationStatus",
    "LocationSource",
    # Session
    "get_db_context",
    "get_engine",
    "reset_engine",
    "init_db",
    "check_db_connection",
    # Repository
    "create_project",
    "get_project",
    "update_project_coordinates",
    "get_project_locations",
    "get_tracked_location_names",
    "store_locations",
    "store_combinations",
    "get_combination_phrases",
    "save_grid_points",
    "get_grid_points",
    "delete_grid_points",
    "save_heat_map_scan",
    "get_scan_history",
    "get_latest_scan",
    "get_scan_trend",
]

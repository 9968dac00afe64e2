"""
API Endpoints for Heat Maps

Handles:
1. Scan cost/duration estimates and grid presets
2. Running a heat map scan for a project + phrase
3. Latest scan, scan history and trend series
4. Stored ranking grid (get / clear)
5. Seeding combinations from weak locations
6. Finding and tracking nearby towns
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from geoscale.database import repository
from geoscale.heatmap import (
    GRID_PRESETS,
    HeatMapError,
    HeatMapService,
    InvalidGridError,
    LocationNotFoundError,
    MissingCoordinatesError,
    NotConfiguredError,
    ProjectNotFoundError,
    ScanAbortedError,
    WeakLocation,
    estimate_scan,
)
from geoscale.integrations import ConfigurationError, ExternalAPIClients
from geoscale.utils.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Heat Map"])


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class EstimateResponse(BaseModel):
    """Up-front cost and duration for a grid."""
    grid_size: int
    api_calls: int
    estimated_cost: float
    estimated_seconds: float


class PresetResponse(BaseModel):
    name: str
    grid_size: int
    radius_km: float
    api_calls: int
    estimated_cost: float


class ScanRequest(BaseModel):
    """Request to run a heat map scan."""
    phrase: str = Field(..., min_length=1, max_length=500)
    grid_size: Optional[int] = Field(default=None, ge=1, le=25)
    radius_km: Optional[float] = Field(default=None, gt=0, le=100)
    preset: Optional[str] = None
    combination_id: Optional[UUID] = None
    resolve_weak_locations: bool = True


class WeakLocationModel(BaseModel):
    name: str
    position: Optional[int] = None
    lat: float
    lng: float


class SeedCombinationsRequest(BaseModel):
    """Weak towns to turn into tracked keyword + location combinations."""
    weak_locations: List[WeakLocationModel] = Field(..., min_length=1)
    keywords: Optional[List[str]] = None


class AddWeakLocationRequest(BaseModel):
    """A map click to add to a report's weak locations."""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    existing: List[WeakLocationModel] = Field(default_factory=list)


class NearbyTownsRequest(BaseModel):
    location: Optional[str] = None
    radius_km: float = Field(default=25, gt=0, le=50)
    max_results: int = Field(default=20, ge=1, le=20)


# =============================================================================
# DEPENDENCIES & HELPERS
# =============================================================================

async def get_heat_map_service():
    """Service wired to the configured external clients, closed after the request."""
    settings = get_settings()
    clients = ExternalAPIClients(settings)
    try:
        ranking_client = clients.dataforseo
    except ConfigurationError as e:
        logger.warning(f"{e} - heat map scans disabled")
        ranking_client = None
    service = HeatMapService(ranking_client, clients.google_maps, settings=settings)
    try:
        yield service
    finally:
        await clients.close()


def require_project(project_id: str) -> Dict[str, Any]:
    try:
        project = repository.get_project(project_id)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    if not project:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    return project


def to_http_error(error: HeatMapError) -> HTTPException:
    """Map domain errors to HTTP status codes."""
    if isinstance(error, ProjectNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, NotConfiguredError):
        return HTTPException(status_code=503, detail=str(error))
    if isinstance(error, (InvalidGridError, MissingCoordinatesError, LocationNotFoundError)):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, ScanAbortedError):
        partial = error.partial_result
        return HTTPException(
            status_code=502,
            detail={
                "message": str(error),
                "completed_points": partial.completed_count if partial else 0,
                "total_points": partial.total_points if partial else 0,
                "failed_points": len(partial.failures) if partial else 0,
            },
        )
    return HTTPException(status_code=400, detail=str(error))


# =============================================================================
# ESTIMATES & PRESETS
# =============================================================================

@router.get("/api/heat-map/estimate", response_model=EstimateResponse)
async def get_estimate(grid_size: int = Query(..., ge=1, le=25)):
    """Cost and duration of a scan before running it."""
    settings = get_settings()
    estimate = estimate_scan(
        grid_size,
        cost_per_call=settings.HEATMAP_COST_PER_CALL,
        ms_per_call=settings.HEATMAP_MS_PER_CALL,
        concurrency=settings.HEATMAP_CONCURRENCY,
    )
    return EstimateResponse(grid_size=grid_size, **estimate.to_dict())


@router.get("/api/heat-map/presets", response_model=List[PresetResponse])
async def list_presets():
    settings = get_settings()
    presets = []
    for name, preset in GRID_PRESETS.items():
        estimate = estimate_scan(int(preset["grid_size"]), cost_per_call=settings.HEATMAP_COST_PER_CALL)
        presets.append(PresetResponse(
            name=name,
            grid_size=int(preset["grid_size"]),
            radius_km=preset["radius_km"],
            api_calls=estimate.api_calls,
            estimated_cost=estimate.estimated_cost,
        ))
    return presets


# =============================================================================
# SCANS
# =============================================================================

@router.post("/api/projects/{project_id}/heat-map/scans")
async def run_scan(
    project_id: str,
    request: ScanRequest,
    service: HeatMapService = Depends(get_heat_map_service),
):
    """Run a heat map scan and return the full report."""
    require_project(project_id)
    try:
        report = await service.run_scan(
            project_id,
            request.phrase,
            grid_size=request.grid_size,
            radius_km=request.radius_km,
            preset=request.preset,
            combination_id=request.combination_id,
            resolve_weak_locations=request.resolve_weak_locations,
        )
    except HeatMapError as e:
        logger.warning(f"Heat map scan failed for project {project_id}: {e}")
        raise to_http_error(e)
    return report.to_dict()


@router.get("/api/projects/{project_id}/heat-map/scans/latest")
async def get_latest_scan(project_id: str, phrase: str = Query(..., min_length=1)):
    require_project(project_id)
    scan = repository.get_latest_scan(project_id, phrase.strip().lower())
    if not scan:
        raise HTTPException(status_code=404, detail=f"No heat map scans for '{phrase}'")
    return scan


@router.get("/api/projects/{project_id}/heat-map/scans")
async def get_scan_history(project_id: str, phrase: str = Query(..., min_length=1)):
    """All scans for a phrase, newest first."""
    require_project(project_id)
    scans = repository.get_scan_history(project_id, phrase.strip().lower())
    return {"scans": scans, "total": len(scans)}


@router.get("/api/projects/{project_id}/heat-map/trend")
async def get_scan_trend(project_id: str, phrase: str = Query(..., min_length=1)):
    """Average position over time, oldest first."""
    require_project(project_id)
    return {"phrase": phrase.strip().lower(), "series": repository.get_scan_trend(project_id, phrase.strip().lower())}


# =============================================================================
# STORED GRID
# =============================================================================

@router.get("/api/projects/{project_id}/heat-map/grid")
async def get_grid(project_id: str, phrase: str = Query(..., min_length=1)):
    require_project(project_id)
    points = repository.get_grid_points(project_id, phrase.strip().lower())
    return {"points": points, "total": len(points)}


@router.delete("/api/projects/{project_id}/heat-map/grid")
async def delete_grid(project_id: str, phrase: str = Query(..., min_length=1)):
    """Clear the stored grid for a phrase. Scan history is kept."""
    require_project(project_id)
    deleted = repository.delete_grid_points(project_id, phrase.strip().lower())
    return {"deleted": deleted}


# =============================================================================
# WEAK LOCATIONS & TOWNS
# =============================================================================

@router.post("/api/projects/{project_id}/heat-map/weak-locations")
async def add_weak_location(
    project_id: str,
    request: AddWeakLocationRequest,
    service: HeatMapService = Depends(get_heat_map_service),
):
    """Resolve a map click to a town and add it to the weak location list."""
    require_project(project_id)
    existing = [WeakLocation(**loc.model_dump()) for loc in request.existing]
    try:
        location, added = await service.add_weak_location(request.lat, request.lng, existing)
    except HeatMapError as e:
        raise to_http_error(e)
    return {"location": location.to_dict(), "added": added}


@router.post("/api/projects/{project_id}/heat-map/combinations")
async def seed_combinations(
    project_id: str,
    request: SeedCombinationsRequest,
    service: HeatMapService = Depends(get_heat_map_service),
):
    """Track weak towns and create keyword + town combinations for them."""
    require_project(project_id)
    weak_locations = [WeakLocation(**loc.model_dump()) for loc in request.weak_locations]
    try:
        created = service.seed_combinations(project_id, weak_locations, keywords=request.keywords)
    except HeatMapError as e:
        raise to_http_error(e)
    return {"created": created, "phrases": repository.get_combination_phrases(project_id)}


@router.post("/api/projects/{project_id}/locations/nearby")
async def find_nearby_towns(
    project_id: str,
    request: NearbyTownsRequest,
    service: HeatMapService = Depends(get_heat_map_service),
):
    require_project(project_id)
    try:
        return await service.find_nearby_towns(
            project_id,
            location=request.location,
            radius_km=request.radius_km,
            max_results=request.max_results,
        )
    except HeatMapError as e:
        raise to_http_error(e)

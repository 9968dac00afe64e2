"""
Repository Layer - Clean Interface for Data Operations

Provides simple functions to store and retrieve heat map data.
Handles all SQLAlchemy complexity internally; callers get plain dicts.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from .models import (
    Project, ProjectLocation, Combination, RankingGridPoint, HeatMapScan,
    CombinationStatus, LocationSource,
)
from .session import get_db_context

logger = logging.getLogger(__name__)

IdLike = Union[UUID, str]


def _as_uuid(value: IdLike) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


def _slugify(name: str) -> str:
    return "-".join(name.strip().lower().split())


# =============================================================================
# SERIALIZATION
# =============================================================================

def project_to_dict(project: Project) -> Dict[str, Any]:
    return {
        "id": project.id,
        "project_name": project.project_name,
        "company_name": project.company_name,
        "base_location": project.base_location,
        "latitude": project.latitude,
        "longitude": project.longitude,
        "base_keyword": project.base_keyword,
        "blog_url": project.blog_url,
        "created_at": project.created_at,
    }


def scan_to_dict(scan: HeatMapScan) -> Dict[str, Any]:
    return {
        "id": scan.id,
        "project_id": scan.project_id,
        "keyword_combination": scan.keyword_combination,
        "grid_size": scan.grid_size,
        "radius_km": scan.radius_km,
        "center_lat": scan.center_lat,
        "center_lng": scan.center_lng,
        "average_position": scan.average_position,
        "ranked_count": scan.ranked_count,
        "not_ranked_count": scan.not_ranked_count,
        "failed_count": scan.failed_count,
        "status": scan.status,
        "weak_locations": scan.weak_locations or [],
        "grid_data": scan.grid_data,
        "api_cost": scan.api_cost,
        "scanned_at": scan.scanned_at,
    }


def grid_point_to_dict(row: RankingGridPoint) -> Dict[str, Any]:
    return {
        "grid_x": row.grid_x,
        "grid_y": row.grid_y,
        "latitude": row.latitude,
        "longitude": row.longitude,
        "position": row.position,
        "business_count": row.business_count,
        "search_location": row.search_location,
        "grid_size": row.grid_size,
        "radius_km": row.radius_km,
        "updated_at": row.updated_at,
    }


# =============================================================================
# PROJECTS & LOCATIONS
# =============================================================================

def create_project(
    project_name: str,
    company_name: Optional[str] = None,
    base_location: Optional[str] = None,
    latitude: Optional[float] = None,
    longitude: Optional[float] = None,
    base_keyword: Optional[str] = None,
    blog_url: Optional[str] = None,
) -> UUID:
    """Create a project. Returns its id."""
    with get_db_context() as db:
        project = Project(
            project_name=project_name,
            company_name=company_name,
            base_location=base_location,
            latitude=latitude,
            longitude=longitude,
            base_keyword=base_keyword,
            blog_url=blog_url,
        )
        db.add(project)
        db.flush()
        logger.info(f"Created project {project.id} ({project_name})")
        return project.id


def get_project(project_id: IdLike) -> Optional[Dict[str, Any]]:
    with get_db_context() as db:
        project = db.get(Project, _as_uuid(project_id))
        return project_to_dict(project) if project else None


def update_project_coordinates(project_id: IdLike, latitude: float, longitude: float) -> bool:
    """Set a project's base coordinates. Returns False if the project is missing."""
    with get_db_context() as db:
        project = db.get(Project, _as_uuid(project_id))
        if not project:
            return False
        project.latitude = latitude
        project.longitude = longitude
        return True


def get_project_locations(project_id: IdLike) -> List[Dict[str, Any]]:
    with get_db_context() as db:
        rows = (
            db.query(ProjectLocation)
            .filter(ProjectLocation.project_id == _as_uuid(project_id))
            .order_by(ProjectLocation.created_at, ProjectLocation.name)
            .all()
        )
        return [
            {
                "id": r.id,
                "name": r.name,
                "slug": r.slug,
                "place_id": r.place_id,
                "lat": r.lat,
                "lng": r.lng,
                "region": r.region,
                "country": r.country,
                "source": r.source.value if r.source else None,
            }
            for r in rows
        ]


def get_tracked_location_names(project_id: IdLike) -> List[str]:
    """Names of towns already tracked for a project."""
    return [loc["name"] for loc in get_project_locations(project_id)]


def store_locations(
    project_id: IdLike,
    locations: List[Dict[str, Any]],
    source: LocationSource = LocationSource.MANUAL,
) -> Dict[str, UUID]:
    """
    Store towns for a project, skipping ones already tracked (by slug).

    Args:
        locations: [{name, place_id?, lat?, lng?, region?, country?}, ...]

    Returns:
        Town name -> location id for every requested town (new and existing)
    """
    pid = _as_uuid(project_id)
    with get_db_context() as db:
        existing = {
            row.slug: row.id
            for row in db.query(ProjectLocation).filter(ProjectLocation.project_id == pid).all()
        }
        ids: Dict[str, UUID] = {}
        created = 0

        for loc in locations:
            name = (loc.get("name") or "").strip()
            if not name:
                continue
            slug = _slugify(name)
            if slug in existing:
                ids[name] = existing[slug]
                continue

            row = ProjectLocation(
                project_id=pid,
                place_id=loc.get("place_id"),
                name=name,
                slug=slug,
                lat=loc.get("lat"),
                lng=loc.get("lng"),
                region=loc.get("region"),
                country=loc.get("country") or "GB",
                source=source,
            )
            db.add(row)
            db.flush()
            existing[slug] = row.id
            ids[name] = row.id
            created += 1

        logger.info(
            f"Stored {created} new locations for project {pid} "
            f"({len(ids) - created} were duplicates)"
        )
        return ids


def store_combinations(project_id: IdLike, combinations: List[Dict[str, Any]]) -> int:
    """
    Store keyword + location combinations, skipping existing phrases.

    Args:
        combinations: [{keyword, phrase, location_id?}, ...]

    Returns:
        Number of combinations created
    """
    pid = _as_uuid(project_id)
    with get_db_context() as db:
        existing = {
            phrase for (phrase,) in
            db.query(Combination.phrase).filter(Combination.project_id == pid).all()
        }
        created = 0
        for combo in combinations:
            phrase = combo["phrase"].lower()
            if phrase in existing:
                continue
            db.add(Combination(
                project_id=pid,
                location_id=combo.get("location_id"),
                keyword=combo["keyword"],
                phrase=phrase,
                status=CombinationStatus.PENDING,
            ))
            existing.add(phrase)
            created += 1

        logger.info(f"Created {created} combinations for project {pid}")
        return created


def get_combination_phrases(project_id: IdLike) -> List[str]:
    with get_db_context() as db:
        return [
            phrase for (phrase,) in
            db.query(Combination.phrase)
            .filter(Combination.project_id == _as_uuid(project_id))
            .order_by(Combination.phrase)
            .all()
        ]


# =============================================================================
# RANKING GRID
# =============================================================================

def save_grid_points(
    project_id: IdLike,
    keyword_combination: str,
    grid_size: int,
    radius_km: float,
    grid_data: List[Dict[str, Any]],
    combination_id: Optional[IdLike] = None,
    prune: bool = True,
) -> int:
    """
    Upsert per-point results for a phrase.

    Rows are keyed on (project, phrase, grid_x, grid_y). With prune, rows left
    over from a previous, larger grid are removed so the stored grid matches
    the latest scan.

    Returns:
        Number of rows written
    """
    pid = _as_uuid(project_id)
    cid = _as_uuid(combination_id) if combination_id else None

    with get_db_context() as db:
        existing = {
            (row.grid_x, row.grid_y): row
            for row in db.query(RankingGridPoint).filter(
                RankingGridPoint.project_id == pid,
                RankingGridPoint.keyword_combination == keyword_combination,
            ).all()
        }

        written = set()
        for point in grid_data:
            key = (point["grid_x"], point["grid_y"])
            row = existing.get(key)
            if row is None:
                row = RankingGridPoint(
                    project_id=pid,
                    keyword_combination=keyword_combination,
                    grid_x=point["grid_x"],
                    grid_y=point["grid_y"],
                )
                db.add(row)

            row.location_keyword_id = cid
            row.latitude = point["latitude"]
            row.longitude = point["longitude"]
            row.position = point.get("position")
            row.business_count = point.get("business_count")
            row.search_location = f"{point['latitude']:.4f},{point['longitude']:.4f}"
            row.grid_size = grid_size
            row.radius_km = radius_km
            row.updated_at = datetime.utcnow()
            written.add(key)

        for key, row in existing.items():
            if prune and key not in written:
                db.delete(row)

        logger.debug(f"Saved {len(written)} grid points for '{keyword_combination}'")
        return len(written)


def get_grid_points(project_id: IdLike, keyword_combination: str) -> List[Dict[str, Any]]:
    """Stored grid for a phrase, row by row."""
    with get_db_context() as db:
        rows = (
            db.query(RankingGridPoint)
            .filter(
                RankingGridPoint.project_id == _as_uuid(project_id),
                RankingGridPoint.keyword_combination == keyword_combination,
            )
            .order_by(RankingGridPoint.grid_y.asc(), RankingGridPoint.grid_x.asc())
            .all()
        )
        return [grid_point_to_dict(r) for r in rows]


def delete_grid_points(project_id: IdLike, keyword_combination: str) -> int:
    """Delete the stored grid for a phrase. Scan history is kept."""
    with get_db_context() as db:
        deleted = (
            db.query(RankingGridPoint)
            .filter(
                RankingGridPoint.project_id == _as_uuid(project_id),
                RankingGridPoint.keyword_combination == keyword_combination,
            )
            .delete(synchronize_session=False)
        )
        logger.info(f"Deleted {deleted} grid points for '{keyword_combination}'")
        return deleted


# =============================================================================
# SCAN HISTORY
# =============================================================================

def save_heat_map_scan(
    project_id: IdLike,
    keyword_combination: str,
    grid_size: int,
    radius_km: float,
    center_lat: float,
    center_lng: float,
    average_position: int,
    ranked_count: int,
    not_ranked_count: int,
    weak_locations: List[Dict[str, Any]],
    grid_data: Optional[List[Dict[str, Any]]] = None,
    failed_count: int = 0,
    status: str = "complete",
    api_cost: float = 0.0,
    scanned_at: Optional[datetime] = None,
) -> UUID:
    """Store a scan snapshot. Returns its id."""
    with get_db_context() as db:
        scan = HeatMapScan(
            project_id=_as_uuid(project_id),
            keyword_combination=keyword_combination,
            grid_size=grid_size,
            radius_km=radius_km,
            center_lat=center_lat,
            center_lng=center_lng,
            average_position=average_position,
            ranked_count=ranked_count,
            not_ranked_count=not_ranked_count,
            failed_count=failed_count,
            status=status,
            weak_locations=weak_locations,
            grid_data=grid_data,
            api_cost=api_cost,
            scanned_at=scanned_at or datetime.utcnow(),
        )
        db.add(scan)
        db.flush()
        logger.info(
            f"Saved heat map scan {scan.id} for '{keyword_combination}': "
            f"avg #{average_position}, {ranked_count} ranked, {len(weak_locations)} weak locations"
        )
        return scan.id


def get_scan_history(project_id: IdLike, keyword_combination: str) -> List[Dict[str, Any]]:
    """All scans for a phrase, newest first."""
    with get_db_context() as db:
        scans = (
            db.query(HeatMapScan)
            .filter(
                HeatMapScan.project_id == _as_uuid(project_id),
                HeatMapScan.keyword_combination == keyword_combination,
            )
            .order_by(HeatMapScan.scanned_at.desc())
            .all()
        )
        return [scan_to_dict(s) for s in scans]


def get_latest_scan(project_id: IdLike, keyword_combination: str) -> Optional[Dict[str, Any]]:
    """Most recent scan for a phrase, or None."""
    with get_db_context() as db:
        scan = (
            db.query(HeatMapScan)
            .filter(
                HeatMapScan.project_id == _as_uuid(project_id),
                HeatMapScan.keyword_combination == keyword_combination,
            )
            .order_by(HeatMapScan.scanned_at.desc())
            .first()
        )
        return scan_to_dict(scan) if scan else None


def get_scan_trend(project_id: IdLike, keyword_combination: str) -> List[Dict[str, Any]]:
    """Aggregate series for trend charts, oldest first."""
    with get_db_context() as db:
        scans = (
            db.query(HeatMapScan)
            .filter(
                HeatMapScan.project_id == _as_uuid(project_id),
                HeatMapScan.keyword_combination == keyword_combination,
            )
            .order_by(HeatMapScan.scanned_at.asc())
            .all()
        )
        return [
            {
                "scanned_at": s.scanned_at,
                "average_position": s.average_position,
                "ranked_count": s.ranked_count,
                "not_ranked_count": s.not_ranked_count,
                "grid_size": s.grid_size,
                "radius_km": s.radius_km,
            }
            for s in scans
        ]

"""
Geographic Grid Generator

Generates a grid of latitude/longitude points around a center location
for heat map ranking analysis.

Distances use the flat-earth approximation the ranking scan has always used:
1 degree latitude = 111 km, 1 degree longitude = 111 km * cos(latitude).
Good enough for radii up to a few dozen kilometres.
"""

import math
from dataclasses import dataclass, asdict
from typing import Dict, List

from .errors import InvalidGridError

KM_PER_DEGREE = 111.0
EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class GridPoint:
    """One sampled location. x/y are column/row indices (0 to grid_size-1)."""
    x: int
    y: int
    latitude: float
    longitude: float

    @property
    def search_location(self) -> str:
        """Short coordinate label stored with persisted grid rows."""
        return f"{self.latitude:.4f},{self.longitude:.4f}"

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class GridConfig:
    """Center, size and coverage of a grid."""
    center_lat: float
    center_lng: float
    grid_size: int
    radius_km: float

    @property
    def point_count(self) -> int:
        return self.grid_size * self.grid_size


# Predefined grid configurations for quick selection
GRID_PRESETS: Dict[str, Dict[str, float]] = {
    "quick": {"grid_size": 5, "radius_km": 5},            # 25 points, town center
    "standard": {"grid_size": 7, "radius_km": 10},        # 49 points, city area
    "detailed": {"grid_size": 10, "radius_km": 15},       # 100 points, metro area
    "comprehensive": {"grid_size": 15, "radius_km": 25},  # 225 points, region
}


def get_preset(name: str) -> Dict[str, float]:
    """Look up a preset by name."""
    try:
        return dict(GRID_PRESETS[name])
    except KeyError:
        raise InvalidGridError(
            f"Unknown grid preset '{name}'. Choose from: {', '.join(GRID_PRESETS)}"
        ) from None


def radius_for_zoom(zoom: float) -> int:
    """Approximate preset radius (km) for a map zoom level."""
    if zoom >= 12:
        return 5
    if zoom >= 11:
        return 10
    if zoom >= 10:
        return 15
    return 25


def km_to_latitude(km: float) -> float:
    """Convert kilometers to degrees latitude."""
    return km / KM_PER_DEGREE


def km_to_longitude(km: float, latitude: float) -> float:
    """Convert kilometers to degrees longitude at given latitude."""
    return km / (KM_PER_DEGREE * math.cos(math.radians(latitude)))


def validate_grid_config(config: GridConfig) -> None:
    """
    Reject grids that cannot be laid out.

    Raises:
        InvalidGridError: size/radius not positive, or coordinates out of range
    """
    if isinstance(config.grid_size, bool) or not isinstance(config.grid_size, int):
        raise InvalidGridError(f"grid_size must be an integer, got {config.grid_size!r}")
    if config.grid_size <= 0:
        raise InvalidGridError(f"grid_size must be positive, got {config.grid_size}")
    if not math.isfinite(config.radius_km) or config.radius_km <= 0:
        raise InvalidGridError(f"radius_km must be positive, got {config.radius_km}")
    if not math.isfinite(config.center_lat) or not -90 < config.center_lat < 90:
        raise InvalidGridError(f"center latitude out of range: {config.center_lat}")
    if not math.isfinite(config.center_lng) or not -180 <= config.center_lng <= 180:
        raise InvalidGridError(f"center longitude out of range: {config.center_lng}")


def generate_grid(
    center_lat: float,
    center_lng: float,
    grid_size: int,
    radius_km: float,
) -> List[GridPoint]:
    """
    Generate a square grid of points around a center location.

    Points cover a square of side 2 * radius_km, row by row from the
    south-west corner. A grid_size of 1 is just the center.

    Returns:
        grid_size * grid_size GridPoints
    """
    config = GridConfig(center_lat, center_lng, grid_size, radius_km)
    validate_grid_config(config)

    if grid_size == 1:
        return [GridPoint(0, 0, center_lat, center_lng)]

    spacing_lat = km_to_latitude(radius_km * 2) / (grid_size - 1)
    spacing_lng = km_to_longitude(radius_km * 2, center_lat) / (grid_size - 1)

    start_lat = center_lat - km_to_latitude(radius_km)
    start_lng = center_lng - km_to_longitude(radius_km, center_lat)

    return [
        GridPoint(
            x=x,
            y=y,
            latitude=start_lat + y * spacing_lat,
            longitude=start_lng + x * spacing_lng,
        )
        for y in range(grid_size)
        for x in range(grid_size)
    ]


def generate_hexagonal_grid(
    center_lat: float,
    center_lng: float,
    grid_size: int,
    radius_km: float,
) -> List[GridPoint]:
    """
    Generate a hexagonal grid for more even coverage.

    Rows are 0.75 of the square spacing apart and every odd row is shifted
    east by half a column.
    """
    config = GridConfig(center_lat, center_lng, grid_size, radius_km)
    validate_grid_config(config)

    if grid_size == 1:
        return [GridPoint(0, 0, center_lat, center_lng)]

    hex_height = km_to_latitude(radius_km * 2) / (grid_size - 1)
    hex_width = km_to_longitude(radius_km * 2, center_lat) / (grid_size - 1)
    vert_spacing = hex_height * 0.75

    start_lng = center_lng - hex_width * (grid_size - 1) / 2
    start_lat = center_lat - vert_spacing * (grid_size - 1) / 2

    points = []
    for row in range(grid_size):
        offset = 0 if row % 2 == 0 else hex_width / 2
        for col in range(grid_size):
            points.append(GridPoint(
                x=col,
                y=row,
                latitude=start_lat + row * vert_spacing,
                longitude=start_lng + col * hex_width + offset,
            ))
    return points


def calculate_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance between two points in kilometers."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

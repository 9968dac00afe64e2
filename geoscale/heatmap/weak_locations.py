"""
Weak-Location Resolver

Turns poorly ranked grid points into town names the project could target
with location-specific pages.

Lookups are sequential; the only caching is de-duplication within one scan.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .classify import DEFAULT_WEAK_THRESHOLD, is_weak_position
from .errors import LocationNotFoundError
from .grid import GridPoint

logger = logging.getLogger(__name__)


def location_key(name: Optional[str]) -> str:
    """Comparison key for town names ("Doncaster, UK" == "doncaster")."""
    return (name or "").split(",")[0].strip().casefold()


@dataclass
class WeakLocation:
    """A town where the business ranks poorly (position None = not ranked)."""
    name: str
    position: Optional[int]
    lat: float
    lng: float

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "position": self.position, "lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WeakLocation":
        return cls(
            name=data["name"],
            position=data.get("position"),
            lat=data.get("lat"),
            lng=data.get("lng"),
        )


@dataclass
class WeakLocationReport:
    """Outcome of resolving one scan's weak points."""
    locations: List[WeakLocation] = field(default_factory=list)
    points_checked: int = 0
    geocode_failures: int = 0
    excluded: List[str] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        return [loc.name for loc in self.locations]


class WeakLocationResolver:
    """
    Reverse geocodes weak grid points into a de-duplicated town list.

    Args:
        geocoder: Anything with async reverse_geocode_locality(lat, lng)
        threshold: Positions at or beyond this (or not ranked) are weak
    """

    def __init__(self, geocoder, threshold: int = DEFAULT_WEAK_THRESHOLD):
        self.geocoder = geocoder
        self.threshold = threshold

    async def resolve(
        self,
        points: Sequence[GridPoint],
        positions: Sequence[Optional[int]],
        base_location: Optional[str] = None,
        tracked_locations: Iterable[str] = (),
        skip_indices: Iterable[int] = (),
    ) -> WeakLocationReport:
        """
        Resolve weak points to towns.

        Points in skip_indices (failed lookups) are never geocoded. The
        project's base location and already-tracked towns are excluded.
        The first point that resolves to a town wins; later points resolving
        to the same name are dropped.
        """
        if len(points) != len(positions):
            raise ValueError(
                f"points ({len(points)}) and positions ({len(positions)}) differ in length"
            )

        excluded_keys: Set[str] = {location_key(name) for name in tracked_locations if name}
        if base_location:
            excluded_keys.add(location_key(base_location))

        report = WeakLocationReport()
        seen: Set[str] = set()
        excluded_seen: Set[str] = set()

        skipped = set(skip_indices)

        for index, (point, position) in enumerate(zip(points, positions)):
            if index in skipped or not is_weak_position(position, self.threshold):
                continue

            report.points_checked += 1
            try:
                name = await self.geocoder.reverse_geocode_locality(point.latitude, point.longitude)
            except Exception as e:
                report.geocode_failures += 1
                logger.warning(f"Geocoding error at {point.search_location}: {e}")
                continue

            if not name:
                continue

            key = location_key(name)
            if key in excluded_keys:
                if key not in excluded_seen:
                    excluded_seen.add(key)
                    report.excluded.append(name)
                continue
            if key in seen:
                continue

            seen.add(key)
            report.locations.append(WeakLocation(
                name=name,
                position=position,
                lat=point.latitude,
                lng=point.longitude,
            ))

        logger.info(
            f"Weak locations: {len(report.locations)} towns from {report.points_checked} weak points "
            f"({report.geocode_failures} geocode failures)"
        )
        return report

    async def add_location_at(
        self,
        latitude: float,
        longitude: float,
        existing: Sequence[WeakLocation] = (),
    ) -> Tuple[WeakLocation, bool]:
        """
        Resolve an arbitrary coordinate (e.g. a map click) into a report entry.

        Returns:
            (location, added) - added is False when the town is already listed

        Raises:
            LocationNotFoundError: No town name at this coordinate
        """
        name = await self.geocoder.reverse_geocode_locality(latitude, longitude)
        if not name:
            raise LocationNotFoundError(
                f"Could not identify town name at {latitude:.4f},{longitude:.4f}"
            )

        for loc in existing:
            if location_key(loc.name) == location_key(name):
                return loc, False

        return WeakLocation(name=name, position=None, lat=latitude, lng=longitude), True

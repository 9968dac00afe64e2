"""
Scan aggregation.

Average position is the mean of ranked points only, rounded half-up to a
whole position. A scan where nothing ranked has an average of 0.
"""

import math
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class ScanAggregate:
    """Summary of one scan's positions."""
    average_position: int
    ranked_count: int
    not_ranked_count: int
    total_points: int
    mean_position: Optional[float] = None

    @property
    def has_rankings(self) -> bool:
        return self.ranked_count > 0

    @property
    def visibility_percent(self) -> float:
        """Share of grid points where the business ranks at all."""
        if not self.total_points:
            return 0.0
        return round(100.0 * self.ranked_count / self.total_points, 1)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["visibility_percent"] = self.visibility_percent
        return data


def round_half_up(value: float) -> int:
    """Round .5 upwards (Python's round() rounds half to even)."""
    return int(math.floor(value + 0.5))


def aggregate_positions(positions: Sequence[Optional[int]]) -> ScanAggregate:
    """
    Aggregate per-point positions.

    Args:
        positions: One entry per grid point; None means not ranked

    Returns:
        ScanAggregate

    Raises:
        ValueError: If a position is not a positive integer
    """
    ranked: List[int] = []
    for position in positions:
        if position is None:
            continue
        if isinstance(position, bool) or not isinstance(position, int) or position < 1:
            raise ValueError(f"Rank positions must be positive integers, got {position!r}")
        ranked.append(position)

    mean = sum(ranked) / len(ranked) if ranked else None

    return ScanAggregate(
        average_position=round_half_up(mean) if mean is not None else 0,
        ranked_count=len(ranked),
        not_ranked_count=len(positions) - len(ranked),
        total_points=len(positions),
        mean_position=mean,
    )

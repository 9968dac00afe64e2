"""
Position and density classification for heat map rendering.

Thresholds default to the values the product has always shipped with
(weak >= 4, high density >= 20) and can be overridden per call or through
Settings.
"""

from dataclasses import dataclass
from typing import Optional

DEFAULT_WEAK_THRESHOLD = 4
DEFAULT_HIGH_DENSITY_THRESHOLD = 20


@dataclass(frozen=True)
class PositionBand:
    """Colour bucket for a rank position."""
    label: str
    color: str          # hex, for map markers
    css_class: str      # utility class, for legends and tables


NOT_RANKED = PositionBand("not_ranked", "#9CA3AF", "bg-gray-400")
TOP_3 = PositionBand("top_3", "#22C55E", "bg-green-500")
PAGE_1_MIDDLE = PositionBand("page_1_middle", "#FB923C", "bg-orange-400")
PAGE_1_BOTTOM = PositionBand("page_1_bottom", "#F97316", "bg-orange-500")
PAGE_2 = PositionBand("page_2", "#F87171", "bg-red-400")
PAGE_3_PLUS = PositionBand("page_3_plus", "#DC2626", "bg-red-600")

POSITION_BANDS = (NOT_RANKED, TOP_3, PAGE_1_MIDDLE, PAGE_1_BOTTOM, PAGE_2, PAGE_3_PLUS)


def classify_position(position: Optional[int]) -> PositionBand:
    """Bucket a rank position (None = not ranked)."""
    if position is None:
        return NOT_RANKED
    if position <= 3:
        return TOP_3
    if position <= 6:
        return PAGE_1_MIDDLE
    if position <= 10:
        return PAGE_1_BOTTOM
    if position <= 20:
        return PAGE_2
    return PAGE_3_PLUS


def position_color(position: Optional[int]) -> str:
    """Hex colour for a map marker."""
    return classify_position(position).color


def is_weak_position(position: Optional[int], threshold: int = DEFAULT_WEAK_THRESHOLD) -> bool:
    """A point is weak when the business is not ranked or ranks at/after threshold."""
    return position is None or position >= threshold


def classify_density(
    business_count: Optional[int],
    high_threshold: int = DEFAULT_HIGH_DENSITY_THRESHOLD,
) -> str:
    """'high', 'low' or 'unknown' local business density."""
    if business_count is None:
        return "unknown"
    return "high" if business_count >= high_threshold else "low"

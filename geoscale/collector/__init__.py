"""
GeoScale - Ranking Data Collection

DataForSEO client used by the heat map scanner for per-coordinate
Google Maps rank checks.
"""

from .client import (
    DataForSEOClient,
    DataForSEOError,
    RetryConfig,
    format_location_coordinate,
    safe_get_result,
)

__all__ = [
    "DataForSEOClient",
    "DataForSEOError",
    "RetryConfig",
    "format_location_coordinate",
    "safe_get_result",
]

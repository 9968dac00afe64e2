"""
External API Integrations

Clients for third-party APIs used by heat map scans:
- Google Maps: reverse geocoding, town search
- Config: client factories built from Settings
"""

from .geocoding import (
    GoogleMapsClient,
    GeocodingError,
    PlaceResult,
    extract_locality,
)
from .config import (
    ConfigurationError,
    ExternalAPIClients,
    create_dataforseo_client,
    create_google_maps_client,
)

__all__ = [
    # Google Maps
    "GoogleMapsClient",
    "GeocodingError",
    "PlaceResult",
    "extract_locality",
    # Config
    "ConfigurationError",
    "ExternalAPIClients",
    "create_dataforseo_client",
    "create_google_maps_client",
]

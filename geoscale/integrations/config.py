"""
External API Configuration

Factory functions and a small manager for the external API clients used by
heat map scans. Credentials come from Settings (environment / .env).

Required environment variables:
- DATAFORSEO_LOGIN / DATAFORSEO_PASSWORD: ranking checks
- GOOGLE_MAPS_API_KEY: geocoding (optional; weak locations are skipped without it)
"""

import logging
from typing import Optional

from geoscale.collector.client import DataForSEOClient
from geoscale.utils.config import Settings, get_settings

from .geocoding import GoogleMapsClient

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when a required external API is not configured."""


def create_dataforseo_client(settings: Optional[Settings] = None) -> DataForSEOClient:
    """
    Create a DataForSEO client from settings.

    Raises:
        ConfigurationError: If credentials are missing
    """
    settings = settings or get_settings()
    if not settings.has_dataforseo:
        raise ConfigurationError("DataForSEO credentials not configured")

    return DataForSEOClient(
        login=settings.DATAFORSEO_LOGIN,
        password=settings.DATAFORSEO_PASSWORD,
        max_connections=max(2, settings.HEATMAP_CONCURRENCY * 2),
        timeout=float(settings.API_TIMEOUT),
    )


def create_google_maps_client(settings: Optional[Settings] = None) -> Optional[GoogleMapsClient]:
    """
    Create a Google Maps client.

    Returns:
        GoogleMapsClient or None if not configured
    """
    settings = settings or get_settings()
    if not settings.has_google_maps:
        logger.warning("Google Maps API key not configured")
        return None

    return GoogleMapsClient(
        api_key=settings.GOOGLE_MAPS_API_KEY,
        timeout=float(settings.API_TIMEOUT),
    )


class ExternalAPIClients:
    """
    Lazily created external API clients.

    Usage:
        async with ExternalAPIClients() as clients:
            items = await clients.dataforseo.get_maps_results(...)
            if clients.google_maps:
                town = await clients.google_maps.reverse_geocode_locality(...)
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._dataforseo: Optional[DataForSEOClient] = None
        self._google_maps: Optional[GoogleMapsClient] = None

    @property
    def dataforseo(self) -> DataForSEOClient:
        """Get or create DataForSEO client."""
        if self._dataforseo is None:
            self._dataforseo = create_dataforseo_client(self.settings)
            logger.info("Initialized DataForSEO client")
        return self._dataforseo

    @property
    def google_maps(self) -> Optional[GoogleMapsClient]:
        """Get or create Google Maps client (None when not configured)."""
        if self._google_maps is None and self.settings.has_google_maps:
            self._google_maps = create_google_maps_client(self.settings)
            logger.info("Initialized Google Maps client")
        return self._google_maps

    async def close(self):
        """Close all clients."""
        if self._dataforseo:
            await self._dataforseo.close()
            self._dataforseo = None

        if self._google_maps:
            await self._google_maps.close()
            self._google_maps = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

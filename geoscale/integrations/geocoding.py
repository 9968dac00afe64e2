"""
Google Maps Platform Client

Geocoding for the heat map:
- Reverse geocoding (coordinate -> town) for weak-location reports
- Text search (town -> coordinate) for project base locations
- Nearby search for towns around a base location

APIs:
- Geocoding API: https://developers.google.com/maps/documentation/geocoding
- Places API (New): https://developers.google.com/maps/documentation/places/web-service/op-overview
"""

import asyncio
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
PLACES_TEXT_SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"
PLACES_NEARBY_SEARCH_URL = "https://places.googleapis.com/v1/places:searchNearby"

# Places API caps nearby search at 50km
MAX_NEARBY_RADIUS_METERS = 50000
MAX_NEARBY_RESULTS = 20

TOWN_TYPES = ("locality", "postal_town")

# Text search is biased towards the UK, where the product's customers are
UK_CENTER = {"latitude": 54.0, "longitude": -2.0}
UK_BIAS_RADIUS_METERS = 500000.0


class GeocodingError(Exception):
    """Custom exception for Google Maps API errors."""

    def __init__(self, message: str, status_code: int = None, response: dict = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 2
    initial_delay: float = 0.5
    max_delay: float = 5.0
    exponential_base: float = 2.0
    retryable_status_codes: tuple = (429, 500, 502, 503, 504)


@dataclass
class PlaceResult:
    """A town returned by the Places API."""

    place_id: str
    name: str
    lat: float
    lng: float
    region: Optional[str] = None
    country: str = "GB"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def extract_locality(address_components: List[Dict[str, Any]]) -> Optional[str]:
    """Town name from Geocoding API address components (locality or postal_town)."""
    for component in address_components or []:
        types = component.get("types") or []
        if any(t in types for t in TOWN_TYPES):
            return component.get("long_name") or component.get("short_name")
    return None


def extract_region(address_components: List[Dict[str, Any]]) -> Optional[str]:
    """County/state from Places API (New) address components."""
    for component in address_components or []:
        types = component.get("types") or []
        if "administrative_area_level_2" in types or "administrative_area_level_1" in types:
            return component.get("longText") or component.get("shortText")
    return None


def extract_country(address_components: List[Dict[str, Any]]) -> str:
    """Country code from Places API (New) address components."""
    for component in address_components or []:
        if "country" in (component.get("types") or []):
            return component.get("shortText") or "GB"
    return "GB"


def parse_place(place: Dict[str, Any]) -> PlaceResult:
    """Convert a Places API (New) place object."""
    location = place.get("location") or {}
    components = place.get("addressComponents") or []
    return PlaceResult(
        place_id=place.get("id", ""),
        name=(place.get("displayName") or {}).get("text", ""),
        lat=location.get("latitude"),
        lng=location.get("longitude"),
        region=extract_region(components),
        country=extract_country(components),
    )


class GoogleMapsClient:
    """
    Async client for the Google Geocoding and Places APIs.

    Usage:
        client = GoogleMapsClient(api_key="your_api_key")

        town = await client.reverse_geocode_locality(53.52, -1.13)
        # town = "Doncaster"

        await client.close()
    """

    def __init__(
        self,
        api_key: str,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize Google Maps client.

        Args:
            api_key: Google Maps Platform API key
            retry_config: Retry configuration (optional)
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.api_key = api_key
        self.retry_config = retry_config or RetryConfig()

        self._client = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self._closed = False

    # ------------------------------------------------------------------
    # Geocoding API
    # ------------------------------------------------------------------

    async def reverse_geocode(self, latitude: float, longitude: float) -> List[Dict[str, Any]]:
        """
        Reverse geocode a coordinate.

        Returns:
            Geocoding API results (empty list when nothing is there, e.g. at sea)
        """
        if self._closed:
            raise GeocodingError("Client has been closed")

        data = await self._request_with_retry(
            "GET",
            GEOCODE_URL,
            params={"latlng": f"{latitude},{longitude}", "key": self.api_key},
        )

        status = data.get("status")
        if status == "ZERO_RESULTS":
            return []
        if status != "OK":
            raise GeocodingError(
                f"Geocoding failed: {status} {data.get('error_message', '')}".strip(),
                response=data,
            )
        return data.get("results") or []

    async def reverse_geocode_locality(self, latitude: float, longitude: float) -> Optional[str]:
        """Town name at a coordinate, or None when no locality is found."""
        results = await self.reverse_geocode(latitude, longitude)
        if not results:
            return None
        return extract_locality(results[0].get("address_components"))

    # ------------------------------------------------------------------
    # Places API (New)
    # ------------------------------------------------------------------

    async def geocode_location(self, query: str) -> Optional[PlaceResult]:
        """
        Resolve a town/address to its first Places match.

        Args:
            query: Free text location, e.g. "Doncaster"

        Returns:
            PlaceResult or None when the location is not found
        """
        if self._closed:
            raise GeocodingError("Client has been closed")

        data = await self._request_with_retry(
            "POST",
            PLACES_TEXT_SEARCH_URL,
            payload={
                "textQuery": query,
                "locationBias": {
                    "circle": {
                        "center": UK_CENTER,
                        "radius": UK_BIAS_RADIUS_METERS,
                    },
                },
            },
            headers=self._places_headers(
                "places.id,places.displayName,places.location,places.addressComponents"
            ),
        )

        places = data.get("places") or []
        if not places:
            return None
        return parse_place(places[0])

    async def search_nearby_towns(
        self,
        latitude: float,
        longitude: float,
        radius_km: float,
        max_results: int = MAX_NEARBY_RESULTS,
    ) -> List[PlaceResult]:
        """
        Find towns within a radius of a coordinate.

        The radius is capped at the Places API maximum of 50km.
        """
        if self._closed:
            raise GeocodingError("Client has been closed")

        radius_meters = min(radius_km * 1000, MAX_NEARBY_RADIUS_METERS)

        data = await self._request_with_retry(
            "POST",
            PLACES_NEARBY_SEARCH_URL,
            payload={
                "locationRestriction": {
                    "circle": {
                        "center": {"latitude": latitude, "longitude": longitude},
                        "radius": float(radius_meters),
                    },
                },
                "includedTypes": list(TOWN_TYPES),
                "maxResultCount": min(max_results, MAX_NEARBY_RESULTS),
            },
            headers=self._places_headers(
                "places.id,places.displayName,places.location,places.types,places.addressComponents"
            ),
        )

        return [parse_place(p) for p in data.get("places") or []]

    def _places_headers(self, field_mask: str) -> Dict[str, str]:
        return {
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": field_mask,
        }

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Make request with retry logic."""
        config = self.retry_config
        last_exception = None
        delay = config.initial_delay

        for attempt in range(config.max_retries + 1):
            try:
                if method == "POST":
                    response = await self._client.post(url, json=payload, headers=headers)
                elif method == "GET":
                    response = await self._client.get(url, params=params, headers=headers)
                else:
                    raise ValueError(f"Unsupported method: {method}")

                if response.status_code >= 400:
                    try:
                        error_data = response.json() if response.content else {}
                    except ValueError:
                        error_data = {"raw": response.text}

                    error = GeocodingError(
                        f"API error: {response.status_code}",
                        status_code=response.status_code,
                        response=error_data,
                    )
                    if response.status_code not in config.retryable_status_codes:
                        raise error
                    last_exception = error
                else:
                    return response.json()

            except httpx.TimeoutException as e:
                last_exception = GeocodingError(f"Request timed out: {e}")
            except httpx.HTTPError as e:
                last_exception = GeocodingError(f"HTTP error: {e}")

            if attempt < config.max_retries:
                logger.warning(
                    f"Google Maps request failed (attempt {attempt + 1}/{config.max_retries + 1}): "
                    f"{last_exception}. Retrying in {delay}s..."
                )
                await asyncio.sleep(delay)
                delay = min(delay * config.exponential_base, config.max_delay)

        raise last_exception

    async def close(self):
        """Close the HTTP client."""
        if not self._closed:
            await self._client.aclose()
            self._closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

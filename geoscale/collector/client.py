"""
DataForSEO API Client

Async HTTP client with:
- Connection pooling
- Automatic retry with exponential backoff
- Graceful error handling
- Request/response logging
- Running cost total (DataForSEO reports a cost per response)
"""

import asyncio
import httpx
import base64
import logging
from typing import Any, Dict, List, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

MAPS_LIVE_ENDPOINT = "serp/google/maps/live/advanced"

# Account-level rejections: bad credentials, no funds, blocked account
FATAL_API_CODES = (40100, 40101, 40200, 40201, 40210, 40300)
FATAL_HTTP_CODES = (401, 402, 403)
# Per-request rate limits
RATE_LIMIT_API_CODES = (40202, 40203)
NO_SEARCH_RESULTS_CODE = 40102


def safe_get_result(response: Dict, get_items: bool = True) -> Any:
    """
    Safely extract result data from DataForSEO API response.

    Handles cases where result is None, empty, or malformed.

    Args:
        response: Raw API response dict
        get_items: If True, returns items list. If False, returns first result object.

    Returns:
        List of items, result dict, or empty list/dict on failure
    """
    try:
        tasks = response.get("tasks")
        if not tasks or not isinstance(tasks, list):
            return [] if get_items else {}

        task = tasks[0] if tasks else {}
        result = task.get("result")

        if not result or not isinstance(result, list):
            return [] if get_items else {}

        first_result = result[0] if result else {}
        if not first_result or not isinstance(first_result, dict):
            return [] if get_items else {}

        if get_items:
            items = first_result.get("items")
            return items if items and isinstance(items, list) else []
        else:
            return first_result
    except (TypeError, IndexError, KeyError) as e:
        logger.debug(f"Safe result extraction failed: {e}")
        return [] if get_items else {}


def format_location_coordinate(latitude: float, longitude: float, zoom: int = 15) -> str:
    """Format a coordinate the way the Maps SERP endpoint expects it."""
    return f"{latitude:.6f},{longitude:.6f},{zoom}z"


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0
    retryable_status_codes: tuple = (429, 500, 502, 503, 504)


class DataForSEOError(Exception):
    """Custom exception for DataForSEO API errors."""
    def __init__(self, message: str, status_code: int = None, response: dict = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response

    @property
    def http_status(self) -> Optional[int]:
        """
        HTTP-style status for this error.

        DataForSEO reports API/task errors as five digit codes (40100,
        40200, ...) whose first three digits follow HTTP semantics.
        """
        if self.status_code is None:
            return None
        if self.status_code >= 10000:
            return self.status_code // 100
        return self.status_code

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429 or self.status_code in RATE_LIMIT_API_CODES

    @property
    def is_fatal(self) -> bool:
        """Authentication or billing rejections; retrying another point won't help."""
        if self.status_code is None:
            return False
        if self.status_code >= 10000:
            return self.status_code in FATAL_API_CODES
        return self.status_code in FATAL_HTTP_CODES


class DataForSEOClient:
    """
    Async client for DataForSEO API.

    Usage:
        client = DataForSEOClient(login="your_login", password="your_password")

        items = await client.get_maps_results(
            "web design in doncaster", 53.5228, -1.1285,
        )

        await client.close()
    """

    BASE_URL = "https://api.dataforseo.com/v3"

    def __init__(
        self,
        login: str,
        password: str,
        retry_config: Optional[RetryConfig] = None,
        max_connections: int = 10,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize DataForSEO client.

        Args:
            login: DataForSEO login email
            password: DataForSEO API password
            retry_config: Retry configuration (optional)
            max_connections: Maximum concurrent connections
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.login = login
        self.password = password
        self.retry_config = retry_config or RetryConfig()
        self.total_cost = 0.0
        self.request_count = 0

        # Create auth header
        credentials = f"{login}:{password}"
        auth_token = base64.b64encode(credentials.encode()).decode()

        # Configure HTTP client with connection pooling
        self._client = httpx.AsyncClient(
            base_url=self.BASE_URL,
            headers={
                "Authorization": f"Basic {auth_token}",
                "Content-Type": "application/json",
            },
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max(1, max_connections // 2),
            ),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def post(
        self,
        endpoint: str,
        data: List[Dict[str, Any]],
        retry: bool = True
    ) -> Dict[str, Any]:
        """
        Make POST request to DataForSEO API.

        Args:
            endpoint: API endpoint path (e.g., "serp/google/maps/live/advanced")
            data: Request payload (list of task objects)
            retry: Whether to retry on failure

        Returns:
            API response as dictionary

        Raises:
            DataForSEOError: On API error
        """
        if self._closed:
            raise DataForSEOError("Client is closed")

        url = f"/{endpoint}"

        if retry:
            return await self._request_with_retry(url, data)
        else:
            return await self._make_request(url, data)

    async def _make_request(self, url: str, data: List[Dict]) -> Dict[str, Any]:
        """Make a single HTTP request."""
        logger.debug(f"POST {url}")

        response = await self._client.post(url, json=data)
        self.request_count += 1

        if response.status_code != 200:
            try:
                body = response.json() if response.content else None
            except ValueError:
                body = None
            raise DataForSEOError(
                f"API request failed: {response.status_code}",
                status_code=response.status_code,
                response=body,
            )

        result = response.json()
        self.total_cost += float(result.get("cost") or 0)

        # Check for API-level errors
        if result.get("status_code") != 20000:
            error_msg = result.get("status_message", "Unknown error")
            raise DataForSEOError(
                f"API error: {error_msg}",
                status_code=result.get("status_code"),
                response=result,
            )

        # Task-level errors are left to the caller; log them for debugging
        tasks = result.get("tasks", [])
        for task in tasks:
            task_status = task.get("status_code")
            if task_status not in [20000, 20100]:
                error_msg = task.get("status_message", "Task error")
                logger.warning(
                    f"DataForSEO task error in {url}: {error_msg} (status: {task_status})"
                )

        return result

    async def _request_with_retry(self, url: str, data: List[Dict]) -> Dict[str, Any]:
        """Make request with automatic retry on failure."""
        last_exception = None
        delay = self.retry_config.initial_delay

        for attempt in range(self.retry_config.max_retries + 1):
            try:
                return await self._make_request(url, data)

            except DataForSEOError as e:
                last_exception = e

                # Don't retry client errors (4xx except rate limits)
                status = e.http_status
                if status and 400 <= status < 500 and not e.is_rate_limited:
                    raise

                if attempt < self.retry_config.max_retries:
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.retry_config.max_retries + 1}): {e}. "
                        f"Retrying in {delay}s..."
                    )

            except httpx.TimeoutException as e:
                last_exception = DataForSEOError(f"Request timed out: {e}")

                if attempt < self.retry_config.max_retries:
                    logger.warning(
                        f"Timeout (attempt {attempt + 1}). Retrying in {delay}s..."
                    )

            except httpx.HTTPError as e:
                last_exception = DataForSEOError(f"HTTP error: {e}")

                if attempt < self.retry_config.max_retries:
                    logger.warning(
                        f"HTTP error (attempt {attempt + 1}). Retrying in {delay}s..."
                    )

            if attempt < self.retry_config.max_retries:
                await asyncio.sleep(delay)
                delay = min(
                    delay * self.retry_config.exponential_base,
                    self.retry_config.max_delay
                )

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

    # ========================================================================
    # GOOGLE MAPS SERP
    # ========================================================================

    async def get_maps_results(
        self,
        keyword: str,
        latitude: float,
        longitude: float,
        zoom: int = 15,
        language_code: str = "en",
        depth: int = 20,
    ) -> List[Dict[str, Any]]:
        """
        Get Google Maps results for a keyword as seen from one coordinate.

        The Maps endpoint does not support batching, so every grid point
        costs one request.

        Args:
            keyword: Search phrase (e.g. "web design in doncaster")
            latitude: Searcher latitude
            longitude: Searcher longitude
            zoom: Map zoom level sent with the coordinate
            language_code: Language code (default: "en")
            depth: Number of results to return (default: 20)

        Returns:
            List of result items (empty for "No Search Results.")

        Raises:
            DataForSEOError: When the request or the task itself fails
        """
        result = await self.post(
            MAPS_LIVE_ENDPOINT,
            [{
                "keyword": keyword,
                "location_coordinate": format_location_coordinate(latitude, longitude, zoom),
                "language_code": language_code,
                "depth": depth,
            }]
        )

        tasks = result.get("tasks") or []
        task = tasks[0] if tasks else {}
        task_status = task.get("status_code")
        if task_status == NO_SEARCH_RESULTS_CODE:
            logger.debug(f"No Maps results for '{keyword}' at {latitude},{longitude}")
            return []
        if task_status != 20000:
            raise DataForSEOError(
                f"Maps task failed: {task.get('status_message', 'Unknown error')}",
                status_code=task_status,
                response=result,
            )

        return safe_get_result(result, get_items=True)

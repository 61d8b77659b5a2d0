"""
Shared HTTP client infrastructure for all league source adapters.

Provides BaseApiClient with rate limiting and translation of transport
failures into the SourceError taxonomy. Retrying is the orchestrator's job:
a client call makes exactly one request.

Usage:
    class MyClient(BaseApiClient):
        BASE_URL = "https://api.example.com"

        def __init__(self, api_key: str):
            super().__init__(
                headers={"Authorization": f"Bearer {api_key}"},
                requests_per_minute=60,
            )

        async def get_data(self) -> dict:
            return await self._get("/data")
"""

import asyncio
import logging
import time
from typing import Any

import httpx

from .errors import AuthExpired, MalformedResponse, RateLimited, Unavailable

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------

class RateLimiter:
    """Fixed-interval throttle for async API calls."""

    def __init__(self, requests_per_minute: int = 600):
        self.delay = 60.0 / requests_per_minute
        self._last_request = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until we can make a request."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request
            if elapsed < self.delay:
                await asyncio.sleep(self.delay - elapsed)
            self._last_request = time.monotonic()


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Base client
# ---------------------------------------------------------------------------

class BaseApiClient:
    """
    Async HTTP client base with rate limiting and error translation.

    Subclasses set BASE_URL and SOURCE_ID, configure auth, and add
    source-specific methods. Use as an async context manager:

        async with MyClient(api_key="...") as client:
            data = await client._get("/endpoint")

    Or with lazy initialisation (for long-lived ingestion tasks):

        client = MyClient(api_key="...")
        data = await client._get("/endpoint")  # client auto-creates on first use
        await client.close()
    """

    BASE_URL: str = ""
    SOURCE_ID: str = ""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        requests_per_minute: int = 600,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = (base_url or self.BASE_URL).rstrip("/")
        self._default_headers = headers or {}
        self._default_params = params or {}
        self._rate_limiter = RateLimiter(requests_per_minute)
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # -- Lifecycle -----------------------------------------------------------

    async def __aenter__(self) -> "BaseApiClient":
        self._client = self._build_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout),
            transport=self._transport,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        """Return the HTTP client, lazily creating it if needed."""
        if self._client is None or self._client.is_closed:
            self._client = self._build_client()
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # -- HTTP methods --------------------------------------------------------

    async def _get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make a rate-limited GET request."""
        return await self._request("GET", path, params=params)

    async def _post(
        self,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make a rate-limited POST request."""
        return await self._request("POST", path, params=params, json=json)

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Make one HTTP request and decode its JSON body.

        Raises:
            AuthExpired: 401/403
            RateLimited: 429, with Retry-After when the source sends one
            Unavailable: 5xx, connection failures and timeouts
            MalformedResponse: other 4xx, or a body that is not a JSON object
        """
        merged_params = {**self._default_params, **(params or {})}
        source = self.SOURCE_ID or None

        await self._rate_limiter.acquire()
        try:
            response = await self.client.request(
                method=method,
                url=path,
                params=merged_params,
                json=json,
            )
        except httpx.TimeoutException as e:
            raise Unavailable(f"Request to {path} timed out: {e}", source) from e
        except httpx.RequestError as e:
            raise Unavailable(f"Request to {path} failed: {e}", source) from e

        status = response.status_code
        if status in (401, 403):
            raise AuthExpired(f"HTTP {status}: credentials rejected for {path}", source)
        if status == 429:
            retry_after = _parse_retry_after(response.headers.get("retry-after"))
            raise RateLimited(
                f"HTTP 429: rate limit exceeded for {path}",
                source,
                retry_after=retry_after,
            )
        if status >= 500:
            raise Unavailable(f"HTTP {status}: {response.text[:200]}", source)
        if status >= 400:
            raise MalformedResponse(f"HTTP {status}: {response.text[:200]}", source)

        try:
            body = response.json()
        except ValueError as e:
            raise MalformedResponse(f"Response from {path} is not JSON", source) from e
        if not isinstance(body, dict):
            raise MalformedResponse(f"Response from {path} is not a JSON object", source)
        return body

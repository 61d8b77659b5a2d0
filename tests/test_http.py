"""
Tests for the shared HTTP client: status mapping into the SourceError
taxonomy and the request throttle.
"""

import time

import httpx
import pytest

from laxstats.core.errors import AuthExpired, MalformedResponse, RateLimited, Unavailable
from laxstats.core.http import BaseApiClient, RateLimiter, _parse_retry_after


def make_client(handler) -> BaseApiClient:
    return BaseApiClient(
        base_url="https://stats.example.test",
        headers={"x-api-key": "secret"},
        params={"api_token": "tok"},
        requests_per_minute=60000,
        transport=httpx.MockTransport(handler),
    )


class TestStatusMapping:
    """HTTP status codes become source errors."""

    async def test_success_returns_json_object(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = request.url
            seen["key"] = request.headers.get("x-api-key")
            return httpx.Response(200, json={"data": [1, 2]})

        async with make_client(handler) as client:
            body = await client._get("/matches", {"page": 2})

        assert body == {"data": [1, 2]}
        assert seen["key"] == "secret"
        assert seen["url"].params["api_token"] == "tok"
        assert seen["url"].params["page"] == "2"

    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_rejected(self, status):
        async with make_client(lambda r: httpx.Response(status)) as client:
            with pytest.raises(AuthExpired):
                await client._get("/matches")

    async def test_rate_limited_carries_retry_after(self):
        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "12"})

        async with make_client(handler) as client:
            with pytest.raises(RateLimited) as exc_info:
                await client._get("/matches")
        assert exc_info.value.retry_after == 12.0
        assert exc_info.value.transient

    async def test_server_error_is_unavailable(self):
        async with make_client(lambda r: httpx.Response(503, text="maintenance")) as client:
            with pytest.raises(Unavailable):
                await client._get("/matches")

    async def test_connection_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(Unavailable):
                await client._get("/matches")

    async def test_timeout_is_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with make_client(handler) as client:
            with pytest.raises(Unavailable):
                await client._get("/matches")

    async def test_client_error_is_malformed(self):
        async with make_client(lambda r: httpx.Response(404, text="nope")) as client:
            with pytest.raises(MalformedResponse):
                await client._get("/matches")

    async def test_non_json_body_is_malformed(self):
        async with make_client(lambda r: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(MalformedResponse):
                await client._get("/matches")

    async def test_json_array_body_is_malformed(self):
        async with make_client(lambda r: httpx.Response(200, json=[1, 2, 3])) as client:
            with pytest.raises(MalformedResponse):
                await client._get("/matches")


class TestRetryAfter:
    def test_parse(self):
        assert _parse_retry_after("30") == 30.0
        assert _parse_retry_after("-5") == 0.0
        assert _parse_retry_after(None) is None
        assert _parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") is None


class TestRateLimiter:
    async def test_spaces_requests(self):
        limiter = RateLimiter(requests_per_minute=1200)  # 50ms apart
        start = time.monotonic()
        for _ in range(3):
            await limiter.acquire()
        assert time.monotonic() - start >= 0.09

    async def test_lazy_client_recreated_after_close(self):
        client = make_client(lambda r: httpx.Response(200, json={}))
        await client._get("/a")
        await client.close()
        assert await client._get("/b") == {}
        await client.close()

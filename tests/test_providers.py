"""
Tests for the league source adapters against mocked HTTP transports.
"""

import json
from datetime import date

import httpx
import pytest

from laxstats.core.config import Settings
from laxstats.core.errors import AuthExpired, MalformedResponse
from laxstats.core.types import SourceId
from laxstats.providers import get_adapter
from laxstats.providers.nll import NLLAdapter
from laxstats.providers.pll import PLLAdapter
from laxstats.providers.wla import WLAAdapter


def transport(handler) -> httpx.MockTransport:
    return httpx.MockTransport(handler)


# =============================================================================
# PLL
# =============================================================================


class TestPLLAdapter:
    async def test_pages_by_offset(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            requests.append(body["variables"])
            items = [{"id": 100 + i, "eventType": "GOAL"} for i in range(2)]
            return httpx.Response(200, json={"data": {"playLogs": {"total": 5, "items": items}}})

        adapter = PLLAdapter(
            token="t", season=2025, page_size=2, requests_per_minute=60000, transport=transport(handler)
        )
        result = await adapter.fetch_batch("2")
        await adapter.close()

        assert requests == [{"year": 2025, "offset": 2, "limit": 2}]
        assert [r.source_local_id for r in result.records] == ["100", "101"]
        assert all(r.source_id is SourceId.PLL for r in result.records)
        assert result.next_cursor == "4"
        assert result.has_more

    async def test_last_page(self):
        def handler(request):
            return httpx.Response(200, json={"data": {"playLogs": {"total": 1, "items": [{"id": 1}]}}})

        adapter = PLLAdapter(token="t", season=2025, requests_per_minute=60000, transport=transport(handler))
        result = await adapter.fetch_batch(None)
        await adapter.close()

        assert result.next_cursor == "1"
        assert not result.has_more

    async def test_unauthenticated_graphql_error(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"errors": [{"message": "token expired", "extensions": {"code": "UNAUTHENTICATED"}}]},
            )

        adapter = PLLAdapter(token="t", season=2025, requests_per_minute=60000, transport=transport(handler))
        with pytest.raises(AuthExpired):
            await adapter.fetch_batch(None)
        await adapter.close()

    async def test_other_graphql_error_is_malformed(self):
        def handler(request):
            return httpx.Response(200, json={"errors": [{"message": "Cannot query field"}]})

        adapter = PLLAdapter(token="t", season=2025, requests_per_minute=60000, transport=transport(handler))
        with pytest.raises(MalformedResponse):
            await adapter.fetch_batch(None)
        await adapter.close()

    def test_bad_cursor(self):
        from laxstats.providers.nll import _parse_page
        from laxstats.providers.pll import _parse_offset

        with pytest.raises(MalformedResponse):
            _parse_offset("abc")
        with pytest.raises(MalformedResponse):
            _parse_offset("-1")
        with pytest.raises(MalformedResponse):
            _parse_page("0")


# =============================================================================
# NLL
# =============================================================================


NLL_MATCH = {
    "id": "M7",
    "season": "2025-26",
    "plays": [
        {"id": "p1", "period": 1, "time": "14:10", "type": "GOAL", "team_id": "503", "player_id": "9001"},
    ],
    "player_stats": [
        {"player_id": "9001", "player_name": "Alpha Attack", "team_id": "503", "jersey": 10, "G": 1, "A": 2, "PTS": 3},
    ],
}


class TestNLLAdapter:
    async def test_slices_match_into_play_and_box_records(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            seen["key"] = request.headers["x-api-key"]
            return httpx.Response(200, json={"data": [NLL_MATCH], "meta": {"has_more": True}})

        adapter = NLLAdapter(api_key="k", season=2025, requests_per_minute=60000, transport=transport(handler))
        result = await adapter.fetch_batch(None)
        await adapter.close()

        assert seen["key"] == "k"
        assert seen["params"]["page"] == "1"
        assert seen["params"]["status"] == "final"
        ids = [r.source_local_id for r in result.records]
        assert ids == ["play:p1", "box:M7:9001:G", "box:M7:9001:A"]
        assert result.records[1].payload["value"] == 1
        assert result.next_cursor == "2"
        assert result.has_more

    async def test_cursor_stays_on_last_page(self):
        def handler(request):
            return httpx.Response(200, json={"data": [], "meta": {"has_more": False}})

        adapter = NLLAdapter(api_key="k", season=2025, requests_per_minute=60000, transport=transport(handler))
        result = await adapter.fetch_batch("3")
        await adapter.close()

        assert result.records == []
        assert result.next_cursor == "3"
        assert not result.has_more

    async def test_missing_data_is_malformed(self):
        adapter = NLLAdapter(
            api_key="k",
            season=2025,
            requests_per_minute=60000,
            transport=transport(lambda r: httpx.Response(200, json={"matches": []})),
        )
        with pytest.raises(MalformedResponse):
            await adapter.fetch_batch(None)
        await adapter.close()


# =============================================================================
# WLA
# =============================================================================


class TestWLAAdapter:
    async def test_follows_next_cursor(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(
                200,
                json={"data": [{"event_id": 55}, {"event_id": 56}], "meta": {"next_cursor": "c2"}},
            )

        adapter = WLAAdapter(api_token="tok", season=2025, requests_per_minute=60000, transport=transport(handler))
        result = await adapter.fetch_batch("c1")
        await adapter.close()

        assert seen["params"]["api_token"] == "tok"
        assert seen["params"]["cursor"] == "c1"
        assert [r.source_local_id for r in result.records] == ["55", "56"]
        assert result.next_cursor == "c2"
        assert result.has_more

    async def test_end_of_feed_keeps_cursor(self):
        def handler(request):
            return httpx.Response(200, json={"data": [], "meta": {"next_cursor": None}})

        adapter = WLAAdapter(api_token="tok", season=2025, requests_per_minute=60000, transport=transport(handler))
        result = await adapter.fetch_batch("c9")
        await adapter.close()

        assert result.next_cursor == "c9"
        assert not result.has_more

    async def test_event_without_id_is_malformed(self):
        adapter = WLAAdapter(
            api_token="tok",
            season=2025,
            requests_per_minute=60000,
            transport=transport(lambda r: httpx.Response(200, json={"data": [{"action": "G"}]})),
        )
        with pytest.raises(MalformedResponse):
            await adapter.fetch_batch(None)
        await adapter.close()


# =============================================================================
# Factory
# =============================================================================


class TestGetAdapter:
    def test_builds_configured_adapters(self):
        settings = Settings(
            pll_graphql_token="p",
            nll_api_key=None,
            wla_api_token="w",
            current_season=2026,
            batch_size=50,
        )
        pll = get_adapter("PLL", settings=settings)
        nll = get_adapter(SourceId.NLL, settings=settings)
        wla = get_adapter("WLA", season=2024, settings=settings)

        assert isinstance(pll, PLLAdapter) and pll.is_configured()
        assert pll.season == 2026
        assert pll.page_size == 50
        assert isinstance(nll, NLLAdapter) and not nll.is_configured()
        assert isinstance(wla, WLAAdapter) and wla.season == 2024

    def test_unknown_source(self):
        with pytest.raises(ValueError):
            get_adapter("MLL", settings=Settings())

    def test_every_registered_source_has_an_adapter(self):
        from laxstats.core.seasons import active_sources
        from laxstats.core.types import SOURCE_REGISTRY

        settings = Settings()
        for source_id in SOURCE_REGISTRY:
            assert get_adapter(source_id, settings=settings).source_id.value == source_id
        # Every registered source is polled at some point in the year
        polled = set(active_sources(date(2025, 1, 10))) | set(active_sources(date(2025, 7, 1)))
        assert {s.value for s in polled} == set(SOURCE_REGISTRY)

"""
Tests for the in-memory canonical store.

The PostgreSQL store is exercised by the same scenarios in test_postgres.py
when a database is configured.
"""

import pytest

from conftest import pll_record

from laxstats.core.errors import ConstraintViolation
from laxstats.core.models import Checkpoint, EntityRef, Event, EventFilter, PendingReview, derive_event_id
from laxstats.core.types import EntityKind, EventKind, SourceId


def make_event(local_id: str, team_id: int = 1, player_id: int | None = 1, game_id: str = "G1", season: int = 2025) -> Event:
    return Event(
        event_id=derive_event_id(SourceId.PLL, local_id),
        source_id=SourceId.PLL,
        source_local_id=local_id,
        season_id=season,
        game_id=game_id,
        period=1,
        clock_seconds=60,
        kind=EventKind.goal,
        team_ref=EntityRef(kind=EntityKind.team, canonical_id=team_id, source_id=SourceId.PLL, source_local_id="T"),
        player_ref=(
            EntityRef(kind=EntityKind.player, canonical_id=player_id, source_id=SourceId.PLL, source_local_id="P")
            if player_id is not None
            else None
        ),
    )


async def collect(iterator) -> list:
    return [item async for item in iterator]


class TestUpsert:
    async def test_insert_is_idempotent(self, store):
        events = [make_event("1"), make_event("2")]
        assert await store.upsert(events) == 2
        assert await store.upsert(events) == 0
        assert len(await collect(store.query_events())) == 2

    async def test_unknown_entity_rejects_whole_batch(self, store):
        with pytest.raises(ConstraintViolation) as exc_info:
            await store.upsert([make_event("1"), make_event("2", player_id=99)])
        assert exc_info.value.constraint == "player_exists"
        assert await collect(store.query_events()) == []

    async def test_persist_batch_writes_checkpoint(self, store):
        checkpoint = Checkpoint(source_id=SourceId.PLL, last_cursor="100")
        assert await store.persist_batch([make_event("1")], [], checkpoint) == 1
        assert (await store.get_checkpoint(SourceId.PLL)).last_cursor == "100"

    async def test_failed_batch_leaves_checkpoint(self, store):
        await store.persist_batch([], [], Checkpoint(source_id=SourceId.PLL, last_cursor="5"))
        with pytest.raises(ConstraintViolation):
            await store.persist_batch(
                [make_event("1", team_id=42)], [], Checkpoint(source_id=SourceId.PLL, last_cursor="10")
            )
        assert (await store.get_checkpoint(SourceId.PLL)).last_cursor == "5"


class TestQueries:
    async def test_filters(self, store):
        await store.upsert([
            make_event("1", game_id="G1"),
            make_event("2", game_id="G2", player_id=2),
            make_event("3", game_id="G2", player_id=None, team_id=2, season=2024),
        ])

        by_game = await collect(store.query_events(EventFilter(game_id="G2")))
        assert {e.source_local_id for e in by_game} == {"2", "3"}
        by_player = await collect(store.query_events(EventFilter(player_id=1)))
        assert [e.source_local_id for e in by_player] == ["1"]
        by_season = await collect(store.query_events(EventFilter(season_id=2024, team_id=2)))
        assert [e.source_local_id for e in by_season] == ["3"]


class TestPendingAndRuns:
    async def test_pending_roundtrip(self, store):
        record = pll_record(5, player_id="P-X")
        item = PendingReview(
            source_id=SourceId.PLL,
            source_local_id=record.source_local_id,
            kind=EntityKind.player,
            unresolved_local_id="P-X",
            reason="No canonical player",
            payload=record.payload,
        )
        assert await store.add_pending([item, item]) == 2
        pending = await store.list_pending(SourceId.PLL)
        assert len(pending) == 1
        assert pending[0].payload["playerId"] == "P-X"
        assert await store.list_pending(SourceId.NLL) == []

        assert await store.remove_pending(SourceId.PLL, ["5", "missing"]) == 1
        assert await store.list_pending() == []

    async def test_runs_newest_first(self, store):
        await store.record_run({"source_id": "PLL", "status": "success"})
        await store.record_run({"source_id": "NLL", "status": "degraded"})
        await store.record_run({"source_id": "PLL", "status": "malformed"})

        runs = await store.list_runs(limit=2)
        assert [r["status"] for r in runs] == ["malformed", "degraded"]
        pll_runs = await store.list_runs(SourceId.PLL)
        assert [r["status"] for r in pll_runs] == ["malformed", "success"]

    async def test_add_entity_assigns_ids_per_kind(self, store):
        team = await store.add_entity(EntityKind.team, "Expansion")
        player = await store.add_entity(EntityKind.player, "Rookie")
        assert team.canonical_id == 4
        assert player.canonical_id == 5

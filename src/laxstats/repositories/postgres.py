"""
PostgreSQL canonical store.

Idempotency comes from primary keys plus ``ON CONFLICT DO NOTHING``:
re-inserting an event or box-score line is a no-op that counts zero.
Identity constraints are real foreign keys, so a record pointing at an
unknown entity fails the whole transaction and surfaces as
ConstraintViolation.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Iterable, Optional

import psycopg
from psycopg import errors as pg_errors
from psycopg.types.json import Json
from psycopg_pool import PoolTimeout

from ..core.errors import ConstraintViolation, StoreUnavailable
from ..core.models import (
    BoxScoreLine,
    CanonicalEntity,
    Checkpoint,
    EntityRef,
    Event,
    EventFilter,
    IdentityLink,
    PendingReview,
)
from ..core.types import EntityKind, EventKind, SourceId
from .base import CanonicalStore

if TYPE_CHECKING:
    from ..pg_async import AsyncPostgresDB

logger = logging.getLogger(__name__)


INSERT_EVENT = """
    INSERT INTO events (
        event_id, source_id, source_local_id, season_id, game_id, period,
        clock_seconds, kind, team_id, team_source_local_id, player_id,
        player_source_local_id, description
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (event_id) DO NOTHING
"""

INSERT_LINE = """
    INSERT INTO box_score_lines (
        line_key, source_id, season_id, game_id, player_id,
        player_source_local_id, stat_name, value
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (line_key) DO NOTHING
"""

UPSERT_CHECKPOINT = """
    INSERT INTO checkpoints (source_id, last_cursor, last_success_at)
    VALUES (%s, %s, %s)
    ON CONFLICT (source_id) DO UPDATE SET
        last_cursor = excluded.last_cursor,
        last_success_at = excluded.last_success_at
"""


def _event_params(event: Event) -> tuple:
    player = event.player_ref
    return (
        event.event_id,
        event.source_id.value,
        event.source_local_id,
        event.season_id,
        event.game_id,
        event.period,
        event.clock_seconds,
        event.kind.value,
        event.team_ref.canonical_id,
        event.team_ref.source_local_id,
        player.canonical_id if player else None,
        player.source_local_id if player else None,
        event.description,
    )


def _line_params(line: BoxScoreLine) -> tuple:
    return (
        line.line_key,
        line.source_id.value,
        line.season_id,
        line.game_id,
        line.player_ref.canonical_id,
        line.player_ref.source_local_id,
        line.stat_name,
        line.value,
    )


def _row_to_event(row: dict[str, Any]) -> Event:
    source_id = SourceId(row["source_id"])
    player_ref = None
    if row["player_id"] is not None:
        player_ref = EntityRef(
            kind=EntityKind.player,
            canonical_id=row["player_id"],
            source_id=source_id,
            source_local_id=row["player_source_local_id"],
        )
    return Event(
        event_id=row["event_id"],
        source_id=source_id,
        source_local_id=row["source_local_id"],
        season_id=row["season_id"],
        game_id=row["game_id"],
        period=row["period"],
        clock_seconds=row["clock_seconds"],
        kind=EventKind(row["kind"]),
        team_ref=EntityRef(
            kind=EntityKind.team,
            canonical_id=row["team_id"],
            source_id=source_id,
            source_local_id=row["team_source_local_id"],
        ),
        player_ref=player_ref,
        description=row["description"],
    )


def _row_to_line(row: dict[str, Any]) -> BoxScoreLine:
    source_id = SourceId(row["source_id"])
    return BoxScoreLine(
        source_id=source_id,
        season_id=row["season_id"],
        game_id=row["game_id"],
        player_ref=EntityRef(
            kind=EntityKind.player,
            canonical_id=row["player_id"],
            source_id=source_id,
            source_local_id=row["player_source_local_id"],
        ),
        stat_name=row["stat_name"],
        value=row["value"],
    )


def _filter_clause(filter: Optional[EventFilter], *, lines: bool = False) -> tuple[str, list[Any]]:
    """Build a WHERE clause (with leading keyword) for an EventFilter."""
    if filter is None:
        return "", []

    conditions: list[str] = []
    params: list[Any] = []
    if filter.source_id is not None:
        conditions.append("source_id = %s")
        params.append(filter.source_id.value)
    if filter.season_id is not None:
        conditions.append("season_id = %s")
        params.append(filter.season_id)
    if filter.game_id is not None:
        conditions.append("game_id = %s")
        params.append(filter.game_id)
    if filter.player_id is not None:
        conditions.append("player_id = %s")
        params.append(filter.player_id)
    if filter.team_id is not None:
        if lines:
            # Box score lines carry no team
            conditions.append("FALSE")
        else:
            conditions.append("team_id = %s")
            params.append(filter.team_id)

    if not conditions:
        return "", []
    return "WHERE " + " AND ".join(conditions), params


class PostgresStore(CanonicalStore):
    """CanonicalStore on PostgreSQL via psycopg's async pool."""

    def __init__(self, db: "AsyncPostgresDB"):
        self.db = db

    @asynccontextmanager
    async def _translate_errors(self):
        """Map psycopg failures onto the StoreError taxonomy."""
        try:
            yield
        except (pg_errors.ForeignKeyViolation, pg_errors.UniqueViolation, pg_errors.CheckViolation) as e:
            constraint = e.diag.constraint_name or ""
            raise ConstraintViolation(f"Constraint {constraint} violated: {e}", constraint=constraint, cause=e) from e
        except (psycopg.OperationalError, PoolTimeout) as e:
            raise StoreUnavailable(f"Store unavailable: {e}", cause=e) from e

    async def initialize(self) -> None:
        async with self._translate_errors():
            await self.db.open()

    async def close(self) -> None:
        await self.db.close()

    # =========================================================================
    # Events and box scores
    # =========================================================================

    async def _insert(self, cur: psycopg.AsyncCursor, events: Iterable[Event], lines: Iterable[BoxScoreLine]) -> int:
        inserted = 0
        for event in events:
            await cur.execute(INSERT_EVENT, _event_params(event))
            inserted += max(cur.rowcount, 0)
        for line in lines:
            await cur.execute(INSERT_LINE, _line_params(line))
            inserted += max(cur.rowcount, 0)
        return inserted

    async def upsert(self, events: Iterable[Event], lines: Iterable[BoxScoreLine] = ()) -> int:
        async with self._translate_errors():
            async with self.db.transaction() as cur:
                return await self._insert(cur, events, lines)

    async def persist_batch(
        self,
        events: Iterable[Event],
        lines: Iterable[BoxScoreLine],
        checkpoint: Checkpoint,
    ) -> int:
        async with self._translate_errors():
            async with self.db.transaction() as cur:
                inserted = await self._insert(cur, events, lines)
                await cur.execute(
                    UPSERT_CHECKPOINT,
                    (checkpoint.source_id.value, checkpoint.last_cursor, checkpoint.last_success_at),
                )
        logger.debug(f"{checkpoint.source_id.value}: persisted batch ({inserted} new), cursor={checkpoint.last_cursor!r}")
        return inserted

    async def _stream(self, query: str, params: list[Any]) -> AsyncIterator[dict[str, Any]]:
        async with self._translate_errors():
            async with self.db.connection() as conn:
                # Server-side cursor keeps memory flat over large scans
                async with conn.cursor(name="laxstats_scan") as cur:
                    await cur.execute(query, params)
                    async for row in cur:
                        yield row

    async def query_events(self, filter: Optional[EventFilter] = None) -> AsyncIterator[Event]:
        where, params = _filter_clause(filter)
        async for row in self._stream(f"SELECT * FROM events {where} ORDER BY seq", params):
            yield _row_to_event(row)

    async def query_box_scores(self, filter: Optional[EventFilter] = None) -> AsyncIterator[BoxScoreLine]:
        where, params = _filter_clause(filter, lines=True)
        async for row in self._stream(f"SELECT * FROM box_score_lines {where} ORDER BY seq", params):
            yield _row_to_line(row)

    # =========================================================================
    # Checkpoints
    # =========================================================================

    async def get_checkpoint(self, source_id: SourceId) -> Optional[Checkpoint]:
        async with self._translate_errors():
            row = await self.db.fetchone(
                "SELECT source_id, last_cursor, last_success_at FROM checkpoints WHERE source_id = %s",
                (source_id.value,),
            )
        return Checkpoint(**row) if row else None

    async def list_checkpoints(self) -> list[Checkpoint]:
        async with self._translate_errors():
            rows = await self.db.fetchall(
                "SELECT source_id, last_cursor, last_success_at FROM checkpoints ORDER BY source_id"
            )
        return [Checkpoint(**row) for row in rows]

    # =========================================================================
    # Identity
    # =========================================================================

    async def add_entity(self, kind: EntityKind, display_name: str) -> CanonicalEntity:
        async with self._translate_errors():
            async with self.db.transaction() as cur:
                # Serialize id allocation per kind
                await cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (f"canonical_entities:{kind.value}",))
                await cur.execute(
                    """
                    INSERT INTO canonical_entities (kind, canonical_id, display_name)
                    SELECT %s, COALESCE(MAX(canonical_id), 0) + 1, %s
                    FROM canonical_entities WHERE kind = %s
                    RETURNING kind, canonical_id, display_name
                    """,
                    (kind.value, display_name, kind.value),
                )
                row = await cur.fetchone()
        return CanonicalEntity(**row)

    async def get_entity(self, kind: EntityKind, canonical_id: int) -> Optional[CanonicalEntity]:
        async with self._translate_errors():
            row = await self.db.fetchone(
                "SELECT kind, canonical_id, display_name FROM canonical_entities WHERE kind = %s AND canonical_id = %s",
                (kind.value, canonical_id),
            )
        return CanonicalEntity(**row) if row else None

    async def list_entities(self, kind: Optional[EntityKind] = None) -> list[CanonicalEntity]:
        query = "SELECT kind, canonical_id, display_name FROM canonical_entities"
        params: tuple = ()
        if kind is not None:
            query += " WHERE kind = %s"
            params = (kind.value,)
        async with self._translate_errors():
            rows = await self.db.fetchall(query + " ORDER BY kind, canonical_id", params)
        return [CanonicalEntity(**row) for row in rows]

    async def add_identity_link(self, link: IdentityLink) -> None:
        async with self._translate_errors():
            async with self.db.transaction() as cur:
                await cur.execute(
                    """
                    INSERT INTO identity_links (kind, source_id, source_local_id, canonical_id, match_method)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (kind, source_id, source_local_id) DO NOTHING
                    """,
                    (link.kind.value, link.source_id.value, link.source_local_id, link.canonical_id, link.match_method),
                )
                if cur.rowcount:
                    return
                await cur.execute(
                    "SELECT canonical_id FROM identity_links WHERE kind = %s AND source_id = %s AND source_local_id = %s",
                    (link.kind.value, link.source_id.value, link.source_local_id),
                )
                row = await cur.fetchone()
        if row and row["canonical_id"] != link.canonical_id:
            raise ConstraintViolation(
                f"{link.kind.value} {link.source_id.value}:{link.source_local_id} already linked to {row['canonical_id']}",
                constraint="identity_links_pkey",
            )

    async def list_identity_links(self) -> list[IdentityLink]:
        async with self._translate_errors():
            rows = await self.db.fetchall(
                "SELECT kind, source_id, source_local_id, canonical_id, match_method FROM identity_links"
            )
        return [IdentityLink(**row) for row in rows]

    # =========================================================================
    # Pending review
    # =========================================================================

    async def add_pending(self, items: Iterable[PendingReview]) -> int:
        count = 0
        async with self._translate_errors():
            async with self.db.transaction() as cur:
                for item in items:
                    await cur.execute(
                        """
                        INSERT INTO pending_review (
                            source_id, source_local_id, kind, unresolved_local_id,
                            display_name, reason, payload, queued_at
                        )
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                        ON CONFLICT (source_id, source_local_id) DO UPDATE SET
                            kind = excluded.kind,
                            unresolved_local_id = excluded.unresolved_local_id,
                            display_name = excluded.display_name,
                            reason = excluded.reason,
                            payload = excluded.payload
                        """,
                        (
                            item.source_id.value,
                            item.source_local_id,
                            item.kind.value,
                            item.unresolved_local_id,
                            item.display_name,
                            item.reason,
                            Json(item.payload),
                            item.queued_at,
                        ),
                    )
                    count += 1
        return count

    async def list_pending(self, source_id: Optional[SourceId] = None) -> list[PendingReview]:
        query = "SELECT * FROM pending_review"
        params: tuple = ()
        if source_id is not None:
            query += " WHERE source_id = %s"
            params = (source_id.value,)
        async with self._translate_errors():
            rows = await self.db.fetchall(query + " ORDER BY queued_at, source_id, source_local_id", params)
        return [PendingReview(**row) for row in rows]

    async def remove_pending(self, source_id: SourceId, source_local_ids: Iterable[str]) -> int:
        local_ids = list(source_local_ids)
        if not local_ids:
            return 0
        async with self._translate_errors():
            async with self.db.transaction() as cur:
                await cur.execute(
                    "DELETE FROM pending_review WHERE source_id = %s AND source_local_id = ANY(%s)",
                    (source_id.value, local_ids),
                )
                return cur.rowcount

    # =========================================================================
    # Ingest run log
    # =========================================================================

    RUN_COLUMNS = (
        "source_id",
        "status",
        "started_at",
        "finished_at",
        "batches",
        "fetched",
        "inserted",
        "unrecognized",
        "pending",
        "attempts",
        "last_cursor",
        "error",
    )

    async def record_run(self, run: dict[str, Any]) -> None:
        columns = [c for c in self.RUN_COLUMNS if c in run]
        placeholders = ", ".join(["%s"] * len(columns))
        async with self._translate_errors():
            await self.db.execute(
                f"INSERT INTO ingest_runs ({', '.join(columns)}) VALUES ({placeholders})",
                tuple(run[c] for c in columns),
            )

    async def list_runs(self, source_id: Optional[SourceId] = None, limit: int = 20) -> list[dict[str, Any]]:
        query = f"SELECT {', '.join(self.RUN_COLUMNS)} FROM ingest_runs"
        params: tuple = ()
        if source_id is not None:
            query += " WHERE source_id = %s"
            params = (source_id.value,)
        async with self._translate_errors():
            return await self.db.fetchall(query + " ORDER BY id DESC LIMIT %s", (*params, limit))

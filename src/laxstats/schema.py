"""
Database schema management for the canonical store.

Creates the tables, keys and indexes the PostgreSQL store relies on. Every
statement is idempotent, so ``init_database`` can run on each deploy.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from psycopg import errors as pg_errors

if TYPE_CHECKING:
    from .pg_async import AsyncPostgresDB

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "1"

# Composite foreign keys pin the kind column so a player id can never point
# at a team row and vice versa.
SCHEMA_STATEMENTS: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS canonical_entities (
        kind TEXT NOT NULL CHECK (kind IN ('player', 'team')),
        canonical_id INTEGER NOT NULL CHECK (canonical_id > 0),
        display_name TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (kind, canonical_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS identity_links (
        kind TEXT NOT NULL,
        source_id TEXT NOT NULL,
        source_local_id TEXT NOT NULL,
        canonical_id INTEGER NOT NULL,
        match_method TEXT NOT NULL DEFAULT 'manual',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (kind, source_id, source_local_id),
        FOREIGN KEY (kind, canonical_id) REFERENCES canonical_entities (kind, canonical_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        event_id TEXT PRIMARY KEY,
        seq BIGSERIAL NOT NULL,
        source_id TEXT NOT NULL,
        source_local_id TEXT NOT NULL,
        season_id INTEGER NOT NULL,
        game_id TEXT NOT NULL,
        period SMALLINT NOT NULL,
        clock_seconds INTEGER NOT NULL,
        kind TEXT NOT NULL,
        team_kind TEXT NOT NULL DEFAULT 'team' CHECK (team_kind = 'team'),
        team_id INTEGER NOT NULL,
        team_source_local_id TEXT NOT NULL,
        player_kind TEXT NOT NULL DEFAULT 'player' CHECK (player_kind = 'player'),
        player_id INTEGER,
        player_source_local_id TEXT,
        description TEXT NOT NULL DEFAULT '',
        inserted_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (source_id, source_local_id),
        FOREIGN KEY (team_kind, team_id) REFERENCES canonical_entities (kind, canonical_id),
        FOREIGN KEY (player_kind, player_id) REFERENCES canonical_entities (kind, canonical_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_events_seq ON events (seq)",
    "CREATE INDEX IF NOT EXISTS idx_events_season ON events (season_id, source_id)",
    "CREATE INDEX IF NOT EXISTS idx_events_player ON events (player_id) WHERE player_id IS NOT NULL",
    "CREATE INDEX IF NOT EXISTS idx_events_team ON events (team_id)",
    """
    CREATE TABLE IF NOT EXISTS box_score_lines (
        line_key TEXT PRIMARY KEY,
        seq BIGSERIAL NOT NULL,
        source_id TEXT NOT NULL,
        season_id INTEGER NOT NULL,
        game_id TEXT NOT NULL,
        player_kind TEXT NOT NULL DEFAULT 'player' CHECK (player_kind = 'player'),
        player_id INTEGER NOT NULL,
        player_source_local_id TEXT NOT NULL,
        stat_name TEXT NOT NULL,
        value DOUBLE PRECISION NOT NULL CHECK (value >= 0),
        inserted_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        FOREIGN KEY (player_kind, player_id) REFERENCES canonical_entities (kind, canonical_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_box_score_lines_player ON box_score_lines (player_id, season_id)",
    """
    CREATE TABLE IF NOT EXISTS checkpoints (
        source_id TEXT PRIMARY KEY,
        last_cursor TEXT,
        last_success_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS pending_review (
        source_id TEXT NOT NULL,
        source_local_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        unresolved_local_id TEXT NOT NULL,
        display_name TEXT,
        reason TEXT NOT NULL,
        payload JSONB NOT NULL,
        queued_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        PRIMARY KEY (source_id, source_local_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ingest_runs (
        id BIGSERIAL PRIMARY KEY,
        source_id TEXT NOT NULL,
        status TEXT NOT NULL,
        started_at TIMESTAMPTZ NOT NULL,
        finished_at TIMESTAMPTZ,
        batches INTEGER NOT NULL DEFAULT 0,
        fetched INTEGER NOT NULL DEFAULT 0,
        inserted INTEGER NOT NULL DEFAULT 0,
        unrecognized INTEGER NOT NULL DEFAULT 0,
        pending INTEGER NOT NULL DEFAULT 0,
        attempts INTEGER NOT NULL DEFAULT 0,
        last_cursor TEXT,
        error TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_ingest_runs_source ON ingest_runs (source_id, id DESC)",
]

TABLES = (
    "canonical_entities",
    "identity_links",
    "events",
    "box_score_lines",
    "checkpoints",
    "pending_review",
    "ingest_runs",
)


async def init_database(db: "AsyncPostgresDB") -> None:
    """
    Create all tables and indexes and record the schema version.

    Args:
        db: Open database connection manager
    """
    logger.info("Initializing canonical store schema")
    async with db.transaction() as cur:
        for statement in SCHEMA_STATEMENTS:
            await cur.execute(statement)
        await cur.execute(
            """
            INSERT INTO meta (key, value, updated_at)
            VALUES ('schema_version', %s, now())
            ON CONFLICT (key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (SCHEMA_VERSION,),
        )
    logger.info(f"Schema initialized (version {SCHEMA_VERSION})")


async def get_schema_version(db: "AsyncPostgresDB") -> str:
    """Get the current schema version, or "0" if the schema was never created."""
    try:
        row = await db.fetchone("SELECT value FROM meta WHERE key = 'schema_version'")
    except pg_errors.UndefinedTable:
        return "0"
    return row["value"] if row else "0"


async def get_table_counts(db: "AsyncPostgresDB") -> dict[str, int]:
    """Get row counts for all store tables."""
    counts = {}
    for table in TABLES:
        row = await db.fetchone(f"SELECT COUNT(*) AS count FROM {table}")
        counts[table] = row["count"] if row else 0
    return counts

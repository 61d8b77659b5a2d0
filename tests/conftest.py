"""
Pytest configuration for laxstats tests.

Provides a seeded in-memory store (canonical teams and players with their
source links), an identity map loaded from it, and builders for the raw
payloads each source emits.
"""

import os
from datetime import datetime, timezone
from typing import Any

import pytest

from laxstats.core.models import IdentityLink, RawRecord
from laxstats.core.types import EntityKind, SourceId
from laxstats.normalizer import IdentityMap, Normalizer
from laxstats.repositories import InMemoryStore


def pytest_configure(config):
    """Load DATABASE_URL from a local .env file if it is not already set."""
    env_file = os.path.join(os.path.dirname(__file__), "..", ".env")
    if os.path.exists(env_file):
        from dotenv import load_dotenv

        load_dotenv(env_file, override=False)


# Canonical ids are assigned in insertion order per kind, starting at 1
TEAMS = ["Archers", "Redwoods", "Calgary Roughnecks"]
PLAYERS = ["Alpha Attack", "Bravo Midfield", "Charlie Defense", "Delta Goalie"]

# (kind, source, local id, canonical id)
LINKS = [
    (EntityKind.team, SourceId.PLL, "T-ARC", 1),
    (EntityKind.team, SourceId.PLL, "T-RED", 2),
    (EntityKind.team, SourceId.NLL, "503", 3),
    (EntityKind.team, SourceId.WLA, "w-10", 1),
    (EntityKind.player, SourceId.PLL, "P-A", 1),
    (EntityKind.player, SourceId.PLL, "P-B", 2),
    (EntityKind.player, SourceId.PLL, "P-C", 3),
    (EntityKind.player, SourceId.NLL, "9001", 1),
    (EntityKind.player, SourceId.WLA, "wp-4", 4),
]

FIXED_TIME = datetime(2025, 7, 1, 12, 0, tzinfo=timezone.utc)


async def seed_store(store: InMemoryStore) -> InMemoryStore:
    for name in TEAMS:
        await store.add_entity(EntityKind.team, name)
    for name in PLAYERS:
        await store.add_entity(EntityKind.player, name)
    for kind, source, local_id, canonical_id in LINKS:
        await store.add_identity_link(
            IdentityLink(kind=kind, source_id=source, source_local_id=local_id, canonical_id=canonical_id)
        )
    return store


@pytest.fixture
async def store():
    """In-memory store seeded with teams, players and source links."""
    return await seed_store(InMemoryStore())


@pytest.fixture
async def identity(store):
    identity = IdentityMap(store)
    await identity.load()
    return identity


@pytest.fixture
def normalizer(identity):
    return Normalizer(identity)


# =============================================================================
# Payload builders
# =============================================================================


def pll_play(
    play_id: Any,
    event_type: str = "GOAL",
    player_id: str | None = "P-A",
    team_id: str = "T-ARC",
    game_id: str = "G1",
    year: int = 2025,
    period: int = 1,
    clock: str | int = "10:00",
    **extra: Any,
) -> dict[str, Any]:
    payload = {
        "id": play_id,
        "year": year,
        "gameId": game_id,
        "period": period,
        "clock": clock,
        "eventType": event_type,
        "teamId": team_id,
        "teamName": None,
        "playerId": player_id,
        "playerName": None,
        "description": None,
    }
    payload.update(extra)
    return payload


def pll_record(play_id: Any, **kwargs: Any) -> RawRecord:
    return RawRecord(
        source_id=SourceId.PLL,
        source_local_id=str(play_id),
        payload=pll_play(play_id, **kwargs),
        fetched_at=FIXED_TIME,
    )


def nll_box_record(
    match_id: str,
    player_id: str,
    column: str,
    value: Any,
    season: Any = "2025-26",
) -> RawRecord:
    return RawRecord(
        source_id=SourceId.NLL,
        source_local_id=f"box:{match_id}:{player_id}:{column}",
        payload={
            "match_id": match_id,
            "season": season,
            "player_id": player_id,
            "player_name": None,
            "team_id": "503",
            "column": column,
            "value": value,
        },
        fetched_at=FIXED_TIME,
    )


def nll_play_record(
    play_id: str,
    play_type: str = "GOAL",
    match_id: str = "M1",
    player_id: str | None = "9001",
    team_id: str = "503",
    season: Any = "2025-26",
) -> RawRecord:
    return RawRecord(
        source_id=SourceId.NLL,
        source_local_id=f"play:{play_id}",
        payload={
            "match_id": match_id,
            "season": season,
            "play": {
                "id": play_id,
                "period": 2,
                "time": "07:30",
                "type": play_type,
                "team_id": team_id,
                "player_id": player_id,
                "player_name": "Alpha Attack",
            },
        },
        fetched_at=FIXED_TIME,
    )

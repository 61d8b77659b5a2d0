"""
laxstats: Lacrosse Statistics Pipeline

Ingests play-by-play and box-score data from the PLL, NLL and WLA stats
feeds, normalizes it into one canonical event schema, and serves
per-player and per-team season and career statistics.

Key Features:
- One async adapter per league (rate limiting, pagination, checkpoints)
- Versioned source schemas normalized into canonical events
- Identity mapping with a pending-review queue for unknown players/teams
- Deterministic aggregation with box-score cross-checks
- Ranked leaderboards with stable tie-breaks

Usage:
    from laxstats import get_settings
    from laxstats.repositories import get_store
    from laxstats.services import StatsQueryService

    store = await get_store()
    board = await service.get_leaderboard(2025, "points", limit=10)
"""

from .core.config import Settings, get_settings
from .core.types import EntityKind, EventKind, Scope, SourceId

__version__ = "1.0.0"

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Types
    "EntityKind",
    "EventKind",
    "Scope",
    "SourceId",
]

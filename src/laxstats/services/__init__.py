"""
Services module for laxstats.

- stats: read-only leaderboard, player and team statistics queries

Usage:
    from laxstats.services import StatsQueryService

    service = StatsQueryService(engine, max_limit=settings.leaderboard_max_limit)
    board = await service.get_leaderboard(2025, "goals", limit=10)
"""

from .stats import (
    LeaderboardRequest,
    LeaderboardResponse,
    StatsQueryService,
    SubjectStatsRequest,
    SubjectStatsResponse,
)

__all__ = [
    "LeaderboardRequest",
    "LeaderboardResponse",
    "StatsQueryService",
    "SubjectStatsRequest",
    "SubjectStatsResponse",
]

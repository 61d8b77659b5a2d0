"""
Stats query service: the read-only boundary of the statistics core.

Validates request shape with pydantic request models before touching the
aggregation engine, and maps every internal failure onto the QueryError
taxonomy:

- malformed input             -> ValidationError (400)
- unknown subject             -> NotFoundError (404)
- identity constraint broken  -> ConstraintViolationError (400)
- store unavailable           -> DatabaseError (500)
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..aggregators.engine import AggregationEngine
from ..core.errors import (
    ConstraintViolation,
    ConstraintViolationError,
    DatabaseError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from ..core.models import AggregatedStat, CanonicalEntity
from ..core.types import STAT_NAMES, EntityKind, Scope

logger = logging.getLogger(__name__)

DEFAULT_LEADERBOARD_LIMIT = 25


# =============================================================================
# Request / response models
# =============================================================================


class LeaderboardRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    season: Optional[int] = Field(default=None, ge=1900, le=2100)
    stat_name: str
    limit: int = Field(default=DEFAULT_LEADERBOARD_LIMIT, ge=1)

    @field_validator("stat_name")
    @classmethod
    def _known_stat(cls, value: str) -> str:
        if value not in STAT_NAMES:
            raise ValueError(f"unknown stat '{value}'; expected one of {', '.join(STAT_NAMES)}")
        return value


class SubjectStatsRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subject_id: int = Field(gt=0)
    season: Optional[int] = Field(default=None, ge=1900, le=2100)


class LeaderboardResponse(BaseModel):
    season: Optional[int]
    scope: Scope
    stat_name: str
    entries: list[AggregatedStat]


class SubjectStatsResponse(BaseModel):
    subject: CanonicalEntity
    scope: Scope
    season: Optional[int]
    games_played: int
    stats: dict[str, AggregatedStat]

    def values(self) -> dict[str, float]:
        return {name: stat.value for name, stat in self.stats.items()}


def _validation_detail(error: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in e['loc']) or 'request'}: {e['msg']}" for e in error.errors()
    )


# =============================================================================
# Service
# =============================================================================


class StatsQueryService:
    """
    Read-only stats queries over the aggregation engine.

    Args:
        engine: Aggregation engine (rebuilt from the store on first use)
        max_limit: Largest leaderboard a caller may request
    """

    def __init__(self, engine: AggregationEngine, max_limit: int = 100):
        self.engine = engine
        self.max_limit = max_limit

    async def _ensure_fresh(self) -> None:
        try:
            await self.engine.ensure_fresh()
        except ConstraintViolation as e:
            raise ConstraintViolationError(e.constraint or "identity", e.message) from e
        except StoreError as e:
            logger.error(f"Store unavailable while rebuilding aggregates: {e.message}")
            raise DatabaseError("Statistics store unavailable", e.message) from e

    async def get_leaderboard(
        self,
        season: Optional[int],
        stat_name: str,
        limit: int = DEFAULT_LEADERBOARD_LIMIT,
    ) -> LeaderboardResponse:
        """
        Ranked player leaderboard for one stat.

        Args:
            season: Season id (start year), or None for career totals
            stat_name: Canonical stat name (e.g. "goals", "points")
            limit: Maximum entries to return

        Raises:
            ValidationError: Unknown stat, bad season or limit
            ConstraintViolationError: Aggregates reference a missing entity
            DatabaseError: The store could not be read
        """
        try:
            request = LeaderboardRequest(season=season, stat_name=stat_name, limit=limit)
        except PydanticValidationError as e:
            raise ValidationError("Invalid leaderboard request", _validation_detail(e)) from e
        if request.limit > self.max_limit:
            raise ValidationError("Invalid leaderboard request", f"limit must be at most {self.max_limit}")

        await self._ensure_fresh()
        scope = Scope.season if request.season is not None else Scope.career
        try:
            entries = self.engine.leaderboard(
                request.stat_name,
                season_id=request.season,
                limit=request.limit,
                scope=scope,
            )
        except ConstraintViolation as e:
            raise ConstraintViolationError(e.constraint or "identity", e.message) from e

        return LeaderboardResponse(
            season=request.season,
            scope=scope,
            stat_name=request.stat_name,
            entries=entries,
        )

    async def _subject_stats(self, kind: EntityKind, subject_id: Any, season: Optional[int]) -> SubjectStatsResponse:
        label = kind.value.capitalize()
        try:
            request = SubjectStatsRequest(subject_id=subject_id, season=season)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {kind.value} stats request", _validation_detail(e)) from e

        await self._ensure_fresh()
        try:
            stats = self.engine.subject_stats(kind, request.subject_id, season_id=request.season)
        except ConstraintViolation as e:
            raise ConstraintViolationError(e.constraint or "identity", e.message) from e

        if not stats:
            context = f"season {request.season}" if request.season is not None else None
            raise NotFoundError(label, request.subject_id, context)

        first = stats[0]
        return SubjectStatsResponse(
            subject=first.subject_ref,
            scope=first.scope,
            season=request.season,
            games_played=first.games_played,
            stats={stat.stat_name: stat for stat in stats},
        )

    async def get_player_stats(self, player_id: int, season: Optional[int] = None) -> SubjectStatsResponse:
        """
        Season (or career, when season is None) aggregates for one player.

        Raises:
            ValidationError: Bad id or season
            NotFoundError: The player has no stats in that scope
            ConstraintViolationError: The player has no canonical entity
            DatabaseError: The store could not be read
        """
        return await self._subject_stats(EntityKind.player, player_id, season)

    async def get_team_stats(self, team_id: int, season: Optional[int] = None) -> SubjectStatsResponse:
        """Season (or career) aggregates for one team; errors as get_player_stats."""
        return await self._subject_stats(EntityKind.team, team_id, season)

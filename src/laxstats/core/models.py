"""
Data models for the canonical statistics store.

These models are used for:
- Validating normalizer output before it reaches the store
- Type-safe query results
- Query service response serialization

RawRecord is a plain dataclass: it is source-shaped and never validated
against the canonical schema.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from .types import EntityKind, EventKind, Scope, SourceId


def derive_event_id(source_id: str | SourceId, source_local_id: str) -> str:
    """Stable canonical id for a source record.

    The same (source, local id) pair always yields the same id, which makes
    re-ingestion an idempotent upsert.
    """
    source = source_id.value if isinstance(source_id, SourceId) else source_id
    digest = hashlib.sha256(f"{source}:{source_local_id}".encode("utf-8"))
    return digest.hexdigest()[:32]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Raw source data
# =============================================================================


@dataclass
class RawRecord:
    """
    Source-shaped record as emitted by an adapter.

    Attributes:
        source_id: Source that produced the record
        source_local_id: Record id in the source's own namespace
        payload: Opaque source-specific structure
        fetched_at: Timestamp when the batch was fetched
    """

    source_id: SourceId
    source_local_id: str
    payload: dict[str, Any]
    fetched_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        # Sources hand out ints and strings interchangeably
        self.source_local_id = str(self.source_local_id)


# =============================================================================
# Canonical forms
# =============================================================================


class CanonicalModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class EntityRef(CanonicalModel):
    """Resolved identity of a player or team, with its source provenance."""

    kind: EntityKind
    canonical_id: int = Field(gt=0)
    source_id: SourceId
    source_local_id: str = Field(min_length=1)


class Event(CanonicalModel):
    """Canonical in-game occurrence."""

    event_id: str
    source_id: SourceId
    source_local_id: str = Field(min_length=1)
    season_id: int = Field(ge=1900, le=2100)
    game_id: str = Field(min_length=1)
    period: int = Field(ge=1, le=10)
    clock_seconds: int = Field(ge=0, le=3600)
    kind: EventKind
    team_ref: EntityRef
    player_ref: Optional[EntityRef] = None
    description: str = ""

    @model_validator(mode="after")
    def _check_identity(self) -> "Event":
        if self.event_id != derive_event_id(self.source_id, self.source_local_id):
            raise ValueError("event_id must be derived from (source_id, source_local_id)")
        if self.team_ref.kind is not EntityKind.team:
            raise ValueError("team_ref must reference a team")
        if self.player_ref is not None and self.player_ref.kind is not EntityKind.player:
            raise ValueError("player_ref must reference a player")
        return self


class BoxScoreLine(CanonicalModel):
    """Source-supplied per-player, per-game total for one stat."""

    source_id: SourceId
    season_id: int = Field(ge=1900, le=2100)
    game_id: str = Field(min_length=1)
    player_ref: EntityRef
    stat_name: str = Field(min_length=1)
    value: float = Field(ge=0)

    @computed_field
    @property
    def line_key(self) -> str:
        """Idempotency key: one value per source, game, player and stat."""
        return (
            f"{self.source_id.value}:{self.game_id}:"
            f"{self.player_ref.canonical_id}:{self.stat_name}"
        )


class Checkpoint(CanonicalModel):
    """Per-source resumption cursor."""

    source_id: SourceId
    last_cursor: Optional[str] = None
    last_success_at: Optional[datetime] = None


class CanonicalEntity(CanonicalModel):
    """Golden record for a player or team."""

    kind: EntityKind
    canonical_id: int = Field(gt=0)
    display_name: str = Field(min_length=1)


class IdentityLink(CanonicalModel):
    """One row of the identity-mapping table."""

    kind: EntityKind
    source_id: SourceId
    source_local_id: str = Field(min_length=1)
    canonical_id: int = Field(gt=0)
    match_method: str = "manual"


class PendingReview(CanonicalModel):
    """A raw record held back because an identity could not be resolved."""

    source_id: SourceId
    source_local_id: str
    kind: EntityKind
    unresolved_local_id: str
    display_name: Optional[str] = None
    reason: str
    payload: dict[str, Any]
    queued_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Derived aggregates
# =============================================================================


class AggregatedStat(CanonicalModel):
    """Derived statistic for one subject, scope and stat."""

    subject_ref: CanonicalEntity
    scope: Scope
    season_id: Optional[int] = None
    stat_name: str
    value: float
    games_played: int = 0
    rank: Optional[int] = None
    flags: tuple[str, ...] = ()


class EventFilter(CanonicalModel):
    """Restricts query_events; unset fields match everything."""

    source_id: Optional[SourceId] = None
    season_id: Optional[int] = None
    game_id: Optional[str] = None
    player_id: Optional[int] = None
    team_id: Optional[int] = None

    def matches(self, event: Event) -> bool:
        if self.source_id is not None and event.source_id is not self.source_id:
            return False
        if self.season_id is not None and event.season_id != self.season_id:
            return False
        if self.game_id is not None and event.game_id != self.game_id:
            return False
        if self.player_id is not None and (
            event.player_ref is None or event.player_ref.canonical_id != self.player_id
        ):
            return False
        if self.team_id is not None and event.team_ref.canonical_id != self.team_id:
            return False
        return True

    def matches_line(self, line: BoxScoreLine) -> bool:
        if self.source_id is not None and line.source_id is not self.source_id:
            return False
        if self.season_id is not None and line.season_id != self.season_id:
            return False
        if self.game_id is not None and line.game_id != self.game_id:
            return False
        if self.player_id is not None and line.player_ref.canonical_id != self.player_id:
            return False
        # Box score lines carry no team; a team filter excludes them
        return self.team_id is None

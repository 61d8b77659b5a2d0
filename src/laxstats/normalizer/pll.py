"""
PLL play-log normalizer branch.

Two payload versions are in circulation:

- v2 (current ``playLogs`` query): flat, ``clock`` as "MM:SS", ``eventType``
- v1 (event-detail feed used before the 2024 season): ``minutes`` and
  ``seconds`` as separate integers, ``playType``
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.models import Event, RawRecord
from ..core.types import EventKind
from .common import LocalId, build_event, lookup_kind, parse_clock
from .identity import IdentityResolver

PLL_EVENT_TYPES: dict[str, EventKind] = {
    "GOAL": EventKind.goal,
    "TWO_POINT_GOAL": EventKind.goal,
    "2PT_GOAL": EventKind.goal,
    "ASSIST": EventKind.assist,
    "GROUND_BALL": EventKind.ground_ball,
    "PENALTY": EventKind.penalty,
    "CAUSED_TURNOVER": EventKind.caused_turnover,
    "TURNOVER": EventKind.turnover,
    "FACEOFF_WIN": EventKind.faceoff_win,
    "FACEOFF_LOSS": EventKind.faceoff_loss,
    "SHOT": EventKind.shot,
    "SAVE": EventKind.save,
}


class PLLPlayLogV2(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: LocalId
    year: int
    game_id: LocalId = Field(alias="gameId")
    period: int
    clock: str | int
    event_type: str = Field(alias="eventType")
    team_id: LocalId = Field(alias="teamId")
    team_name: Optional[str] = Field(default=None, alias="teamName")
    player_id: Optional[LocalId] = Field(default=None, alias="playerId")
    player_name: Optional[str] = Field(default=None, alias="playerName")
    description: Optional[str] = None


class PLLPlayLogV1(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: LocalId
    year: int
    game_id: LocalId = Field(alias="gameId")
    period: int
    minutes: int = Field(ge=0)
    seconds: int = Field(ge=0, lt=60)
    play_type: str = Field(alias="playType")
    team_id: LocalId = Field(alias="teamId")
    player_id: Optional[LocalId] = Field(default=None, alias="playerId")
    player_name: Optional[str] = Field(default=None, alias="playerName")
    description: Optional[str] = None


def normalize_pll(record: RawRecord, resolver: IdentityResolver) -> Event:
    payload = record.payload
    if "eventType" in payload or "event_type" in payload:
        play = PLLPlayLogV2.model_validate(payload)
        clock_seconds = parse_clock(play.clock)
        event_type = play.event_type
    else:
        legacy = PLLPlayLogV1.model_validate(payload)
        play = legacy
        clock_seconds = legacy.minutes * 60 + legacy.seconds
        event_type = legacy.play_type

    kind = lookup_kind(PLL_EVENT_TYPES, event_type)
    team_ref = resolver.team(play.team_id, getattr(play, "team_name", None))
    player_ref = resolver.player(play.player_id, play.player_name) if play.player_id else None

    return build_event(
        record,
        season_id=play.year,
        game_id=play.game_id,
        period=play.period,
        clock_seconds=clock_seconds,
        kind=kind,
        team_ref=team_ref,
        player_ref=player_ref,
        description=play.description,
    )

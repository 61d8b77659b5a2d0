"""
WLA event-feed normalizer branch.

Accepts the current nested payload (``game``, ``team`` and ``player``
objects) and the flat payload the feed served through the 2023 season.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..core.models import Event, RawRecord
from ..core.types import EventKind
from .common import LocalId, build_event, lookup_kind, parse_clock, parse_season
from .identity import IdentityResolver

WLA_ACTIONS: dict[str, EventKind] = {
    "G": EventKind.goal,
    "GOAL": EventKind.goal,
    "A": EventKind.assist,
    "ASSIST": EventKind.assist,
    "GB": EventKind.ground_ball,
    "LB": EventKind.ground_ball,
    "PEN": EventKind.penalty,
    "PENALTY": EventKind.penalty,
    "CT": EventKind.caused_turnover,
    "TO": EventKind.turnover,
    "FOW": EventKind.faceoff_win,
    "FOL": EventKind.faceoff_loss,
    "SH": EventKind.shot,
    "SHOT": EventKind.shot,
    "SV": EventKind.save,
    "SAVE": EventKind.save,
}


class WLARef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: LocalId
    name: Optional[str] = None


class WLAGame(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: LocalId
    season: int | str


class WLAEventV2(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_id: LocalId
    game: WLAGame
    period: int
    elapsed: str | int
    action: str
    team: WLARef
    player: Optional[WLARef] = None
    note: Optional[str] = None


class WLAEventV1(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_id: LocalId
    game_id: LocalId
    season: int | str
    period: int
    elapsed: str | int
    action: str
    team_id: LocalId
    team_name: Optional[str] = None
    player_id: Optional[LocalId] = None
    player_name: Optional[str] = None
    note: Optional[str] = None


def normalize_wla(record: RawRecord, resolver: IdentityResolver) -> Event:
    payload = record.payload
    if isinstance(payload.get("game"), dict):
        event = WLAEventV2.model_validate(payload)
        kind = lookup_kind(WLA_ACTIONS, event.action)
        game_id, season = event.game.id, event.game.season
        team_ref = resolver.team(event.team.id, event.team.name)
        player_ref = resolver.player(event.player.id, event.player.name) if event.player else None
    else:
        flat = WLAEventV1.model_validate(payload)
        event = flat
        kind = lookup_kind(WLA_ACTIONS, flat.action)
        game_id, season = flat.game_id, flat.season
        team_ref = resolver.team(flat.team_id, flat.team_name)
        player_ref = resolver.player(flat.player_id, flat.player_name) if flat.player_id else None

    return build_event(
        record,
        season_id=parse_season(season),
        game_id=game_id,
        period=event.period,
        clock_seconds=parse_clock(event.elapsed),
        kind=kind,
        team_ref=team_ref,
        player_ref=player_ref,
        description=event.note,
    )

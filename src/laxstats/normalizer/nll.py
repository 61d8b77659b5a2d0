"""
NLL match-feed normalizer branch.

The adapter emits two record shapes, told apart by their local id prefix:
``play:`` records become Events and ``box:`` records become BoxScoreLines.
NLL season labels are split-year ("2025-26") and are read as the start year.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.models import BoxScoreLine, Event, RawRecord
from ..core.types import EventKind
from .common import LocalId, build_event, lookup_kind, parse_clock, parse_season, parse_stat_value
from .identity import IdentityResolver

NLL_PLAY_TYPES: dict[str, EventKind] = {
    "GOAL": EventKind.goal,
    "ASSIST": EventKind.assist,
    # Indoor lacrosse calls ground balls loose balls
    "LOOSE_BALL": EventKind.ground_ball,
    "GROUND_BALL": EventKind.ground_ball,
    "PENALTY": EventKind.penalty,
    "CAUSED_TURNOVER": EventKind.caused_turnover,
    "TURNOVER": EventKind.turnover,
    "FACEOFF_WON": EventKind.faceoff_win,
    "FACEOFF_WIN": EventKind.faceoff_win,
    "FACEOFF_LOST": EventKind.faceoff_loss,
    "FACEOFF_LOSS": EventKind.faceoff_loss,
    "SHOT": EventKind.shot,
    "SAVE": EventKind.save,
}

# Box-score column -> canonical stat name
NLL_BOX_SCORE_COLUMNS: dict[str, str] = {
    "G": "goals",
    "A": "assists",
    "LB": "ground_balls",
    "PEN": "penalties",
    "CT": "caused_turnovers",
    "TO": "turnovers",
    "FOW": "faceoff_wins",
    "FOL": "faceoff_losses",
    "S": "shots",
    "SOG": "shots_on_goal",
    "SV": "saves",
    "MIN": "minutes",
}


class NLLPlay(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: LocalId
    period: int
    time: str | int
    type: str
    team_id: LocalId
    player_id: Optional[LocalId] = None
    player_name: Optional[str] = None
    description: Optional[str] = None


class NLLPlayRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    match_id: LocalId
    season: int | str
    play: NLLPlay


class NLLBoxScoreCell(BaseModel):
    model_config = ConfigDict(extra="ignore")

    match_id: LocalId
    season: int | str
    player_id: LocalId
    player_name: Optional[str] = None
    column: str = Field(min_length=1)
    value: Any


def _normalize_play(record: RawRecord, resolver: IdentityResolver) -> Event:
    parsed = NLLPlayRecord.model_validate(record.payload)
    play = parsed.play
    kind = lookup_kind(NLL_PLAY_TYPES, play.type)
    team_ref = resolver.team(play.team_id)
    player_ref = resolver.player(play.player_id, play.player_name) if play.player_id else None

    return build_event(
        record,
        season_id=parse_season(parsed.season),
        game_id=parsed.match_id,
        period=play.period,
        clock_seconds=parse_clock(play.time),
        kind=kind,
        team_ref=team_ref,
        player_ref=player_ref,
        description=play.description,
    )


def _normalize_box_score(record: RawRecord, resolver: IdentityResolver) -> BoxScoreLine:
    cell = NLLBoxScoreCell.model_validate(record.payload)
    stat_name = NLL_BOX_SCORE_COLUMNS.get(cell.column.strip().upper())
    if stat_name is None:
        raise ValueError(f"Unknown NLL box score column: {cell.column!r}")

    return BoxScoreLine(
        source_id=record.source_id,
        season_id=parse_season(cell.season),
        game_id=cell.match_id,
        player_ref=resolver.player(cell.player_id, cell.player_name),
        stat_name=stat_name,
        value=parse_stat_value(cell.value),
    )


def normalize_nll(record: RawRecord, resolver: IdentityResolver) -> Event | BoxScoreLine:
    if record.source_local_id.startswith("box:"):
        return _normalize_box_score(record, resolver)
    if record.source_local_id.startswith("play:"):
        return _normalize_play(record, resolver)
    raise ValueError(f"Unknown NLL record id: {record.source_local_id!r}")

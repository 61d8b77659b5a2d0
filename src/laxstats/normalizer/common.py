"""
Parsing helpers shared by the per-source normalizer branches.

Every helper raises ValueError on input it cannot read; the normalizer turns
that into UnrecognizedShape for the record.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Optional

from pydantic import BeforeValidator

from ..core.models import EntityRef, Event, RawRecord, derive_event_id
from ..core.types import EventKind

_CLOCK = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")
_SEASON = re.compile(r"^\s*(\d{4})")


def parse_clock(value: Any) -> int:
    """Parse a game clock to whole seconds.

    Accepts "MM:SS" strings and plain second counts (int or numeric string).
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid clock: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        match = _CLOCK.match(value)
        if match:
            minutes, seconds = int(match.group(1)), int(match.group(2))
            if seconds >= 60:
                raise ValueError(f"Invalid clock: {value!r}")
            return minutes * 60 + seconds
        if value.strip().isdigit():
            return int(value.strip())
    raise ValueError(f"Invalid clock: {value!r}")


def parse_season(value: Any) -> int:
    """Parse a season to its start year.

    Accepts 2025, "2025" and split-year labels such as "2025-26".
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid season: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        match = _SEASON.match(value)
        if match:
            return int(match.group(1))
    raise ValueError(f"Invalid season: {value!r}")


def parse_stat_value(value: Any) -> float:
    """Parse a box-score cell. "MM:SS" values (minutes played) become minutes."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Invalid stat value: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if ":" in text:
            return parse_clock(text) / 60.0
        return float(text)
    raise ValueError(f"Invalid stat value: {value!r}")


def lookup_kind(mapping: dict[str, EventKind], raw: str) -> EventKind:
    """Map a source event-type label to an EventKind, case-insensitively."""
    key = raw.strip().upper().replace(" ", "_").replace("-", "_")
    try:
        return mapping[key]
    except KeyError:
        raise ValueError(f"Unknown event type: {raw!r}") from None


def _coerce_local_id(value: Any) -> Any:
    # Sources hand out ints and strings interchangeably
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


LocalId = Annotated[str, BeforeValidator(_coerce_local_id)]


def build_event(
    record: RawRecord,
    *,
    season_id: int,
    game_id: str,
    period: int,
    clock_seconds: int,
    kind: EventKind,
    team_ref: EntityRef,
    player_ref: Optional[EntityRef],
    description: Optional[str],
) -> Event:
    """Build and validate the canonical Event for a raw record."""
    return Event(
        event_id=derive_event_id(record.source_id, record.source_local_id),
        source_id=record.source_id,
        source_local_id=record.source_local_id,
        season_id=season_id,
        game_id=game_id,
        period=period,
        clock_seconds=clock_seconds,
        kind=kind,
        team_ref=team_ref,
        player_ref=player_ref,
        description=description or "",
    )

"""
League season windows.

Defines when each source's season runs so scheduled ingestion only polls
leagues that are currently playing:

- PLL: June - September (outdoor summer league)
- NLL: December - May (indoor winter/spring league, wraps the new year)
- WLA: May - September (outdoor summer league)
"""

from __future__ import annotations

from datetime import date

from .types import SOURCE_REGISTRY, SeasonWindow, SourceId


def is_in_season(day: date, window: SeasonWindow) -> bool:
    """Check whether a date falls inside a season window (inclusive)."""
    key = (day.month, day.day)
    start = (window.start_month, window.start_day)
    end = (window.end_month, window.end_day)

    # Window spans the year boundary (e.g. NLL Dec-May)
    if start > end:
        return key >= start or key <= end
    return start <= key <= end


def active_sources(day: date | None = None) -> list[SourceId]:
    """Return sources whose season includes ``day`` (default today)."""
    day = day or date.today()
    return [
        SourceId(source_id)
        for source_id, config in SOURCE_REGISTRY.items()
        if is_in_season(day, config.season_window)
    ]


def season_year(source: SourceId, day: date) -> int:
    """Season id a date belongs to.

    Seasons are identified by the calendar year they start in, so an NLL game
    in March 2026 belongs to season 2025 (the 2025-26 season).
    """
    window = SOURCE_REGISTRY[source.value].season_window
    wraps = (window.start_month, window.start_day) > (window.end_month, window.end_day)
    if wraps and (day.month, day.day) <= (window.end_month, window.end_day):
        return day.year - 1
    return day.year

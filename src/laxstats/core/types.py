"""
Core types and constants for laxstats.

This module provides:
- SourceId, EntityKind, Scope and EventKind enums
- SourceConfig dataclass for source-specific settings
- SOURCE_REGISTRY for centralized source configurations
- The canonical stat vocabulary shared by the normalizer and aggregators
"""

from dataclasses import dataclass
from enum import Enum


class SourceId(str, Enum):
    """Configured league data sources."""

    PLL = "PLL"
    NLL = "NLL"
    WLA = "WLA"


class EntityKind(str, Enum):
    """Identity kinds resolved through the identity-mapping table."""

    player = "player"
    team = "team"


class Scope(str, Enum):
    """Aggregation scopes."""

    season = "season"
    career = "career"


class EventKind(str, Enum):
    """Canonical in-game occurrences."""

    goal = "goal"
    assist = "assist"
    ground_ball = "ground_ball"
    penalty = "penalty"
    caused_turnover = "caused_turnover"
    turnover = "turnover"
    faceoff_win = "faceoff_win"
    faceoff_loss = "faceoff_loss"
    shot = "shot"
    save = "save"


@dataclass(frozen=True)
class SeasonWindow:
    """Month/day bounds of a league's season (may wrap the new year)."""

    start_month: int
    start_day: int
    end_month: int
    end_day: int


@dataclass(frozen=True)
class SourceConfig:
    """
    Configuration for a league source.

    Credentials and throttles live in Settings; everything here is static.
    """

    id: str
    name: str
    api_base_url: str
    season_window: SeasonWindow
    season_label_format: str = "{year}"

    def get_season_label(self, year: int) -> str:
        """Generate human-readable season label."""
        if self.season_label_format == "{year}-{next_year_short}":
            return f"{year}-{str(year + 1)[-2:]}"
        return self.season_label_format.format(year=year)


# =============================================================================
# SOURCE REGISTRY - Central configuration for all league sources
# =============================================================================

SOURCE_REGISTRY: dict[str, SourceConfig] = {
    SourceId.PLL.value: SourceConfig(
        id="PLL",
        name="Premier Lacrosse League",
        api_base_url="https://api.stats.premierlacrosseleague.com/graphql",
        season_window=SeasonWindow(6, 1, 9, 15),
    ),
    SourceId.NLL.value: SourceConfig(
        id="NLL",
        name="National Lacrosse League",
        api_base_url="https://api.nll.com/v1",
        season_window=SeasonWindow(12, 1, 5, 15),
        season_label_format="{year}-{next_year_short}",
    ),
    SourceId.WLA.value: SourceConfig(
        id="WLA",
        name="Western Lacrosse Association",
        api_base_url="https://stats.wlalacrosse.com/api",
        season_window=SeasonWindow(5, 1, 9, 30),
    ),
}


def get_source_config(source: str | SourceId) -> SourceConfig:
    """
    Get configuration for a source.

    Raises:
        KeyError: If source is not in registry
    """
    source_id = source.value if isinstance(source, SourceId) else source
    return SOURCE_REGISTRY[source_id]


# =============================================================================
# Stat vocabulary
# =============================================================================

# Event kind -> stat counter it increments
EVENT_STATS: dict[EventKind, str] = {
    EventKind.goal: "goals",
    EventKind.assist: "assists",
    EventKind.ground_ball: "ground_balls",
    EventKind.penalty: "penalties",
    EventKind.caused_turnover: "caused_turnovers",
    EventKind.turnover: "turnovers",
    EventKind.faceoff_win: "faceoff_wins",
    EventKind.faceoff_loss: "faceoff_losses",
    EventKind.shot: "shots",
    EventKind.save: "saves",
}

# Derived from other counters; still a plain sum so incremental updates hold
POINTS_COMPONENTS: tuple[str, ...] = ("goals", "assists")

# Only ever supplied by box scores
BOX_SCORE_ONLY_STATS: tuple[str, ...] = ("minutes", "shots_on_goal")

STAT_NAMES: tuple[str, ...] = (
    *EVENT_STATS.values(),
    "points",
    *BOX_SCORE_ONLY_STATS,
    "games_played",
)

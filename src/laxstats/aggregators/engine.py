"""
Aggregation engine.

Turns canonical events and box-score lines into per-player and per-team
season and career totals, cross-checks them against source box scores, and
ranks them into leaderboards.

All state is a derived cache over the canonical store. It is kept per
subject, per game, so every total is a plain sum and:

- applying an event or line twice changes nothing (idempotent per id),
- applying batches in any order gives the same totals as recompute_all().

Totals are summed in sorted game order, so float stats (minutes) come out
bit-identical regardless of arrival order.

Leaderboard order is total: value descending, then fewer games played, then
case-folded normalized display name, then canonical id. Zero values are not
ranked.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Optional

from ..core.errors import ConstraintViolation
from ..core.models import AggregatedStat, BoxScoreLine, CanonicalEntity, Event
from ..core.types import (
    BOX_SCORE_ONLY_STATS,
    EVENT_STATS,
    POINTS_COMPONENTS,
    STAT_NAMES,
    EntityKind,
    Scope,
)
from ..normalizer.identity import normalize_name

if TYPE_CHECKING:
    from ..normalizer.identity import IdentityMap
    from ..repositories.base import CanonicalStore

logger = logging.getLogger(__name__)

# Bump when the shape or meaning of aggregated stats changes; a cache built
# under another version is discarded and rebuilt.
AGGREGATE_SCHEMA_VERSION = 2

SubjectKey = tuple[EntityKind, int]
# (season_id, source_id, game_id)
GameKey = tuple[int, str, str]

EVENT_STAT_NAMES: tuple[str, ...] = tuple(EVENT_STATS.values())
PLAYER_STATS: tuple[str, ...] = STAT_NAMES
TEAM_STATS: tuple[str, ...] = tuple(s for s in STAT_NAMES if s not in BOX_SCORE_ONLY_STATS)


@dataclass
class GameTally:
    """One subject's numbers in one game."""

    counts: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    box: dict[str, float] = field(default_factory=dict)

    def derived(self, stat_name: str) -> int:
        if stat_name == "points":
            return sum(self.counts.get(s, 0) for s in POINTS_COMPONENTS)
        return self.counts.get(stat_name, 0)


@dataclass(frozen=True)
class SubjectTotals:
    """Computed totals for one subject in one scope."""

    values: dict[str, float]
    games_played: int
    flags: dict[str, tuple[str, ...]]


class AggregationEngine:
    """
    Derived statistics cache with full and incremental maintenance.

    Args:
        store: Canonical store to rebuild from
        identity: Identity map supplying canonical display names
        box_score_tolerance: Allowed per-game difference between event-derived
            counts and box-score values before a stat is flagged
    """

    def __init__(
        self,
        store: "CanonicalStore",
        identity: "IdentityMap",
        box_score_tolerance: float = 0,
    ):
        self.store = store
        self.identity = identity
        self.box_score_tolerance = box_score_tolerance
        self.schema_version: Optional[int] = None
        self._reset()

    def _reset(self) -> None:
        self._event_ids: set[str] = set()
        self._line_keys: set[str] = set()
        self._tallies: dict[SubjectKey, dict[GameKey, GameTally]] = defaultdict(dict)
        self._version = 0
        self._rank_cache: dict[tuple, tuple[int, dict[int, int]]] = {}

    @property
    def is_warm(self) -> bool:
        return self.schema_version == AGGREGATE_SCHEMA_VERSION

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def recompute_all(self, scope: Scope = Scope.season) -> list[AggregatedStat]:
        """
        Discard the cache and rebuild it from the canonical store.

        Returns:
            Every ranked aggregate for ``scope``
        """
        self._reset()
        events = 0
        lines = 0
        async for event in self.store.query_events():
            self._apply_event(event)
            events += 1
        async for line in self.store.query_box_scores():
            self._apply_line(line)
            lines += 1
        self.schema_version = AGGREGATE_SCHEMA_VERSION
        self._version += 1
        logger.info(
            f"Recomputed aggregates from {events} events and {lines} box score lines "
            f"({len(self._tallies)} subjects)"
        )
        return self.all_stats(scope)

    async def ensure_fresh(self) -> None:
        """Rebuild when the cache is cold or was built under another schema version."""
        if not self.is_warm:
            if self.schema_version is not None:
                logger.info(
                    f"Aggregate schema changed ({self.schema_version} -> {AGGREGATE_SCHEMA_VERSION}), rebuilding"
                )
            await self.recompute_all()

    def apply_incremental(
        self,
        new_events: Iterable[Event],
        lines: Iterable[BoxScoreLine] = (),
    ) -> list[AggregatedStat]:
        """
        Fold new events and box-score lines into the cache.

        Already-applied events (by event_id) and lines (by line_key) are
        ignored, so repeated or reordered calls converge on the same state.

        Returns:
            Updated season and career aggregates of the affected subjects
            (unranked)
        """
        affected: set[tuple[SubjectKey, int]] = set()
        for event in new_events:
            affected |= self._apply_event(event)
        for line in lines:
            affected |= self._apply_line(line)
        if not affected:
            return []

        self._version += 1
        updated: list[AggregatedStat] = []
        for (subject, season_id) in sorted(affected, key=lambda a: (a[0][0].value, a[0][1], a[1])):
            updated.extend(self._subject_stats(subject, Scope.season, season_id, ranked=False))
        for subject in sorted({a[0] for a in affected}, key=lambda s: (s[0].value, s[1])):
            updated.extend(self._subject_stats(subject, Scope.career, None, ranked=False))
        return updated

    def _apply_event(self, event: Event) -> set[tuple[SubjectKey, int]]:
        if event.event_id in self._event_ids:
            return set()
        self._event_ids.add(event.event_id)

        stat_name = EVENT_STATS[event.kind]
        game: GameKey = (event.season_id, event.source_id.value, event.game_id)
        affected = set()
        refs = [event.team_ref] + ([event.player_ref] if event.player_ref is not None else [])
        for ref in refs:
            subject = (ref.kind, ref.canonical_id)
            tally = self._tallies[subject].setdefault(game, GameTally())
            tally.counts[stat_name] += 1
            affected.add((subject, event.season_id))
        return affected

    def _apply_line(self, line: BoxScoreLine) -> set[tuple[SubjectKey, int]]:
        if line.line_key in self._line_keys:
            return set()
        self._line_keys.add(line.line_key)

        subject = (EntityKind.player, line.player_ref.canonical_id)
        game: GameKey = (line.season_id, line.source_id.value, line.game_id)
        tally = self._tallies[subject].setdefault(game, GameTally())
        tally.box[line.stat_name] = line.value
        return {(subject, line.season_id)}

    # =========================================================================
    # Totals
    # =========================================================================

    def _games(self, subject: SubjectKey, scope: Scope, season_id: Optional[int]) -> list[tuple[GameKey, GameTally]]:
        games = self._tallies.get(subject, {})
        return sorted(
            (key, tally)
            for key, tally in games.items()
            if scope is Scope.career or key[0] == season_id
        ) if games else []

    def _totals(self, subject: SubjectKey, scope: Scope, season_id: Optional[int]) -> Optional[SubjectTotals]:
        games = self._games(subject, scope, season_id)
        if not games:
            return None

        stat_names = PLAYER_STATS if subject[0] is EntityKind.player else TEAM_STATS
        values: dict[str, float] = {name: 0 for name in stat_names}
        flags: dict[str, list[str]] = defaultdict(list)

        for (season, source, game_id), tally in games:
            for name in EVENT_STAT_NAMES:
                values[name] += tally.counts.get(name, 0)
            for name in BOX_SCORE_ONLY_STATS:
                if name in values:
                    values[name] += tally.box.get(name, 0)

            for name, box_value in sorted(tally.box.items()):
                if name in BOX_SCORE_ONLY_STATS or name not in values:
                    continue
                derived = tally.derived(name)
                if abs(derived - box_value) > self.box_score_tolerance:
                    flags[name].append(f"box_score_mismatch:{source}:{game_id}")

        values["points"] = sum(values[name] for name in POINTS_COMPONENTS)
        values["games_played"] = len(games)
        return SubjectTotals(
            values=values,
            games_played=len(games),
            flags={name: tuple(f) for name, f in flags.items()},
        )

    def _entity(self, subject: SubjectKey) -> CanonicalEntity:
        entity = self.identity.snapshot.entity(*subject)
        if entity is None:
            raise ConstraintViolation(
                f"Aggregates reference {subject[0].value} {subject[1]} with no canonical entity",
                constraint=f"{subject[0].value}_exists",
            )
        return entity

    # =========================================================================
    # Ranking
    # =========================================================================

    def _sort_key(self, subject: SubjectKey, totals: SubjectTotals, stat_name: str) -> tuple:
        entity = self._entity(subject)
        return (
            -totals.values[stat_name],
            totals.games_played,
            normalize_name(entity.display_name).casefold(),
            subject[1],
        )

    def _ordering(self, kind: EntityKind, scope: Scope, season_id: Optional[int], stat_name: str) -> list[tuple[SubjectKey, SubjectTotals]]:
        """All subjects of ``kind`` with a non-zero ``stat_name``, in leaderboard order."""
        ranked = []
        for subject in self._tallies:
            if subject[0] is not kind:
                continue
            totals = self._totals(subject, scope, season_id)
            if totals is None or not totals.values.get(stat_name):
                continue
            ranked.append((subject, totals))
        ranked.sort(key=lambda item: self._sort_key(item[0], item[1], stat_name))
        return ranked

    def _ranks(self, kind: EntityKind, scope: Scope, season_id: Optional[int], stat_name: str) -> dict[int, int]:
        cache_key = (kind, scope, season_id, stat_name)
        cached = self._rank_cache.get(cache_key)
        if cached is not None and cached[0] == self._version:
            return cached[1]
        ordering = self._ordering(kind, scope, season_id, stat_name)
        ranks = {subject[1]: position for position, (subject, _) in enumerate(ordering, start=1)}
        self._rank_cache[cache_key] = (self._version, ranks)
        return ranks

    # =========================================================================
    # Queries
    # =========================================================================

    def _subject_stats(
        self,
        subject: SubjectKey,
        scope: Scope,
        season_id: Optional[int],
        ranked: bool = True,
    ) -> list[AggregatedStat]:
        totals = self._totals(subject, scope, season_id)
        if totals is None:
            return []
        entity = self._entity(subject)
        result = []
        for stat_name, value in totals.values.items():
            rank = None
            if ranked and value:
                rank = self._ranks(subject[0], scope, season_id, stat_name).get(subject[1])
            result.append(
                AggregatedStat(
                    subject_ref=entity,
                    scope=scope,
                    season_id=season_id if scope is Scope.season else None,
                    stat_name=stat_name,
                    value=value,
                    games_played=totals.games_played,
                    rank=rank,
                    flags=totals.flags.get(stat_name, ()),
                )
            )
        return result

    def has_subject(self, kind: EntityKind, canonical_id: int) -> bool:
        return bool(self._tallies.get((kind, canonical_id)))

    def seasons(self) -> list[int]:
        """Seasons with any aggregated data."""
        return sorted({game[0] for games in self._tallies.values() for game in games})

    def subject_stats(
        self,
        kind: EntityKind,
        canonical_id: int,
        season_id: Optional[int] = None,
        scope: Optional[Scope] = None,
    ) -> list[AggregatedStat]:
        """
        Ranked aggregates for one player or team.

        Args:
            kind: player or team
            canonical_id: Canonical id of the subject
            season_id: Season to report; None with scope=None means career
            scope: Defaults to season when season_id is given, else career

        Returns:
            One AggregatedStat per stat name, or [] when the subject has no
            data in that scope
        """
        scope = scope or (Scope.season if season_id is not None else Scope.career)
        return self._subject_stats((kind, canonical_id), scope, season_id)

    def player_stats(self, player_id: int, season_id: Optional[int] = None) -> list[AggregatedStat]:
        return self.subject_stats(EntityKind.player, player_id, season_id)

    def team_stats(self, team_id: int, season_id: Optional[int] = None) -> list[AggregatedStat]:
        return self.subject_stats(EntityKind.team, team_id, season_id)

    def leaderboard(
        self,
        stat_name: str,
        season_id: Optional[int] = None,
        limit: Optional[int] = None,
        scope: Optional[Scope] = None,
        kind: EntityKind = EntityKind.player,
    ) -> list[AggregatedStat]:
        """
        Ranked leaderboard for one stat.

        Every subject with a non-zero value appears exactly once, ranked
        1..n in the engine's total order.

        Raises:
            ValueError: If stat_name is not a known stat
        """
        if stat_name not in STAT_NAMES:
            raise ValueError(f"Unknown stat: {stat_name}")
        scope = scope or (Scope.season if season_id is not None else Scope.career)
        if scope is Scope.season and season_id is None:
            raise ValueError("season_id is required for a season leaderboard")

        ordering = self._ordering(kind, scope, season_id, stat_name)
        if limit is not None:
            ordering = ordering[:limit]
        return [
            AggregatedStat(
                subject_ref=self._entity(subject),
                scope=scope,
                season_id=season_id if scope is Scope.season else None,
                stat_name=stat_name,
                value=totals.values[stat_name],
                games_played=totals.games_played,
                rank=position,
                flags=totals.flags.get(stat_name, ()),
            )
            for position, (subject, totals) in enumerate(ordering, start=1)
        ]

    def all_stats(self, scope: Scope = Scope.season) -> list[AggregatedStat]:
        """Every ranked aggregate for ``scope``, in a stable order."""
        result = []
        subjects = sorted(self._tallies, key=lambda s: (s[0].value, s[1]))
        if scope is Scope.career:
            for subject in subjects:
                result.extend(self._subject_stats(subject, Scope.career, None))
            return result
        for season_id in self.seasons():
            for subject in subjects:
                result.extend(self._subject_stats(subject, Scope.season, season_id))
        return result

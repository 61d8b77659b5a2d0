"""
Tests for the aggregation engine: totals, box-score cross-checks, ranking.
"""

import random

import pytest

from conftest import nll_box_record, nll_play_record, pll_record

from laxstats.aggregators import AGGREGATE_SCHEMA_VERSION, AggregationEngine
from laxstats.core.errors import ConstraintViolation
from laxstats.core.models import EntityRef, Event, derive_event_id
from laxstats.core.types import EntityKind, EventKind, Scope, SourceId


@pytest.fixture
def engine(store, identity):
    return AggregationEngine(store, identity)


def season_sample(normalizer) -> list[Event]:
    specs = [
        (1, "GOAL", "P-A", "G1", 2025),
        (2, "GOAL", "P-A", "G2", 2025),
        (3, "ASSIST", "P-B", "G1", 2025),
        (4, "GOAL", "P-B", "G1", 2025),
        (5, "GROUND_BALL", "P-C", "G2", 2025),
        (6, "GOAL", "P-C", "G9", 2024),
        (7, "TURNOVER", None, "G2", 2025),
        (8, "FACEOFF_WIN", "P-B", "G2", 2025),
    ]
    return [
        normalizer.normalize(pll_record(n, event_type=kind, player_id=player, game_id=game, year=year))
        for n, kind, player, game, year in specs
    ]


def values(stats) -> dict[str, float]:
    return {s.stat_name: s.value for s in stats}


class TestTotals:
    async def test_player_season_totals(self, engine, normalizer):
        engine.apply_incremental(season_sample(normalizer))

        alpha = values(engine.player_stats(1, 2025))
        assert alpha["goals"] == 2
        assert alpha["points"] == 2
        assert alpha["games_played"] == 2

        bravo = values(engine.player_stats(2, 2025))
        assert bravo["goals"] == 1
        assert bravo["assists"] == 1
        assert bravo["points"] == 2
        assert bravo["faceoff_wins"] == 1
        assert bravo["games_played"] == 2

    async def test_career_spans_seasons(self, engine, normalizer):
        engine.apply_incremental(season_sample(normalizer))

        season = values(engine.player_stats(3, 2025))
        career = values(engine.player_stats(3))
        assert season["goals"] == 0
        assert career["goals"] == 1
        assert career["ground_balls"] == 1
        assert career["games_played"] == 2
        assert engine.seasons() == [2024, 2025]

    async def test_team_totals(self, engine, normalizer):
        engine.apply_incremental(season_sample(normalizer))

        team = values(engine.team_stats(1, 2025))
        assert team["goals"] == 3
        assert team["turnovers"] == 1
        assert "minutes" not in team

    async def test_unknown_subject_has_no_stats(self, engine):
        assert engine.player_stats(4) == []
        assert not engine.has_subject(EntityKind.player, 4)

    async def test_incremental_is_idempotent(self, engine, normalizer):
        events = season_sample(normalizer)
        engine.apply_incremental(events)
        before = engine.all_stats(Scope.career)
        assert engine.apply_incremental(events) == []
        assert engine.all_stats(Scope.career) == before

    async def test_incremental_returns_affected_subjects(self, engine, normalizer):
        updated = engine.apply_incremental([normalizer.normalize(pll_record(1, player_id="P-A"))])
        subjects = {(s.subject_ref.kind, s.subject_ref.canonical_id, s.scope) for s in updated}
        assert subjects == {
            (EntityKind.player, 1, Scope.season),
            (EntityKind.player, 1, Scope.career),
            (EntityKind.team, 1, Scope.season),
            (EntityKind.team, 1, Scope.career),
        }
        assert all(s.rank is None for s in updated)

    async def test_missing_entity_is_a_constraint_violation(self, engine):
        ref = dict(source_id=SourceId.PLL, source_local_id="ghost")
        event = Event(
            event_id=derive_event_id(SourceId.PLL, "ghost-1"),
            source_id=SourceId.PLL,
            source_local_id="ghost-1",
            season_id=2025,
            game_id="G1",
            period=1,
            clock_seconds=0,
            kind=EventKind.goal,
            team_ref=EntityRef(kind=EntityKind.team, canonical_id=1, **ref),
            player_ref=EntityRef(kind=EntityKind.player, canonical_id=99, **ref),
        )
        with pytest.raises(ConstraintViolation):
            engine.apply_incremental([event])


class TestDeterminism:
    async def test_order_and_repetition_do_not_matter(self, store, identity, normalizer):
        events = season_sample(normalizer)
        lines = [
            normalizer.normalize(nll_box_record("M1", "9001", "G", 1)),
            normalizer.normalize(nll_box_record("M1", "9001", "MIN", "33:20")),
            normalizer.normalize(nll_box_record("M2", "9001", "MIN", "41:10")),
        ]

        reference = AggregationEngine(store, identity)
        reference.apply_incremental(events, lines)
        expected = reference.all_stats(Scope.season) + reference.all_stats(Scope.career)

        rng = random.Random(7)
        for _ in range(5):
            shuffled = events + rng.sample(events, 3)
            rng.shuffle(shuffled)
            shuffled_lines = lines + lines[:1]
            rng.shuffle(shuffled_lines)

            engine = AggregationEngine(store, identity)
            split = rng.randrange(len(shuffled))
            engine.apply_incremental(shuffled[:split], shuffled_lines[:1])
            engine.apply_incremental(shuffled[split:], shuffled_lines[1:])
            assert engine.all_stats(Scope.season) + engine.all_stats(Scope.career) == expected

    async def test_incremental_matches_recompute(self, store, identity, normalizer):
        events = season_sample(normalizer)
        await store.upsert(events)

        incremental = AggregationEngine(store, identity)
        incremental.apply_incremental(reversed(events))

        rebuilt = AggregationEngine(store, identity)
        assert await rebuilt.recompute_all(Scope.career) == incremental.all_stats(Scope.career)

    async def test_ensure_fresh_rebuilds_on_schema_change(self, store, engine, normalizer):
        await store.upsert(season_sample(normalizer))
        await engine.ensure_fresh()
        assert engine.is_warm

        engine.schema_version = AGGREGATE_SCHEMA_VERSION - 1
        engine._reset()
        await engine.ensure_fresh()
        assert engine.is_warm
        assert values(engine.player_stats(1, 2025))["goals"] == 2


class TestLeaderboard:
    async def test_ranks_are_positional_and_total(self, engine, normalizer):
        engine.apply_incremental(season_sample(normalizer))

        board = engine.leaderboard("points", season_id=2025)
        assert [(e.subject_ref.canonical_id, e.value, e.rank) for e in board] == [(1, 2, 1), (2, 2, 2)]

        career = engine.leaderboard("goals")
        assert [e.rank for e in career] == list(range(1, len(career) + 1))
        assert len({e.subject_ref.canonical_id for e in career}) == len(career)

    async def test_zero_values_are_excluded(self, engine, normalizer):
        engine.apply_incremental(season_sample(normalizer))
        board = engine.leaderboard("ground_balls", season_id=2025)
        assert [e.subject_ref.canonical_id for e in board] == [3]
        assert engine.leaderboard("saves", season_id=2025) == []

    async def test_tie_breaks(self, engine, identity, normalizer):
        # Bravo: 2 goals in 1 game; Alpha and Charlie: 2 goals in 2 games each
        specs = [
            (1, "P-A", "G1"), (2, "P-A", "G2"),
            (3, "P-B", "G1"), (4, "P-B", "G1"),
            (5, "P-C", "G1"), (6, "P-C", "G3"),
        ]
        engine.apply_incremental(
            normalizer.normalize(pll_record(n, player_id=player, game_id=game)) for n, player, game in specs
        )

        board = engine.leaderboard("goals", season_id=2025)
        assert [e.subject_ref.display_name for e in board] == ["Bravo Midfield", "Alpha Attack", "Charlie Defense"]
        assert [e.rank for e in board] == [1, 2, 3]

    async def test_same_name_falls_back_to_canonical_id(self, engine, identity, normalizer):
        twin = await identity.add_entity(EntityKind.player, "alpha attack")
        await identity.link(EntityKind.player, SourceId.PLL, "P-TWIN", twin.canonical_id)
        engine.apply_incremental([
            normalizer.normalize(pll_record(1, player_id="P-TWIN")),
            normalizer.normalize(pll_record(2, player_id="P-A")),
        ])

        board = engine.leaderboard("goals", season_id=2025)
        assert [e.subject_ref.canonical_id for e in board] == [1, twin.canonical_id]

    async def test_limit_and_team_boards(self, engine, normalizer):
        engine.apply_incremental(season_sample(normalizer))
        assert len(engine.leaderboard("goals", season_id=2025, limit=1)) == 1

        teams = engine.leaderboard("goals", season_id=2025, kind=EntityKind.team)
        assert [(e.subject_ref.display_name, e.value) for e in teams] == [("Archers", 3)]

    async def test_invalid_requests(self, engine):
        with pytest.raises(ValueError):
            engine.leaderboard("touchdowns", season_id=2025)
        with pytest.raises(ValueError):
            engine.leaderboard("goals", scope=Scope.season)

    async def test_subject_ranks_match_leaderboard(self, engine, normalizer):
        engine.apply_incremental(season_sample(normalizer))
        board = {e.subject_ref.canonical_id: e.rank for e in engine.leaderboard("points", season_id=2025)}
        for player_id, rank in board.items():
            stats = {s.stat_name: s for s in engine.player_stats(player_id, 2025)}
            assert stats["points"].rank == rank


class TestBoxScoreCrossCheck:
    async def test_mismatch_flags_stat(self, engine, normalizer):
        engine.apply_incremental(
            [normalizer.normalize(nll_play_record("p1", match_id="M1"))],
            [normalizer.normalize(nll_box_record("M1", "9001", "G", 2))],
        )
        stats = {s.stat_name: s for s in engine.player_stats(1, 2025)}
        assert stats["goals"].value == 1
        assert stats["goals"].flags == ("box_score_mismatch:NLL:M1",)
        assert stats["assists"].flags == ()

    async def test_matching_box_score_is_clean(self, engine, normalizer):
        engine.apply_incremental(
            [normalizer.normalize(nll_play_record("p1", match_id="M1"))],
            [normalizer.normalize(nll_box_record("M1", "9001", "G", 1))],
        )
        stats = {s.stat_name: s for s in engine.player_stats(1, 2025)}
        assert stats["goals"].flags == ()

    async def test_tolerance(self, store, identity, normalizer):
        engine = AggregationEngine(store, identity, box_score_tolerance=1)
        engine.apply_incremental(
            [normalizer.normalize(nll_play_record("p1", match_id="M1"))],
            [normalizer.normalize(nll_box_record("M1", "9001", "G", 2))],
        )
        stats = {s.stat_name: s for s in engine.player_stats(1, 2025)}
        assert stats["goals"].flags == ()

    async def test_shots_on_goal_is_not_cross_checked(self, engine, normalizer):
        engine.apply_incremental(
            [normalizer.normalize(nll_play_record("p1", match_id="M1", play_type="SHOT"))],
            [
                normalizer.normalize(nll_box_record("M1", "9001", "S", 1)),
                normalizer.normalize(nll_box_record("M1", "9001", "SOG", 3)),
            ],
        )
        stats = {s.stat_name: s for s in engine.player_stats(1, 2025)}
        assert stats["shots"].value == 1
        assert stats["shots"].flags == ()
        assert stats["shots_on_goal"].value == 3
        assert stats["shots_on_goal"].flags == ()
        assert "shots_on_goal" not in values(engine.team_stats(3, 2025))

    async def test_minutes_come_from_box_scores(self, engine, normalizer):
        engine.apply_incremental([], [
            normalizer.normalize(nll_box_record("M1", "9001", "MIN", "30:00")),
            normalizer.normalize(nll_box_record("M2", "9001", "MIN", "15:30")),
        ])
        stats = values(engine.player_stats(1, 2025))
        assert stats["minutes"] == pytest.approx(45.5)
        assert stats["games_played"] == 2

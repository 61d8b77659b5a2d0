"""
Tests for the per-source normalizer branches and the normalizer service.
"""

import pytest

from conftest import FIXED_TIME, nll_box_record, nll_play_record, pll_record

from laxstats.core.errors import UnmappablePlayer, UnmappableTeam, UnrecognizedShape
from laxstats.core.models import BoxScoreLine, Event, RawRecord, derive_event_id
from laxstats.core.types import EntityKind, EventKind, SourceId
from laxstats.normalizer.common import parse_clock, parse_season, parse_stat_value


class TestParsing:
    def test_clock(self):
        assert parse_clock("12:34") == 754
        assert parse_clock(" 0:05 ") == 5
        assert parse_clock(90) == 90
        assert parse_clock("90") == 90
        with pytest.raises(ValueError):
            parse_clock("12:75")
        with pytest.raises(ValueError):
            parse_clock(True)

    def test_season(self):
        assert parse_season(2025) == 2025
        assert parse_season("2025") == 2025
        assert parse_season("2025-26") == 2025
        with pytest.raises(ValueError):
            parse_season("last year")

    def test_stat_value(self):
        assert parse_stat_value(3) == 3.0
        assert parse_stat_value("4") == 4.0
        assert parse_stat_value("45:30") == pytest.approx(45.5)
        with pytest.raises(ValueError):
            parse_stat_value(None)


class TestPLLNormalizer:
    def test_v2_goal(self, normalizer):
        event = normalizer.normalize(pll_record(101, clock="08:15", period=3, description="Top shelf"))

        assert isinstance(event, Event)
        assert event.event_id == derive_event_id(SourceId.PLL, "101")
        assert event.kind is EventKind.goal
        assert event.season_id == 2025
        assert event.game_id == "G1"
        assert event.period == 3
        assert event.clock_seconds == 495
        assert event.team_ref.canonical_id == 1
        assert event.player_ref.canonical_id == 1
        assert event.player_ref.source_local_id == "P-A"
        assert event.description == "Top shelf"

    def test_two_point_goal_is_a_goal(self, normalizer):
        event = normalizer.normalize(pll_record(102, event_type="2pt goal"))
        assert event.kind is EventKind.goal

    def test_v1_legacy_payload(self, normalizer):
        record = RawRecord(
            source_id=SourceId.PLL,
            source_local_id="7",
            payload={
                "id": 7,
                "year": 2023,
                "gameId": 44,
                "period": 2,
                "minutes": 3,
                "seconds": 20,
                "playType": "Ground Ball",
                "teamId": "T-RED",
                "playerId": "P-B",
            },
            fetched_at=FIXED_TIME,
        )
        event = normalizer.normalize(record)

        assert event.kind is EventKind.ground_ball
        assert event.clock_seconds == 200
        assert event.game_id == "44"
        assert event.team_ref.canonical_id == 2

    def test_team_only_event(self, normalizer):
        event = normalizer.normalize(pll_record(103, event_type="TURNOVER", player_id=None))
        assert event.player_ref is None
        assert event.team_ref.canonical_id == 1

    def test_unknown_event_type(self, normalizer):
        with pytest.raises(UnrecognizedShape):
            normalizer.normalize(pll_record(104, event_type="TIMEOUT"))

    def test_missing_fields(self, normalizer):
        record = RawRecord(source_id=SourceId.PLL, source_local_id="x", payload={"eventType": "GOAL"})
        with pytest.raises(UnrecognizedShape):
            normalizer.normalize(record)

    def test_out_of_range_period(self, normalizer):
        with pytest.raises(UnrecognizedShape):
            normalizer.normalize(pll_record(105, period=0))

    def test_unmapped_player(self, normalizer):
        with pytest.raises(UnmappablePlayer) as exc_info:
            normalizer.normalize(pll_record(106, player_id="P-NEW", playerName="New Guy"))
        error = exc_info.value
        assert error.kind == "player"
        assert error.source_local_id == "P-NEW"
        assert error.display_name == "New Guy"
        assert error.record.source_local_id == "106"

    def test_unmapped_team(self, normalizer):
        with pytest.raises(UnmappableTeam):
            normalizer.normalize(pll_record(107, team_id="T-EXP"))


class TestNLLNormalizer:
    def test_play(self, normalizer):
        event = normalizer.normalize(nll_play_record("p9", play_type="Loose Ball"))

        assert event.kind is EventKind.ground_ball
        assert event.season_id == 2025
        assert event.clock_seconds == 450
        assert event.team_ref.canonical_id == 3
        assert event.player_ref.canonical_id == 1

    def test_box_score_cell(self, normalizer):
        line = normalizer.normalize(nll_box_record("M1", "9001", "G", 2))

        assert isinstance(line, BoxScoreLine)
        assert line.stat_name == "goals"
        assert line.value == 2.0
        assert line.season_id == 2025
        assert line.player_ref.canonical_id == 1
        assert line.line_key == "NLL:M1:1:goals"

    def test_minutes_cell(self, normalizer):
        line = normalizer.normalize(nll_box_record("M1", "9001", "MIN", "52:30"))
        assert line.stat_name == "minutes"
        assert line.value == pytest.approx(52.5)

    def test_shots_and_shots_on_goal_stay_separate(self, normalizer):
        shots = normalizer.normalize(nll_box_record("M1", "9001", "S", 5))
        on_goal = normalizer.normalize(nll_box_record("M1", "9001", "SOG", 2))

        assert (shots.stat_name, shots.value) == ("shots", 5.0)
        assert (on_goal.stat_name, on_goal.value) == ("shots_on_goal", 2.0)
        assert shots.line_key != on_goal.line_key

    def test_unknown_column(self, normalizer):
        with pytest.raises(UnrecognizedShape):
            normalizer.normalize(nll_box_record("M1", "9001", "XYZ", 1))

    def test_negative_value(self, normalizer):
        with pytest.raises(UnrecognizedShape):
            normalizer.normalize(nll_box_record("M1", "9001", "G", -1))

    def test_unknown_record_prefix(self, normalizer):
        record = RawRecord(source_id=SourceId.NLL, source_local_id="roster:1", payload={})
        with pytest.raises(UnrecognizedShape):
            normalizer.normalize(record)


class TestWLANormalizer:
    def test_nested_payload(self, normalizer):
        record = RawRecord(
            source_id=SourceId.WLA,
            source_local_id="88",
            payload={
                "event_id": 88,
                "game": {"id": "wg-1", "season": 2025},
                "period": 2,
                "elapsed": "05:00",
                "action": "G",
                "team": {"id": "w-10", "name": "Archers"},
                "player": {"id": "wp-4", "name": "Delta Goalie"},
                "note": "PPG",
            },
        )
        event = normalizer.normalize(record)

        assert event.kind is EventKind.goal
        assert event.game_id == "wg-1"
        assert event.team_ref.canonical_id == 1
        assert event.player_ref.canonical_id == 4
        assert event.description == "PPG"

    def test_flat_payload(self, normalizer):
        record = RawRecord(
            source_id=SourceId.WLA,
            source_local_id="89",
            payload={
                "event_id": 89,
                "game_id": "wg-1",
                "season": "2025",
                "period": 1,
                "elapsed": 30,
                "action": "sv",
                "team_id": "w-10",
                "player_id": "wp-4",
            },
        )
        event = normalizer.normalize(record)

        assert event.kind is EventKind.save
        assert event.clock_seconds == 30

    def test_unknown_action_is_unrecognized_even_with_unknown_team(self, normalizer):
        record = RawRecord(
            source_id=SourceId.WLA,
            source_local_id="90",
            payload={
                "event_id": 90,
                "game": {"id": "wg-1", "season": 2025},
                "period": 1,
                "elapsed": 30,
                "action": "???",
                "team": {"id": "nobody"},
            },
        )
        with pytest.raises(UnrecognizedShape):
            normalizer.normalize(record)


class TestNormalizerIsPure:
    def test_same_record_same_output(self, normalizer):
        record = pll_record(200)
        assert normalizer.normalize(record) == normalizer.normalize(record)

    async def test_resolves_after_link(self, normalizer, identity):
        record = pll_record(202, player_id="P-LATE")
        with pytest.raises(UnmappablePlayer):
            normalizer.normalize(record)
        await identity.link(EntityKind.player, SourceId.PLL, "P-LATE", 2)
        assert normalizer.normalize(record).player_ref.canonical_id == 2

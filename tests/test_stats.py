"""Windowed aggregation and leaderboard ranking."""

from datetime import timedelta

import pytest

from config.settings import ScoringSettings
from pickstats.models import Token
from pickstats.services.stats.aggregation import AggregateSnapshot, AggregationEngine, PickStats, empty_stats
from pickstats.services.stats.leaderboard import LeaderboardBuilder, LeaderboardMetric
from pickstats.utils.timeframes import Timeframe

from conftest import NOW, make_pick

OPEN_SCORING = ScoringSettings(qualification_enabled=False)


class TestTimeframes:
    def test_windows_are_right_open(self):
        assert Timeframe.DAY.contains(NOW - timedelta(hours=23), NOW)
        assert Timeframe.DAY.contains(NOW - timedelta(days=1), NOW)
        assert not Timeframe.DAY.contains(NOW - timedelta(days=1, seconds=1), NOW)
        assert not Timeframe.DAY.contains(NOW, NOW)

    def test_all_time_has_no_lower_bound(self):
        assert Timeframe.ALL_TIME.start(NOW) is None
        assert Timeframe.ALL_TIME.contains(NOW - timedelta(days=3650), NOW)
        assert Timeframe.MONTH.window == timedelta(days=30)


class TestAggregation:
    def test_picks_fall_into_every_window_that_contains_them(self):
        picks = [
            make_pick(1, call_date=NOW - timedelta(hours=2), highest_multiplier=3.0, hit_date=NOW),
            make_pick(2, call_date=NOW - timedelta(hours=12), highest_multiplier=1.5),
            make_pick(3, call_date=NOW - timedelta(days=3)),
            make_pick(4, call_date=NOW - timedelta(days=20), highest_multiplier=0.5),
            make_pick(5, call_date=NOW - timedelta(days=90), highest_multiplier=10.0, hit_date=NOW),
        ]
        snapshot = AggregationEngine(OPEN_SCORING).aggregate(picks, {}, NOW)

        totals = {tf: snapshot.user_stats("alice", tf).total_picks for tf in Timeframe}
        assert totals == {
            Timeframe.SIX_HOURS: 1,
            Timeframe.DAY: 2,
            Timeframe.WEEK: 3,
            Timeframe.MONTH: 4,
            Timeframe.ALL_TIME: 5,
        }
        day = snapshot.user_stats("alice", Timeframe.DAY)
        assert day.hits == 1
        assert day.misses == 1
        assert day.hit_rate == 50.0
        assert day.average_multiplier == pytest.approx(2.25)
        assert day.best_pick.pick_id == 1

        all_time = snapshot.user_stats("alice", Timeframe.ALL_TIME)
        # unrefreshed pick 3 counts as x1
        assert all_time.pick_returns == pytest.approx(3.0 + 1.5 + 1.0 + 0.5 + 10.0)
        assert all_time.best_pick.pick_id == 5

    def test_user_with_only_old_picks_gets_zero_stats(self):
        picks = [make_pick(1, user_id="bob", call_date=NOW - timedelta(days=40))]
        snapshot = AggregationEngine(OPEN_SCORING).aggregate(picks, {}, NOW)

        assert "bob" in snapshot.users
        six_hours = snapshot.user_stats("bob", Timeframe.SIX_HOURS)
        assert six_hours.total_picks == 0
        assert six_hours.hit_rate == 0.0
        assert six_hours.average_multiplier == 0.0
        assert six_hours.best_pick is None

    def test_group_stats_and_qualification(self):
        tokens = {
            ("Liquid", "solana"): Token(address="Liquid", chain="solana", liquidity=50_000.0, volume_24h=100_000.0, symbol="LIQ"),
            ("Thin", "solana"): Token(address="Thin", chain="solana", liquidity=10.0, volume_24h=100_000.0),
        }
        picks = [
            make_pick(1, address="Liquid", group_id=7, market_cap_at_call=500_000.0, highest_multiplier=2.0, hit_date=NOW),
            make_pick(2, address="Thin", group_id=7, market_cap_at_call=500_000.0, highest_multiplier=9.0),
            make_pick(3, address="Liquid", user_id="bob", group_id=7, market_cap_at_call=500_000.0),
        ]
        snapshot = AggregationEngine(ScoringSettings()).aggregate(picks, tokens, NOW)

        group = snapshot.group_stats(7, Timeframe.DAY)
        assert snapshot.eligible_picks == 2
        assert group.total_picks == 2
        assert group.hits == 1
        assert group.best_pick.symbol == "LIQ"
        assert snapshot.user_stats("alice", Timeframe.DAY).total_picks == 1

    def test_empty_input_is_a_valid_snapshot(self):
        snapshot = AggregationEngine(OPEN_SCORING).aggregate([], {}, NOW)
        assert snapshot.users == {}
        assert snapshot.user_stats("nobody", Timeframe.WEEK).as_dict()["total_picks"] == 0


def _stats(total, hits, returns):
    return PickStats(total_picks=total, hits=hits, pick_returns=returns)


class TestLeaderboard:
    def _aggregate(self, rows):
        users = {}
        for user_id, stats in rows.items():
            users[user_id] = empty_stats()
            users[user_id][Timeframe.DAY] = stats
        return AggregateSnapshot(generated_at=NOW, users=users)

    def test_ties_break_on_total_picks_then_user_id(self):
        aggregate = self._aggregate(
            {
                "carol": _stats(2, 1, 4.0),
                "alice": _stats(4, 2, 8.0),
                "bob": _stats(4, 2, 8.0),
                "dave": _stats(1, 1, 5.0),
                "erin": _stats(0, 0, 0.0),
            }
        )
        boards = LeaderboardBuilder().build(aggregate)

        returns = boards[(Timeframe.DAY, LeaderboardMetric.RETURNS)]
        assert [entry.user_id for entry in returns.entries] == ["dave", "alice", "bob", "carol"]
        assert [entry.rank for entry in returns.entries] == [1, 2, 3, 4]

        hit_rate = boards[(Timeframe.DAY, LeaderboardMetric.HIT_RATE)]
        assert [entry.user_id for entry in hit_rate.entries] == ["dave", "alice", "bob", "carol"]

        total = boards[(Timeframe.DAY, LeaderboardMetric.TOTAL_PICKS)]
        assert [entry.user_id for entry in total.entries] == ["alice", "bob", "carol", "dave"]

        assert boards[(Timeframe.WEEK, LeaderboardMetric.RETURNS)].entries == ()
        assert len(boards) == len(Timeframe) * len(LeaderboardMetric)

    def test_size_caps_entries_and_snapshot_is_serialisable(self):
        aggregate = self._aggregate({f"user{i:02d}": _stats(i + 1, 0, float(i + 1)) for i in range(10)})
        board = LeaderboardBuilder(size=3).build(aggregate)[(Timeframe.DAY, LeaderboardMetric.TOTAL_PICKS)]

        assert [entry.user_id for entry in board.entries] == ["user09", "user08", "user07"]
        payload = board.as_dict()
        assert payload["timeframe"] == "day"
        assert payload["metric"] == "total_picks"
        assert payload["version"] == int(NOW.timestamp() * 1000)
        assert board.entity_id == "day:total_picks"


class TestGroupPickBoards:
    def _aggregate(self):
        picks = [
            make_pick(2, group_id=7, call_date=NOW - timedelta(hours=2), highest_multiplier=3.0),
            make_pick(1, group_id=7, call_date=NOW - timedelta(hours=2), highest_multiplier=3.0, hit_date=NOW),
            make_pick(3, group_id=7, call_date=NOW - timedelta(days=3), highest_multiplier=5.0),
            make_pick(4, group_id=7, call_date=NOW - timedelta(hours=1)),
            make_pick(5, group_id=7, market_cap_at_call=0.0, highest_multiplier=50.0),
            make_pick(6, group_id=8, user_id="bob", highest_multiplier=2.0),
            make_pick(7, group_id=9, call_date=NOW - timedelta(days=40), highest_multiplier=4.0),
        ]
        return AggregationEngine(OPEN_SCORING).aggregate(picks, {}, NOW)

    def test_qualified_picks_ranked_by_multiplier_then_id(self):
        boards = LeaderboardBuilder().build_group_boards(self._aggregate())

        def ids(group_id, timeframe):
            return [entry.pick_id for entry in boards[(group_id, timeframe)].entries]

        assert ids(7, Timeframe.DAY) == [1, 2, 4]
        assert ids(7, Timeframe.WEEK) == [3, 1, 2, 4]
        assert ids(8, Timeframe.SIX_HOURS) == [6]
        assert ids(9, Timeframe.MONTH) == []
        assert ids(9, Timeframe.ALL_TIME) == [7]
        assert len(boards) == 3 * len(Timeframe)

    def test_size_caps_entries_and_payloads_line_up(self):
        board = LeaderboardBuilder(size=2).build_group_boards(self._aggregate())[(7, Timeframe.WEEK)]

        assert board.ranking() == [
            {"rank": 1, "pick_id": 3, "multiplier": 5.0},
            {"rank": 2, "pick_id": 1, "multiplier": 3.0},
        ]
        data = board.data()
        assert list(data) == ["3", "1"]
        assert data["1"]["hit_date"] == NOW.isoformat()
        assert board.entity_id == "7:week"

"""Unit tests for deterministic weekly ranking."""

import itertools
from datetime import datetime, timezone

from bookpost.competition.ranking import rank_change, rank_entries


def _entry(user_id: int, seconds: int, created_day: int = 1) -> dict:
    return {
        "user_id": user_id,
        "duration_seconds": seconds,
        "created_at": datetime(2025, 1, created_day, tzinfo=timezone.utc),
    }


class TestRankEntries:
    def test_longer_duration_ranks_higher(self):
        ranked = rank_entries([_entry(1, 600), _entry(2, 1800), _entry(3, 1200)])
        assert [e["user_id"] for e in ranked] == [2, 3, 1]
        assert [e["rank"] for e in ranked] == [1, 2, 3]

    def test_tie_broken_by_earlier_account(self):
        ranked = rank_entries([_entry(1, 600, created_day=5), _entry(2, 600, created_day=2)])
        assert [e["user_id"] for e in ranked] == [2, 1]

    def test_full_tie_broken_by_user_id(self):
        ranked = rank_entries([_entry(9, 600), _entry(4, 600)])
        assert [e["user_id"] for e in ranked] == [4, 9]

    def test_missing_created_at_sorts_last_among_ties(self):
        no_date = {"user_id": 1, "duration_seconds": 600, "created_at": None}
        ranked = rank_entries([no_date, _entry(2, 600)])
        assert [e["user_id"] for e in ranked] == [2, 1]

    def test_order_independent_of_input_order(self):
        entries = [_entry(1, 600), _entry(2, 600, created_day=3), _entry(3, 900), _entry(4, 600)]
        expected = [e["user_id"] for e in rank_entries([dict(e) for e in entries])]
        for perm in itertools.permutations(entries):
            assert [e["user_id"] for e in rank_entries([dict(e) for e in perm])] == expected

    def test_ranks_are_contiguous(self):
        ranked = rank_entries([_entry(i, 100 * (i % 3)) for i in range(1, 8)])
        assert [e["rank"] for e in ranked] == list(range(1, 8))


class TestRankChange:
    def test_moved_up(self):
        assert rank_change(2, 5) == 3

    def test_moved_down(self):
        assert rank_change(4, 1) == -3

    def test_new_entry(self):
        assert rank_change(1, None) is None

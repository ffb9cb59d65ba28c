"""
Tests for leaderboard ranking and pagination.
"""

import random

import pytest

from league_indexer.leaderboard import accuracy_percent, build_leaderboard, find_entry, paginate
from tests.fakes import ALICE, BOB, CAROL, DAVE, stats


def _rows(*aggregates):
    return [(s.participant, s) for s in aggregates]


class TestAccuracy:
    """Tests for integer accuracy rounding."""

    @pytest.mark.parametrize(
        "correct,total,expected",
        [
            (0, 1, 0),
            (1, 1, 100),
            (1, 2, 50),
            (1, 3, 33),
            (2, 3, 67),
            (1, 8, 13),  # 12.5 rounds up
            (3, 8, 38),  # 37.5 rounds up
            (0, 0, 0),
        ],
    )
    def test_round_half_up(self, correct, total, expected):
        assert accuracy_percent(correct, total) == expected

    def test_impossible_not_clamped(self):
        assert accuracy_percent(3, 1) == 300


class TestBuildLeaderboard:
    """Tests for build_leaderboard ordering."""

    def test_sorted_by_accuracy_total_streak(self):
        rows = _rows(
            stats(ALICE, 1, 2, current=0),   # 50%
            stats(BOB, 3, 4, current=1),     # 75%, total 4
            stats(CAROL, 6, 8, current=0),   # 75%, total 8
            stats(DAVE, 6, 8, current=3),    # 75%, total 8, longer streak
        )

        board = build_leaderboard(rows)

        assert [e.participant for e in board] == [DAVE, CAROL, BOB, ALICE]
        assert [e.rank for e in board] == [1, 2, 3, 4]
        assert board[0].accuracy_percent == 75

    def test_zero_total_excluded(self):
        board = build_leaderboard(_rows(stats(ALICE, 0, 0), stats(BOB, 0, 1)))

        assert [e.participant for e in board] == [BOB]
        assert board[0].rank == 1
        assert board[0].accuracy_percent == 0

    def test_full_tie_broken_by_address(self):
        board = build_leaderboard(_rows(stats(CAROL, 1, 2), stats(ALICE, 1, 2), stats(BOB, 1, 2)))
        assert [e.participant for e in board] == [ALICE, BOB, CAROL]

    def test_deterministic_for_any_input_order(self):
        """Shuffled input produces an identical board."""
        rows = _rows(
            stats(ALICE, 1, 2, current=1),
            stats(BOB, 1, 2, current=1),
            stats(CAROL, 2, 4, current=1),
            stats(DAVE, 3, 3, current=2),
        )
        expected = build_leaderboard(rows)

        for seed in range(5):
            shuffled = list(rows)
            random.Random(seed).shuffle(shuffled)
            assert build_leaderboard(shuffled) == expected

    def test_ranks_contiguous_and_unique(self):
        rows = [(f"0x{i:040x}", stats(f"0x{i:040x}", i % 3, 3)) for i in range(1, 30)]
        board = build_leaderboard(rows)
        assert [e.rank for e in board] == list(range(1, len(board) + 1))

    def test_impossible_aggregate_ranked_unclamped(self):
        board = build_leaderboard(_rows(stats(ALICE, 3, 1), stats(BOB, 1, 1)))

        assert board[0].participant == ALICE
        assert board[0].accuracy_percent == 300

    def test_empty(self):
        assert build_leaderboard([]) == []


class TestPaginate:
    """Tests for page slicing and rank lookup."""

    def _board(self, n):
        return build_leaderboard((f"0x{i:040x}", stats(f"0x{i:040x}", 1, 1)) for i in range(1, n + 1))

    def test_pages(self):
        board = self._board(150)

        first = paginate(board, 1, 65)
        last = paginate(board, 3, 65)

        assert len(first.entries) == 65
        assert first.entries[0].rank == 1
        assert first.pages == 3
        assert len(last.entries) == 20
        assert last.entries[0].rank == 131

    def test_page_past_end_empty(self):
        page = paginate(self._board(3), 2, 65)
        assert page.entries == ()
        assert page.total == 3

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            paginate([], 0, 65)
        with pytest.raises(ValueError):
            paginate([], 1, 0)

    def test_find_entry_case_insensitive(self):
        board = build_leaderboard(_rows(stats(ALICE, 1, 1), stats(BOB, 0, 1)))

        entry = find_entry(board, BOB.upper().replace("0X", "0x"))

        assert entry is not None
        assert entry.rank == 2
        assert find_entry(board, CAROL) is None

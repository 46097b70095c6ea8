"""Tests for leaderboard ranking and rank badges."""
import random

import pytest

from engagement.models import LeaderboardOrder
from engagement.services.leaderboard import (
    StudentStanding,
    badge_for_rank,
    rank_of,
    rank_students,
)


def standing(student_id, points, level=1):
    return StudentStanding(
        student_id=student_id,
        display_name=f"Student {student_id}",
        points=points,
        level=level,
    )


class TestBadgeForRank:

    @pytest.mark.parametrize("rank,badge", [
        (1, "👑"),
        (2, "🥈"),
        (3, "🥉"),
        (4, "🏆"),
        (10, "🏆"),
        (11, "⭐"),
        (50, "⭐"),
        (51, "🎯"),
        (500, "🎯"),
    ])
    def test_thresholds(self, rank, badge):
        assert badge_for_rank(rank) == badge


class TestRankStudents:

    def test_empty(self):
        assert rank_students([]) == []

    def test_points_descending(self):
        entries = rank_students([standing(1, 100), standing(2, 300), standing(3, 200)])
        assert [e.student_id for e in entries] == [2, 3, 1]
        assert [e.rank for e in entries] == [1, 2, 3]
        assert [e.badge for e in entries] == ["👑", "🥈", "🥉"]

    def test_ties_broken_by_student_id(self):
        """Equal points still get distinct ranks, lowest id first."""
        entries = rank_students([standing(7, 500), standing(3, 500), standing(5, 500)])
        assert [e.student_id for e in entries] == [3, 5, 7]
        assert [e.rank for e in entries] == [1, 2, 3]

    def test_order_by_level_then_points(self):
        standings = [
            standing(1, points=900, level=2),
            standing(2, points=100, level=3),
            standing(3, points=950, level=2),
        ]
        entries = rank_students(standings, LeaderboardOrder.LEVEL)
        assert [e.student_id for e in entries] == [2, 3, 1]

    def test_order_by_accepts_string(self):
        entries = rank_students([standing(1, 10, level=5), standing(2, 20, level=1)], "level")
        assert entries[0].student_id == 1

    def test_invalid_order_rejected(self):
        with pytest.raises(ValueError):
            rank_students([standing(1, 10)], "streak")

    def test_current_user_flagged(self):
        entries = rank_students([standing(1, 10), standing(2, 20)], current_student_id=1)
        flags = {e.student_id: e.is_current_user for e in entries}
        assert flags == {1: True, 2: False}

    def test_deterministic_regardless_of_input_order(self):
        standings = [standing(i, points=(i * 37) % 5 * 100, level=i % 3 + 1) for i in range(1, 60)]
        expected = rank_students(standings)

        shuffled = standings[:]
        random.Random(42).shuffle(shuffled)
        assert rank_students(shuffled) == expected

    def test_ranks_are_contiguous(self):
        standings = [standing(i, points=(i % 4) * 50) for i in range(1, 30)]
        entries = rank_students(standings)
        assert [e.rank for e in entries] == list(range(1, 30))


class TestRankOf:

    def test_present(self):
        entries = rank_students([standing(1, 10), standing(2, 20)])
        assert rank_of(1, entries) == 2

    def test_missing_ranks_last(self):
        entries = rank_students([standing(1, 10), standing(2, 20)])
        assert rank_of(99, entries) == 3

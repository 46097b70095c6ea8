"""Leaderboard ranking and badges."""

from dataclasses import dataclass
from typing import Iterable

from engagement.models.gamification import LeaderboardOrder


# Rank thresholds, checked in order: (last rank covered, badge)
RANK_BADGES: tuple[tuple[int, str], ...] = (
    (1, "👑"),
    (2, "🥈"),
    (3, "🥉"),
    (10, "🏆"),
    (50, "⭐"),
)
DEFAULT_BADGE = "🎯"


def badge_for_rank(rank: int) -> str:
    """Badge for a 1-based rank: crown, silver, bronze, trophy to 10, star to 50."""
    for last_rank, badge in RANK_BADGES:
        if rank <= last_rank:
            return badge
    return DEFAULT_BADGE


@dataclass(frozen=True)
class StudentStanding:
    """Per-student totals the ranker sorts on."""

    student_id: int
    display_name: str
    points: int
    level: int


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    student_id: int
    display_name: str
    points: int
    level: int
    badge: str
    is_current_user: bool = False


def rank_students(
    standings: Iterable[StudentStanding],
    order_by: LeaderboardOrder | str = LeaderboardOrder.POINTS,
    current_student_id: int | None = None,
) -> list[LeaderboardEntry]:
    """
    Rank every student. Ranks are 1..n by sorted position, so equal scores
    still get distinct consecutive ranks.

    Sort order: ``order_by`` descending, then points descending, then
    student id ascending.
    """
    order = LeaderboardOrder(order_by)  # ValueError for anything else

    def sort_key(s: StudentStanding) -> tuple[int, int, int]:
        primary = s.level if order is LeaderboardOrder.LEVEL else s.points
        return (-primary, -s.points, s.student_id)

    ordered = sorted(standings, key=sort_key)
    return [
        LeaderboardEntry(
            rank=position,
            student_id=s.student_id,
            display_name=s.display_name,
            points=s.points,
            level=s.level,
            badge=badge_for_rank(position),
            is_current_user=current_student_id is not None and s.student_id == current_student_id,
        )
        for position, s in enumerate(ordered, 1)
    ]


def rank_of(student_id: int, entries: list[LeaderboardEntry]) -> int:
    """A student's rank in a full ranking; students missing from it rank last + 1."""
    for entry in entries:
        if entry.student_id == student_id:
            return entry.rank
    return len(entries) + 1

"""Engagement engine - the operations exposed to the calling layer.

The engine is stateless between calls. Everything it knows comes from the
injected store; the catalog and settings are fixed at construction.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from engagement.core.config import Settings, settings as default_settings
from engagement.models.gamification import LeaderboardOrder
from engagement.services.achievements import AchievementEvaluator, AchievementStatus
from engagement.services.catalog import Catalog, default_catalog
from engagement.services.challenges import ChallengeProgress, ChallengeTracker
from engagement.services.leaderboard import (
    LeaderboardEntry,
    StudentStanding,
    rank_of,
    rank_students,
)
from engagement.services.scoring import (
    ScoreCalculator,
    level_from_xp,
    require_aware,
    sum_rewards,
)
from engagement.services.store import ActivityStore

logger = logging.getLogger(__name__)


@dataclass
class EngagementProfile:
    """Derived engagement state for one student; recomputed on every read."""

    student_id: int
    level: int
    xp: int
    xp_to_next: int
    total_points: int
    rank: int
    streak_days: int
    achievements: list[AchievementStatus] = field(default_factory=list)


class EngagementEngine:
    """Composes the score calculator, evaluator, tracker and ranker."""

    def __init__(
        self,
        store: ActivityStore,
        catalog: Catalog | None = None,
        settings: Settings | None = None,
    ):
        self.store = store
        self.catalog = catalog if catalog is not None else default_catalog()
        self.settings = settings if settings is not None else default_settings

        self.scores = ScoreCalculator(self.store, self.catalog, self.settings)
        self.evaluator = AchievementEvaluator(self.store, self.catalog, self.settings)
        self.tracker = ChallengeTracker(self.store, self.catalog, self.settings)

    @staticmethod
    def _resolve_now(now: datetime | None) -> datetime:
        if now is None:
            return datetime.now(timezone.utc)
        return require_aware(now)

    async def _standings(self, include_inactive: bool = False) -> list[StudentStanding]:
        students = await self.store.fetch_all_students_with_unlocks(include_inactive)
        standings = []
        for student in students:
            xp, points = sum_rewards(student.unlocks, self.catalog)
            standings.append(StudentStanding(
                student_id=student.student_id,
                display_name=student.display_name,
                points=points,
                level=level_from_xp(xp, self.settings.level_xp_step),
            ))
        return standings

    async def get_profile(self, student_id: int, now: datetime | None = None) -> EngagementProfile:
        """XP, level, points, rank, streak and unlocked achievements for a student."""
        now = self._resolve_now(now)

        unlocks = await self.store.fetch_unlocked(student_id)
        sessions = await self.scores.fetch_study_sessions(student_id, now)
        metrics = self.scores.metrics_from(unlocks, sessions, now)

        # Profile rank counts inactive students too; the leaderboard does not
        ranking = rank_students(await self._standings(include_inactive=True), LeaderboardOrder.POINTS)

        unlocked = []
        for unlock in unlocks:
            definition = self.catalog.get_achievement(unlock.achievement_id)
            if definition is None:
                continue
            unlocked.append(AchievementStatus(
                definition=definition,
                unlocked=True,
                unlocked_at=unlock.unlocked_at,
            ))

        return EngagementProfile(
            student_id=student_id,
            level=metrics.level,
            xp=metrics.xp,
            xp_to_next=metrics.xp_to_next,
            total_points=metrics.total_points,
            rank=rank_of(student_id, ranking),
            streak_days=metrics.streak_days,
            achievements=unlocked,
        )

    async def list_achievements(
        self,
        student_id: int,
        now: datetime | None = None,
    ) -> list[AchievementStatus]:
        """Every catalog achievement with the student's unlock state and progress."""
        return await self.evaluator.statuses(student_id, self._resolve_now(now))

    async def get_leaderboard(
        self,
        order_by: LeaderboardOrder | str = LeaderboardOrder.POINTS,
        limit: int | None = None,
        current_student_id: int | None = None,
    ) -> list[LeaderboardEntry]:
        """Top ``limit`` students ranked over the full roster."""
        if limit is None:
            limit = self.settings.leaderboard_default_limit
        if limit < 1:
            raise ValueError("limit must be at least 1")
        limit = min(limit, self.settings.leaderboard_max_limit)

        ranking = rank_students(await self._standings(), order_by, current_student_id)
        return ranking[:limit]

    async def list_challenges(
        self,
        student_id: int,
        now: datetime | None = None,
        anchor: date | None = None,
    ) -> list[ChallengeProgress]:
        """Progress on each catalog challenge in its current window."""
        return await self.tracker.list_challenges(student_id, self._resolve_now(now), anchor)

    async def evaluate_achievements(self, student_id: int, now: datetime | None = None) -> list[str]:
        """Unlock newly earned achievements; returns the ids unlocked by this call."""
        newly_unlocked = await self.evaluator.evaluate(student_id, self._resolve_now(now))
        if newly_unlocked:
            logger.info("Student %d unlocked %d achievement(s)", student_id, len(newly_unlocked))
        return newly_unlocked

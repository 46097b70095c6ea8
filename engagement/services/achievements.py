"""Achievement evaluation - progress metrics and idempotent unlocking."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from engagement.core.config import Settings
from engagement.core.exceptions import ConcurrentUnlockConflict
from engagement.models.activity import ActivityKind
from engagement.models.gamification import AchievementDefinition
from engagement.services.catalog import Catalog
from engagement.services.scoring import (
    ActivitySnapshot,
    current_streak,
    longest_streak,
    require_aware,
    trailing_window_start,
    wellness_score,
)
from engagement.services.store import ActivityStore

logger = logging.getLogger(__name__)


# =============================================================================
# PROGRESS METRICS
# =============================================================================

@dataclass(frozen=True)
class MetricContext:
    """Tunables the progress metrics read."""

    streak_window_days: int
    high_wellness_score: int

    @classmethod
    def from_settings(cls, settings: Settings) -> "MetricContext":
        return cls(
            streak_window_days=settings.streak_window_days,
            high_wellness_score=settings.high_wellness_score,
        )


ProgressMetric = Callable[[ActivitySnapshot, MetricContext], float]


def submitted_assignments(snapshot: ActivitySnapshot, ctx: MetricContext) -> float:
    return sum(1 for s in snapshot.submissions if not s.is_draft)


def perfect_grades(snapshot: ActivitySnapshot, ctx: MetricContext) -> float:
    return sum(1 for g in snapshot.grades if g.is_perfect)


def study_streak(snapshot: ActivitySnapshot, ctx: MetricContext) -> float:
    window_start = trailing_window_start(snapshot.now, snapshot.tz, ctx.streak_window_days)
    recent = [s for s in snapshot.study_sessions if s.timestamp >= window_start]
    return current_streak(snapshot.active_dates(recent), snapshot.today, ctx.streak_window_days)


def high_wellness_days(snapshot: ActivitySnapshot, ctx: MetricContext) -> float:
    """Distinct days in the trailing window with a high-scoring check-in."""
    window_start = trailing_window_start(snapshot.now, snapshot.tz, ctx.streak_window_days)
    good = [
        e for e in snapshot.wellness_entries
        if e.timestamp >= window_start and wellness_score(e) >= ctx.high_wellness_score
    ]
    return len(snapshot.active_dates(good))


def wellness_checkins(snapshot: ActivitySnapshot, ctx: MetricContext) -> float:
    window_start = trailing_window_start(snapshot.now, snapshot.tz, ctx.streak_window_days)
    return sum(1 for e in snapshot.wellness_entries if e.timestamp >= window_start)


def longest_study_streak(snapshot: ActivitySnapshot, ctx: MetricContext) -> float:
    """Best run of consecutive study days over all history, not just the trailing window."""
    return longest_streak(snapshot.active_dates(snapshot.study_sessions))


PROGRESS_METRICS: dict[str, ProgressMetric] = {
    "submitted_assignments": submitted_assignments,
    "perfect_grades": perfect_grades,
    "study_streak": study_streak,
    "high_wellness_days": high_wellness_days,
    "wellness_checkins": wellness_checkins,
    "longest_study_streak": longest_study_streak,
}


# =============================================================================
# ACHIEVEMENT EVALUATOR
# =============================================================================

@dataclass(frozen=True)
class AchievementProgress:
    current: float
    target: float

    @property
    def ratio(self) -> float:
        if self.target <= 0:
            return 1.0
        return min(self.current / self.target, 1.0)


@dataclass(frozen=True)
class AchievementStatus:
    """One catalog entry as seen by a particular student."""

    definition: AchievementDefinition
    unlocked: bool
    unlocked_at: datetime | None = None
    progress: AchievementProgress | None = None  # only reported while locked


class AchievementEvaluator:
    """Checks every catalog achievement against a student's activity."""

    def __init__(
        self,
        store: ActivityStore,
        catalog: Catalog,
        settings: Settings,
        metrics: dict[str, ProgressMetric] | None = None,
    ):
        self.store = store
        self.catalog = catalog
        self.settings = settings
        self.metrics = PROGRESS_METRICS if metrics is None else metrics
        self.context = MetricContext.from_settings(settings)

    async def load_snapshot(self, student_id: int, now: datetime) -> ActivitySnapshot:
        records = await self.store.fetch_activity(student_id, list(ActivityKind), None, now)
        return ActivitySnapshot(
            student_id=student_id,
            now=now,
            tz=self.settings.tzinfo,
            records=records,
        )

    def measure(self, definition: AchievementDefinition, snapshot: ActivitySnapshot) -> float:
        """Current value of the definition's progress metric.

        Raises KeyError for a metric name this evaluator does not know.
        """
        metric = self.metrics[definition.progress_metric]
        return metric(snapshot, self.context)

    def try_measure(self, definition: AchievementDefinition, snapshot: ActivitySnapshot) -> float | None:
        """``measure`` that logs and returns None instead of raising."""
        try:
            return self.measure(definition, snapshot)
        except Exception as e:
            logger.warning(
                "Skipping achievement %r for student %d: %s: %s",
                definition.id, snapshot.student_id, type(e).__name__, e,
            )
            return None

    async def evaluate(self, student_id: int, now: datetime) -> list[str]:
        """
        Check all achievements and unlock any that are newly earned.
        Returns the ids unlocked by this call, in catalog order.
        """
        now = require_aware(now)
        unlocked = {u.achievement_id for u in await self.store.fetch_unlocked(student_id)}
        snapshot = await self.load_snapshot(student_id, now)

        newly_unlocked = []
        for definition in self.catalog.achievements:
            # Skip unlock logic if already unlocked
            if definition.id in unlocked:
                continue

            current = self.try_measure(definition, snapshot)
            if current is None or current < definition.target:
                continue

            inserted = await self.store.insert_unlocked_if_absent(student_id, definition.id, now)
            if not inserted:
                conflict = ConcurrentUnlockConflict(student_id, definition.id)
                logger.debug("%s; treating as already unlocked", conflict.detail)
                continue

            logger.info("Student %d unlocked achievement %r", student_id, definition.id)
            newly_unlocked.append(definition.id)

        return newly_unlocked

    async def statuses(self, student_id: int, now: datetime) -> list[AchievementStatus]:
        """Every catalog achievement with unlock state and, while locked, progress."""
        now = require_aware(now)
        unlocks = {u.achievement_id: u for u in await self.store.fetch_unlocked(student_id)}
        snapshot = await self.load_snapshot(student_id, now)

        statuses = []
        for definition in self.catalog.achievements:
            unlock = unlocks.get(definition.id)
            if unlock is not None:
                statuses.append(AchievementStatus(
                    definition=definition,
                    unlocked=True,
                    unlocked_at=unlock.unlocked_at,
                ))
                continue

            current = self.try_measure(definition, snapshot)
            statuses.append(AchievementStatus(
                definition=definition,
                unlocked=False,
                progress=(
                    AchievementProgress(current=current, target=definition.target)
                    if current is not None else None
                ),
            ))
        return statuses

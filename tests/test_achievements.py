"""Tests for achievement evaluation: progress metrics, unlocking, and idempotency.

Covers:
  - Built-in progress metrics (submissions, perfect grades, streak, wellness days)
  - AchievementEvaluator.evaluate: first unlock, repeat calls, concurrent inserts
  - Metric failures skip one achievement without failing the evaluation
  - Store failures propagate as DataUnavailable
  - AchievementEvaluator.statuses: unlock state and progress while locked
"""
import asyncio
from datetime import timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from engagement.core.exceptions import DataUnavailable
from engagement.models import (
    AchievementDefinition,
    AchievementRarity,
    AssignmentSubmission,
    Grade,
    StudySession,
    SubmissionStatus,
    WellnessEntry,
)
from engagement.services.achievements import (
    PROGRESS_METRICS,
    AchievementEvaluator,
    AchievementProgress,
    MetricContext,
    high_wellness_days,
    longest_study_streak,
    perfect_grades,
    study_streak,
    submitted_assignments,
)
from engagement.services.catalog import Catalog, default_catalog
from engagement.services.scoring import ActivitySnapshot


def make_achievement(achievement_id, metric, target=1, xp=10, points=20):
    return AchievementDefinition(
        id=achievement_id,
        title=achievement_id.title(),
        description="test achievement",
        icon="🧪",
        rarity=AchievementRarity.COMMON,
        xp_reward=xp,
        point_reward=points,
        progress_metric=metric,
        target=target,
    )


def good_day(student_id, timestamp):
    """A check-in that scores 80."""
    return WellnessEntry(
        student_id=student_id,
        timestamp=timestamp,
        mood_rating=8,
        stress_level=3,
        energy_level=7,
        anxiety_level=3,
        sleep_hours=7,
    )


CTX = MetricContext(streak_window_days=30, high_wellness_score=70)


# =============================================================================
# PROGRESS METRIC TESTS (pure functions)
# =============================================================================

class TestProgressMetrics:

    def test_registry_covers_default_catalog(self):
        """Every stock achievement names a metric the evaluator knows."""
        for achievement in default_catalog().achievements:
            assert achievement.progress_metric in PROGRESS_METRICS

    def test_drafts_not_counted(self, now):
        records = [
            AssignmentSubmission(1, now - timedelta(hours=3)),
            AssignmentSubmission(1, now - timedelta(hours=2), status=SubmissionStatus.DRAFT),
            AssignmentSubmission(1, now - timedelta(hours=1), status="late"),
        ]
        snapshot = ActivitySnapshot(1, now, timezone.utc, records)
        assert submitted_assignments(snapshot, CTX) == 2

    def test_perfect_grades(self, now):
        records = [
            Grade(1, now - timedelta(days=2), 10, 10),
            Grade(1, now - timedelta(days=1), 9, 10),
            Grade(1, now, 0, 0),  # zero-mark assessment is never perfect
        ]
        snapshot = ActivitySnapshot(1, now, timezone.utc, records)
        assert perfect_grades(snapshot, CTX) == 1

    def test_study_streak_ignores_sessions_before_window(self, now):
        records = [StudySession(1, now - timedelta(days=i), 30) for i in range(40)]
        snapshot = ActivitySnapshot(1, now, timezone.utc, records)
        assert study_streak(snapshot, CTX) == 30

    def test_high_wellness_days_counts_distinct_days(self, now):
        records = [
            good_day(1, now - timedelta(hours=1)),
            good_day(1, now - timedelta(hours=2)),  # same day
            good_day(1, now - timedelta(days=1)),
            WellnessEntry(1, now - timedelta(days=2), mood_rating=1, stress_level=10),
        ]
        snapshot = ActivitySnapshot(1, now, timezone.utc, records)
        assert high_wellness_days(snapshot, CTX) == 2

    def test_high_wellness_days_respects_threshold(self, now):
        records = [good_day(1, now)]
        snapshot = ActivitySnapshot(1, now, timezone.utc, records)
        strict = MetricContext(streak_window_days=30, high_wellness_score=81)
        assert high_wellness_days(snapshot, strict) == 0

    def test_longest_study_streak_survives_a_break(self, now):
        """A ten-day run last month still counts after the current streak broke."""
        records = [StudySession(1, now - timedelta(days=40 + i), 30) for i in range(10)]
        records.append(StudySession(1, now, 30))
        snapshot = ActivitySnapshot(1, now, timezone.utc, records)
        assert longest_study_streak(snapshot, CTX) == 10
        assert study_streak(snapshot, CTX) == 1


class TestAchievementProgress:

    def test_ratio_capped_at_one(self):
        assert AchievementProgress(current=12, target=7).ratio == 1.0

    def test_partial_ratio(self):
        assert AchievementProgress(current=10, target=50).ratio == pytest.approx(0.2)


# =============================================================================
# EVALUATION TESTS
# =============================================================================

class TestEvaluate:

    async def test_first_submission_unlocks_first_assignment(self, store, settings, now):
        store.add_activity(AssignmentSubmission(1, now - timedelta(hours=1)))
        evaluator = AchievementEvaluator(store, default_catalog(), settings)

        assert await evaluator.evaluate(1, now) == ["first-assignment"]

        unlocks = await store.fetch_unlocked(1)
        assert [u.achievement_id for u in unlocks] == ["first-assignment"]
        assert unlocks[0].unlocked_at == now

    async def test_repeat_evaluation_is_idempotent(self, store, settings, now):
        store.add_activity(AssignmentSubmission(1, now - timedelta(hours=1)))
        evaluator = AchievementEvaluator(store, default_catalog(), settings)

        await evaluator.evaluate(1, now)
        assert await evaluator.evaluate(1, now + timedelta(minutes=5)) == []
        assert len(await store.fetch_unlocked(1)) == 1

    async def test_nothing_earned(self, store, settings, now):
        evaluator = AchievementEvaluator(store, default_catalog(), settings)
        assert await evaluator.evaluate(1, now) == []

    async def test_multiple_unlocks_in_catalog_order(self, store, settings, now):
        store.add_activity(
            Grade(1, now - timedelta(hours=2), 20, 20),
            AssignmentSubmission(1, now - timedelta(hours=1)),
        )
        evaluator = AchievementEvaluator(store, default_catalog(), settings)
        assert await evaluator.evaluate(1, now) == ["first-assignment", "perfect-score"]

    async def test_study_warrior_after_seven_days(self, store, settings, now):
        store.add_activity(*[StudySession(1, now - timedelta(days=i), 30) for i in range(7)])
        evaluator = AchievementEvaluator(store, default_catalog(), settings)
        assert "study-warrior" in await evaluator.evaluate(1, now)

    async def test_activity_after_now_ignored(self, store, settings, now):
        store.add_activity(AssignmentSubmission(1, now + timedelta(hours=1)))
        evaluator = AchievementEvaluator(store, default_catalog(), settings)
        assert await evaluator.evaluate(1, now) == []

    async def test_concurrent_insert_not_reported(self, store, settings, now):
        """If another evaluation wins the insert, this call reports nothing."""
        store.add_activity(AssignmentSubmission(1, now - timedelta(hours=1)))
        store.insert_unlocked_if_absent = AsyncMock(return_value=False)
        evaluator = AchievementEvaluator(store, default_catalog(), settings)

        assert await evaluator.evaluate(1, now) == []
        store.insert_unlocked_if_absent.assert_awaited_once_with(1, "first-assignment", now)

    async def test_parallel_evaluations_unlock_once(self, store, settings, now):
        store.add_activity(AssignmentSubmission(1, now - timedelta(hours=1)))
        evaluator = AchievementEvaluator(store, default_catalog(), settings)

        results = await asyncio.gather(*[evaluator.evaluate(1, now) for _ in range(5)])

        assert sum(r.count("first-assignment") for r in results) == 1
        assert len(await store.fetch_unlocked(1)) == 1

    async def test_failing_metric_skips_only_that_achievement(self, store, settings, now):
        def broken(snapshot, ctx):
            raise ZeroDivisionError("boom")

        catalog = Catalog(
            achievements=[
                make_achievement("broken", "broken"),
                make_achievement("unknown-metric", "no_such_metric"),
                make_achievement("submitter", "submitted_assignments"),
            ],
            challenges=[],
        )
        metrics = {**PROGRESS_METRICS, "broken": broken}
        store.add_activity(AssignmentSubmission(1, now - timedelta(hours=1)))
        evaluator = AchievementEvaluator(store, catalog, settings, metrics=metrics)

        assert await evaluator.evaluate(1, now) == ["submitter"]

    async def test_store_failure_propagates(self, store, settings, now):
        store.fetch_activity = AsyncMock(side_effect=DataUnavailable(1))
        evaluator = AchievementEvaluator(store, default_catalog(), settings)

        with pytest.raises(DataUnavailable) as exc_info:
            await evaluator.evaluate(1, now)
        assert exc_info.value.retryable is True
        assert await store.fetch_unlocked(1) == []

    async def test_naive_now_rejected(self, store, settings, now):
        evaluator = AchievementEvaluator(store, default_catalog(), settings)
        with pytest.raises(ValueError):
            await evaluator.evaluate(1, now.replace(tzinfo=None))


# =============================================================================
# STATUS TESTS
# =============================================================================

class TestStatuses:

    async def test_every_catalog_entry_listed(self, store, settings, now):
        evaluator = AchievementEvaluator(store, default_catalog(), settings)
        statuses = await evaluator.statuses(1, now)
        assert [s.definition.id for s in statuses] == [
            a.id for a in default_catalog().achievements
        ]
        assert not any(s.unlocked for s in statuses)

    async def test_progress_only_while_locked(self, store, settings, now):
        store.add_activity(*[AssignmentSubmission(1, now - timedelta(hours=i + 1)) for i in range(10)])
        evaluator = AchievementEvaluator(store, default_catalog(), settings)
        await evaluator.evaluate(1, now)

        by_id = {s.definition.id: s for s in await evaluator.statuses(1, now)}

        first = by_id["first-assignment"]
        assert first.unlocked
        assert first.unlocked_at == now
        assert first.progress is None

        master = by_id["knowledge-master"]
        assert not master.unlocked
        assert master.progress.current == 10
        assert master.progress.target == 50
        assert master.progress.ratio == pytest.approx(0.2)

    async def test_failing_metric_reports_no_progress(self, store, settings, now):
        catalog = Catalog(achievements=[make_achievement("odd", "no_such_metric")], challenges=[])
        evaluator = AchievementEvaluator(store, catalog, settings)
        [status] = await evaluator.statuses(1, now)
        assert not status.unlocked
        assert status.progress is None

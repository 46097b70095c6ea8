"""Score calculator - XP, levels, points, streaks, and wellness scores."""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable, assert_never

from engagement.core.config import Settings
from engagement.core.exceptions import UnknownCatalogReference
from engagement.models.activity import (
    ActivityKind,
    ActivityRecord,
    AssignmentSubmission,
    Grade,
    StudySession,
    WellnessEntry,
)
from engagement.models.gamification import UnlockedAchievement
from engagement.services.catalog import Catalog
from engagement.services.store import ActivityStore

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

LEVEL_XP_STEP = 1000
STREAK_WINDOW_DAYS = 30

# Missing wellness components count as a neutral mid-scale value
WELLNESS_DEFAULT_COMPONENT = 5
WELLNESS_MAX_COMPONENT = 10
WELLNESS_COMPONENTS = 5
RECOMMENDED_SLEEP_HOURS = 8


# =============================================================================
# LEVEL CALCULATIONS
# =============================================================================

def level_from_xp(xp: int, step: int = LEVEL_XP_STEP) -> int:
    """Level on the linear curve: every ``step`` XP is one level, starting at 1."""
    return xp // step + 1


def xp_to_next_level(xp: int, step: int = LEVEL_XP_STEP) -> int:
    """XP still needed to reach the next level. Always in ``(0, step]``."""
    return level_from_xp(xp, step) * step - xp


def sum_rewards(unlocks: Iterable[UnlockedAchievement], catalog: Catalog) -> tuple[int, int]:
    """Total (xp, points) over unlock rows.

    Rows whose achievement id is no longer in the catalog contribute nothing.
    """
    xp = 0
    points = 0
    for unlock in unlocks:
        try:
            definition = catalog.resolve(unlock.achievement_id)
        except UnknownCatalogReference as e:
            logger.debug("%s; unlock by student %d contributes nothing", e.detail, unlock.student_id)
            continue
        xp += definition.xp_reward
        points += definition.point_reward
    return xp, points


# =============================================================================
# CALENDAR HELPERS
# =============================================================================

def require_aware(now: datetime) -> datetime:
    """Reject naive datetimes; return the instant in UTC.

    Arithmetic between datetimes sharing a zone is done on wall-clock time,
    so instants are compared and subtracted in UTC only.
    """
    if now.tzinfo is None or now.utcoffset() is None:
        raise ValueError("now must be a timezone-aware datetime")
    return now.astimezone(timezone.utc)


def local_date(timestamp: datetime, tz: tzinfo) -> date:
    return timestamp.astimezone(tz).date()


def start_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def trailing_window_start(now: datetime, tz: tzinfo, days: int = STREAK_WINDOW_DAYS) -> datetime:
    """Start of the local day ``days - 1`` days before today, in UTC. Today counts as day one."""
    return start_of_day(local_date(now, tz) - timedelta(days=days - 1), tz).astimezone(timezone.utc)


# =============================================================================
# STREAKS
# =============================================================================

def current_streak(active_dates: set[date], today: date, max_days: int = STREAK_WINDOW_DAYS) -> int:
    """Consecutive active days ending today.

    Returns 0 when today itself has no activity.
    """
    streak = 0
    day = today
    while streak < max_days and day in active_dates:
        streak += 1
        day -= timedelta(days=1)
    return streak


def longest_streak(active_dates: Iterable[date]) -> int:
    """Longest run of consecutive days anywhere in the set."""
    dates = sorted(set(active_dates))
    if not dates:
        return 0

    longest = 1
    streak = 1
    for i in range(1, len(dates)):
        if (dates[i] - dates[i - 1]).days == 1:
            streak += 1
        else:
            longest = max(longest, streak)
            streak = 1
    return max(longest, streak)


# =============================================================================
# WELLNESS
# =============================================================================

def wellness_score(entry: WellnessEntry) -> int:
    """Overall 0-100 wellness score for one check-in.

    Mood, energy and sleep count up; stress and anxiety are inverted so that
    lower levels score higher. Sleep is scaled against 8 hours.
    """
    mood = entry.mood_rating or WELLNESS_DEFAULT_COMPONENT
    stress = (11 - entry.stress_level) if entry.stress_level else WELLNESS_DEFAULT_COMPONENT
    energy = entry.energy_level or WELLNESS_DEFAULT_COMPONENT
    anxiety = (11 - entry.anxiety_level) if entry.anxiety_level else WELLNESS_DEFAULT_COMPONENT
    if entry.sleep_hours:
        sleep = min(entry.sleep_hours / RECOMMENDED_SLEEP_HOURS * 10, WELLNESS_MAX_COMPONENT)
    else:
        sleep = WELLNESS_DEFAULT_COMPONENT

    total = mood + stress + energy + anxiety + sleep
    # Round half up
    return int(math.floor(total * 100 / (WELLNESS_COMPONENTS * WELLNESS_MAX_COMPONENT) + 0.5))


# =============================================================================
# ACTIVITY SNAPSHOT
# =============================================================================

@dataclass
class ActivitySnapshot:
    """A student's activity up to ``now``, split by kind.

    Metric functions read from the typed lists instead of inspecting records
    themselves, so the kind dispatch lives in one place.
    """

    student_id: int
    now: datetime
    tz: tzinfo
    records: list[ActivityRecord] = field(default_factory=list)
    study_sessions: list[StudySession] = field(init=False, default_factory=list)
    submissions: list[AssignmentSubmission] = field(init=False, default_factory=list)
    grades: list[Grade] = field(init=False, default_factory=list)
    wellness_entries: list[WellnessEntry] = field(init=False, default_factory=list)

    def __post_init__(self) -> None:
        self.now = require_aware(self.now)
        for record in self.records:
            # Records after the evaluation instant are not part of the snapshot
            if record.timestamp.astimezone(timezone.utc) > self.now:
                continue
            if isinstance(record, StudySession):
                self.study_sessions.append(record)
            elif isinstance(record, AssignmentSubmission):
                self.submissions.append(record)
            elif isinstance(record, Grade):
                self.grades.append(record)
            elif isinstance(record, WellnessEntry):
                self.wellness_entries.append(record)
            else:
                assert_never(record)

    @property
    def today(self) -> date:
        return local_date(self.now, self.tz)

    def between(self, start: datetime, end: datetime) -> "ActivitySnapshot":
        """Sub-snapshot of records with ``start <= timestamp < end``."""
        start = start.astimezone(timezone.utc)
        end = end.astimezone(timezone.utc)
        return ActivitySnapshot(
            student_id=self.student_id,
            now=self.now,
            tz=self.tz,
            records=[r for r in self.records if start <= r.timestamp.astimezone(timezone.utc) < end],
        )

    def active_dates(self, records: Iterable[ActivityRecord]) -> set[date]:
        return {local_date(r.timestamp, self.tz) for r in records}


# =============================================================================
# SCORE CALCULATOR
# =============================================================================

@dataclass
class Metrics:
    """Scalar engagement metrics for one student."""

    xp: int
    total_points: int
    streak_days: int
    level: int
    xp_to_next: int


class ScoreCalculator:
    """Turns a student's unlocks and study history into scalar metrics."""

    def __init__(self, store: ActivityStore, catalog: Catalog, settings: Settings):
        self.store = store
        self.catalog = catalog
        self.settings = settings

    def streak_from(self, study_sessions: Iterable[StudySession], now: datetime) -> int:
        tz = self.settings.tzinfo
        now = require_aware(now)
        window_start = trailing_window_start(now, tz, self.settings.streak_window_days)
        dates = {
            local_date(s.timestamp, tz)
            for s in study_sessions
            if window_start <= s.timestamp.astimezone(timezone.utc) <= now
        }
        return current_streak(dates, local_date(now, tz), self.settings.streak_window_days)

    def metrics_from(
        self,
        unlocks: Iterable[UnlockedAchievement],
        study_sessions: Iterable[StudySession],
        now: datetime,
    ) -> Metrics:
        """Pure computation of metrics from already-fetched data."""
        xp, points = sum_rewards(unlocks, self.catalog)
        step = self.settings.level_xp_step
        return Metrics(
            xp=xp,
            total_points=points,
            streak_days=self.streak_from(study_sessions, now),
            level=level_from_xp(xp, step),
            xp_to_next=xp_to_next_level(xp, step),
        )

    async def fetch_study_sessions(self, student_id: int, now: datetime) -> list[StudySession]:
        """Study sessions inside the streak window ending at ``now``."""
        now = require_aware(now)
        sessions = await self.store.fetch_activity(
            student_id,
            [ActivityKind.STUDY_SESSION],
            trailing_window_start(now, self.settings.tzinfo, self.settings.streak_window_days),
            now,
        )
        return [s for s in sessions if isinstance(s, StudySession)]

    async def compute_metrics(self, student_id: int, now: datetime) -> Metrics:
        """Fetch what the metrics need and compute them as of ``now``."""
        now = require_aware(now)
        unlocks = await self.store.fetch_unlocked(student_id)
        return self.metrics_from(unlocks, await self.fetch_study_sessions(student_id, now), now)

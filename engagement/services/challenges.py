"""Challenge tracking - calendar windows and in-window progress.

Progress is always recomputed from activity inside the current window; nothing
about a challenge is stored, so editing a definition needs no migration.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Callable, assert_never

from engagement.core.config import Settings
from engagement.core.exceptions import InvalidWindowState
from engagement.models.activity import ActivityKind
from engagement.models.gamification import ChallengeDefinition, ChallengeType
from engagement.services.catalog import Catalog
from engagement.services.scoring import ActivitySnapshot, local_date, require_aware, start_of_day
from engagement.services.store import ActivityStore

logger = logging.getLogger(__name__)

A_GRADE_RATIO = 0.90


# =============================================================================
# WINDOWS
# =============================================================================

def _window_for_day(challenge_type: ChallengeType, day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """The ``[start, end)`` window of the given type that contains local date ``day``."""
    if challenge_type is ChallengeType.DAILY:
        first = day
        last = day + timedelta(days=1)
    elif challenge_type is ChallengeType.WEEKLY:
        # Weeks start on Sunday; date.weekday() has Monday == 0
        first = day - timedelta(days=(day.weekday() + 1) % 7)
        last = first + timedelta(days=7)
    elif challenge_type is ChallengeType.MONTHLY:
        first = day.replace(day=1)
        if first.month == 12:
            last = first.replace(year=first.year + 1, month=1)
        else:
            last = first.replace(month=first.month + 1)
    else:
        assert_never(challenge_type)
    return start_of_day(first, tz), start_of_day(last, tz)


def challenge_window(
    challenge_type: ChallengeType,
    now: datetime,
    tz: tzinfo,
    anchor: date | None = None,
) -> tuple[datetime, datetime]:
    """Window containing ``now``.

    ``anchor`` is the local date the caller believes it is (defaults to the
    local date of ``now``). A stale anchor whose window has already ended
    rolls forward to the next window; an anchor ahead of ``now`` (clock skew)
    is clamped back to the window that holds ``now``.
    """
    now = require_aware(now)
    if anchor is None:
        anchor = local_date(now, tz)

    start, end = _window_for_day(challenge_type, anchor, tz)

    if now < start:
        skew = InvalidWindowState(
            f"{now.isoformat()} precedes {challenge_type.value} window starting {start.isoformat()}"
        )
        logger.warning("%s; clamping to the current window", skew.detail)
        start, end = _window_for_day(challenge_type, local_date(now, tz), tz)

    while now >= end:
        start, end = _window_for_day(challenge_type, local_date(end, tz), tz)

    return start, end


def format_time_remaining(challenge_type: ChallengeType, remaining: timedelta) -> str:
    """Human-readable countdown: ``"5h 12m"`` for daily, ``"3d 4h"`` otherwise."""
    total_seconds = max(int(remaining.total_seconds()), 0)
    days, rest = divmod(total_seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60

    if challenge_type is ChallengeType.DAILY:
        return f"{days * 24 + hours}h {minutes}m"
    return f"{days}d {hours}h"


# =============================================================================
# CHALLENGE METRICS
# =============================================================================

ChallengeMetric = Callable[[ActivitySnapshot], int]


def submissions_count(snapshot: ActivitySnapshot) -> int:
    return sum(1 for s in snapshot.submissions if not s.is_draft)


def study_hours(snapshot: ActivitySnapshot) -> int:
    """Whole hours studied; minutes are summed first, then floored."""
    return sum(s.duration_minutes for s in snapshot.study_sessions) // 60


def a_grades_count(snapshot: ActivitySnapshot) -> int:
    return sum(
        1 for g in snapshot.grades
        if g.ratio is not None and g.ratio >= A_GRADE_RATIO
    )


def study_sessions_count(snapshot: ActivitySnapshot) -> int:
    return len(snapshot.study_sessions)


def wellness_checkins(snapshot: ActivitySnapshot) -> int:
    return len(snapshot.wellness_entries)


CHALLENGE_METRICS: dict[str, ChallengeMetric] = {
    "submissions_count": submissions_count,
    "study_hours": study_hours,
    "a_grades_count": a_grades_count,
    "study_sessions_count": study_sessions_count,
    "wellness_checkins": wellness_checkins,
}


# =============================================================================
# CHALLENGE TRACKER
# =============================================================================

@dataclass(frozen=True)
class ChallengeProgress:
    """Progress on one challenge in its current window."""

    definition: ChallengeDefinition
    progress: int
    max_progress: int
    window_start: datetime
    window_end: datetime
    time_remaining: timedelta

    @property
    def completed(self) -> bool:
        return self.progress >= self.max_progress

    @property
    def expires_in(self) -> str:
        return format_time_remaining(self.definition.type, self.time_remaining)


class ChallengeTracker:
    """Computes progress for every catalog challenge."""

    def __init__(
        self,
        store: ActivityStore,
        catalog: Catalog,
        settings: Settings,
        metrics: dict[str, ChallengeMetric] | None = None,
    ):
        self.store = store
        self.catalog = catalog
        self.settings = settings
        self.metrics = CHALLENGE_METRICS if metrics is None else metrics

    async def list_challenges(
        self,
        student_id: int,
        now: datetime,
        anchor: date | None = None,
    ) -> list[ChallengeProgress]:
        now = require_aware(now)
        tz = self.settings.tzinfo
        windows = {
            c.id: challenge_window(c.type, now, tz, anchor)
            for c in self.catalog.challenges
        }
        if not windows:
            return []

        # One fetch covering the earliest window, then slice per challenge
        earliest = min(start for start, _ in windows.values())
        records = await self.store.fetch_activity(student_id, list(ActivityKind), earliest, now)
        snapshot = ActivitySnapshot(student_id=student_id, now=now, tz=tz, records=records)

        results = []
        for challenge in self.catalog.challenges:
            start, end = windows[challenge.id]
            try:
                metric = self.metrics[challenge.target_metric]
                progress = metric(snapshot.between(start, end))
            except Exception as e:
                logger.warning(
                    "Skipping challenge %r for student %d: %s: %s",
                    challenge.id, student_id, type(e).__name__, e,
                )
                continue

            results.append(ChallengeProgress(
                definition=challenge,
                progress=progress,
                max_progress=challenge.target_value,
                window_start=start,
                window_end=end,
                time_remaining=max(end.astimezone(timezone.utc) - now, timedelta(0)),
            ))
        return results

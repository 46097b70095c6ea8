"""Activity store interface and the in-memory implementation.

The engine never owns storage. It reads activity and unlock rows through an
``ActivityStore`` and records unlocks with a single atomic
insert-if-absent, which is what keeps unlocking idempotent under concurrent
evaluation of the same student.
"""

import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence

from engagement.models.activity import ActivityKind, ActivityRecord
from engagement.models.gamification import UnlockedAchievement


@dataclass(frozen=True)
class StudentUnlocks:
    """A roster entry together with every achievement it has unlocked."""

    student_id: int
    display_name: str
    unlocks: tuple[UnlockedAchievement, ...] = ()


class ActivityStore(ABC):
    """Read side of the event source plus the unlock ledger.

    Implementations raise ``DataUnavailable`` when a read cannot be served.
    """

    @abstractmethod
    async def fetch_activity(
        self,
        student_id: int,
        kinds: Sequence[ActivityKind],
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ActivityRecord]:
        """Records of the given kinds with ``start <= timestamp <= end``, oldest first.

        ``None`` leaves that side of the range open.
        """

    @abstractmethod
    async def fetch_unlocked(self, student_id: int) -> list[UnlockedAchievement]:
        """All unlock rows for a student, including ids unknown to the catalog."""

    @abstractmethod
    async def insert_unlocked_if_absent(
        self,
        student_id: int,
        achievement_id: str,
        unlocked_at: datetime,
    ) -> bool:
        """Atomically record an unlock. Returns False if the row already existed."""

    @abstractmethod
    async def fetch_all_students_with_unlocks(self, include_inactive: bool = False) -> list[StudentUnlocks]:
        """Every student with their unlock rows, for leaderboards.

        Inactive students are left out unless ``include_inactive`` is set.
        """


class InMemoryActivityStore(ActivityStore):
    """Process-local store backed by dicts.

    Safe to share between threads: unlock inserts are serialized by a lock.
    """

    def __init__(self) -> None:
        self._students: dict[int, tuple[str, bool]] = {}
        self._activity: dict[int, list[ActivityRecord]] = defaultdict(list)
        self._unlocks: dict[tuple[int, str], UnlockedAchievement] = {}
        self._lock = threading.Lock()

    def add_student(self, student_id: int, display_name: str, is_active: bool = True) -> None:
        self._students[student_id] = (display_name, is_active)

    def add_activity(self, *records: ActivityRecord) -> None:
        for record in records:
            self._activity[record.student_id].append(record)

    async def fetch_activity(
        self,
        student_id: int,
        kinds: Sequence[ActivityKind],
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ActivityRecord]:
        wanted = set(kinds)
        start = start.astimezone(timezone.utc) if start is not None else None
        end = end.astimezone(timezone.utc) if end is not None else None
        records = [
            r for r in self._activity.get(student_id, [])
            if r.kind in wanted
            and (start is None or r.timestamp.astimezone(timezone.utc) >= start)
            and (end is None or r.timestamp.astimezone(timezone.utc) <= end)
        ]
        return sorted(records, key=lambda r: r.timestamp)

    async def fetch_unlocked(self, student_id: int) -> list[UnlockedAchievement]:
        with self._lock:
            rows = [u for (sid, _), u in self._unlocks.items() if sid == student_id]
        return sorted(rows, key=lambda u: (u.unlocked_at, u.achievement_id))

    async def insert_unlocked_if_absent(
        self,
        student_id: int,
        achievement_id: str,
        unlocked_at: datetime,
    ) -> bool:
        key = (student_id, achievement_id)
        with self._lock:
            if key in self._unlocks:
                return False
            self._unlocks[key] = UnlockedAchievement(
                student_id=student_id,
                achievement_id=achievement_id,
                unlocked_at=unlocked_at,
            )
            return True

    async def fetch_all_students_with_unlocks(self, include_inactive: bool = False) -> list[StudentUnlocks]:
        with self._lock:
            by_student: dict[int, list[UnlockedAchievement]] = defaultdict(list)
            for (sid, _), unlock in self._unlocks.items():
                by_student[sid].append(unlock)

        return [
            StudentUnlocks(
                student_id=student_id,
                display_name=display_name,
                unlocks=tuple(sorted(by_student.get(student_id, []), key=lambda u: u.unlocked_at)),
            )
            for student_id, (display_name, is_active) in sorted(self._students.items())
            if is_active or include_inactive
        ]

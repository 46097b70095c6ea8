"""Activity store backed by async SQLAlchemy."""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import insert as generic_insert, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from engagement.core.exceptions import DataUnavailable
from engagement.models.activity import ActivityKind, ActivityRecord, StudentActivity
from engagement.models.gamification import Student, StudentAchievement, UnlockedAchievement
from engagement.services.store import ActivityStore, StudentUnlocks

logger = logging.getLogger(__name__)

_UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way in and out; every stored timestamp is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SQLAlchemyActivityStore(ActivityStore):
    """Reads activity and unlock rows through an ``AsyncSession``.

    The store flushes but never commits; the caller owns the transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add_student(self, student_id: int, display_name: str, is_active: bool = True) -> Student:
        student = Student(id=student_id, display_name=display_name, is_active=is_active)
        self.db.add(student)
        await self.db.flush()
        return student

    async def add_activity(self, *records: ActivityRecord) -> None:
        self.db.add_all([StudentActivity.from_record(r) for r in records])
        await self.db.flush()

    async def fetch_activity(
        self,
        student_id: int,
        kinds: Sequence[ActivityKind],
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[ActivityRecord]:
        query = select(StudentActivity).where(
            StudentActivity.student_id == student_id,
            StudentActivity.kind.in_([k.value for k in kinds]),
        )
        if start is not None:
            query = query.where(StudentActivity.timestamp >= _as_utc(start))
        if end is not None:
            query = query.where(StudentActivity.timestamp <= _as_utc(end))
        query = query.order_by(StudentActivity.timestamp, StudentActivity.id)

        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise DataUnavailable(student_id) from e

        records = []
        for row in result.scalars().all():
            try:
                records.append(row.to_record())
            except ValueError as e:
                logger.warning("Skipping malformed activity row %s: %s", row.id, e)
        return records

    async def fetch_unlocked(self, student_id: int) -> list[UnlockedAchievement]:
        try:
            result = await self.db.execute(
                select(StudentAchievement)
                .where(StudentAchievement.student_id == student_id)
                .order_by(StudentAchievement.unlocked_at, StudentAchievement.achievement_id)
            )
        except SQLAlchemyError as e:
            raise DataUnavailable(student_id) from e

        return [
            UnlockedAchievement(
                student_id=row.student_id,
                achievement_id=row.achievement_id,
                unlocked_at=_as_utc(row.unlocked_at),
            )
            for row in result.scalars().all()
        ]

    async def insert_unlocked_if_absent(
        self,
        student_id: int,
        achievement_id: str,
        unlocked_at: datetime,
    ) -> bool:
        values = {
            "student_id": student_id,
            "achievement_id": achievement_id,
            "unlocked_at": _as_utc(unlocked_at),
        }
        dialect = self.db.get_bind().dialect.name
        upsert_insert = _UPSERT_INSERTS.get(dialect)

        try:
            if upsert_insert is not None:
                stmt = (
                    upsert_insert(StudentAchievement)
                    .values(**values)
                    .on_conflict_do_nothing(index_elements=["student_id", "achievement_id"])
                )
                result = await self.db.execute(stmt)
                return result.rowcount == 1

            # Other backends: rely on the unique index inside a savepoint
            try:
                async with self.db.begin_nested():
                    await self.db.execute(generic_insert(StudentAchievement).values(**values))
            except IntegrityError:
                return False
            return True
        except SQLAlchemyError as e:
            raise DataUnavailable(student_id, "Could not record achievement unlock") from e

    async def fetch_all_students_with_unlocks(self, include_inactive: bool = False) -> list[StudentUnlocks]:
        student_query = select(Student).order_by(Student.id)
        unlock_query = (
            select(StudentAchievement)
            .join(Student, Student.id == StudentAchievement.student_id)
            .order_by(StudentAchievement.unlocked_at)
        )
        if not include_inactive:
            student_query = student_query.where(Student.is_active == True)
            unlock_query = unlock_query.where(Student.is_active == True)

        try:
            students = (await self.db.execute(student_query)).scalars().all()
            unlock_rows = (await self.db.execute(unlock_query)).scalars().all()
        except SQLAlchemyError as e:
            raise DataUnavailable(detail="Leaderboard data unavailable") from e

        by_student: dict[int, list[UnlockedAchievement]] = defaultdict(list)
        for row in unlock_rows:
            by_student[row.student_id].append(UnlockedAchievement(
                student_id=row.student_id,
                achievement_id=row.achievement_id,
                unlocked_at=_as_utc(row.unlocked_at),
            ))

        return [
            StudentUnlocks(
                student_id=s.id,
                display_name=s.display_name or f"Student {s.id}",
                unlocks=tuple(by_student.get(s.id, [])),
            )
            for s in students
        ]

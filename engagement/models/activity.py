"""Activity records: the raw events the engine scores.

Each record kind is its own frozen dataclass and ``ActivityRecord`` is the
closed union of them. Code that branches on the kind ends in
``assert_never`` so that adding a variant is flagged by the type checker
wherever it has to be handled.

``StudentActivity`` is the table the SQL store reads them from.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import ClassVar, assert_never

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from engagement.models.base import Base


class ActivityKind(str, Enum):
    """Kinds of activity the event source produces."""
    STUDY_SESSION = "study_session"
    ASSIGNMENT_SUBMISSION = "assignment_submission"
    GRADE = "grade"
    WELLNESS_ENTRY = "wellness_entry"


class SubmissionStatus(str, Enum):
    """Lifecycle of an assignment submission."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    LATE = "late"
    GRADED = "graded"
    RETURNED = "returned"


def _check_timestamp(timestamp: datetime) -> None:
    if timestamp.tzinfo is None:
        raise ValueError("timestamp must be timezone-aware")


def _check_scale(name: str, value: int | None, low: int = 1, high: int = 10) -> None:
    if value is not None and not low <= value <= high:
        raise ValueError(f"{name} must be between {low} and {high}, got {value}")


@dataclass(frozen=True)
class StudySession:
    """A block of focused study time."""

    kind: ClassVar[ActivityKind] = ActivityKind.STUDY_SESSION

    student_id: int
    timestamp: datetime
    duration_minutes: int = 0

    def __post_init__(self) -> None:
        _check_timestamp(self.timestamp)
        if self.duration_minutes < 0:
            raise ValueError("duration_minutes cannot be negative")


@dataclass(frozen=True)
class AssignmentSubmission:
    """A student's submission of an assignment (drafts included)."""

    kind: ClassVar[ActivityKind] = ActivityKind.ASSIGNMENT_SUBMISSION

    student_id: int
    timestamp: datetime
    status: SubmissionStatus = SubmissionStatus.SUBMITTED
    assignment_id: int | None = None

    def __post_init__(self) -> None:
        _check_timestamp(self.timestamp)
        # Accept plain strings from loosely typed sources
        object.__setattr__(self, "status", SubmissionStatus(self.status))

    @property
    def is_draft(self) -> bool:
        return self.status == SubmissionStatus.DRAFT


@dataclass(frozen=True)
class Grade:
    """Marks awarded for a piece of assessed work."""

    kind: ClassVar[ActivityKind] = ActivityKind.GRADE

    student_id: int
    timestamp: datetime
    marks_obtained: float
    total_marks: float

    def __post_init__(self) -> None:
        _check_timestamp(self.timestamp)
        if self.marks_obtained < 0 or self.total_marks < 0:
            raise ValueError("marks cannot be negative")
        if self.marks_obtained > self.total_marks:
            raise ValueError(
                f"marks_obtained ({self.marks_obtained}) exceeds total_marks ({self.total_marks})"
            )

    @property
    def ratio(self) -> float | None:
        """Fraction of marks obtained, or None for a zero-mark assessment."""
        if self.total_marks <= 0:
            return None
        return self.marks_obtained / self.total_marks

    @property
    def is_perfect(self) -> bool:
        return self.total_marks > 0 and self.marks_obtained == self.total_marks


@dataclass(frozen=True)
class WellnessEntry:
    """A daily wellness check-in. Ratings are on a 1-10 scale."""

    kind: ClassVar[ActivityKind] = ActivityKind.WELLNESS_ENTRY

    student_id: int
    timestamp: datetime
    mood_rating: int | None = None
    stress_level: int | None = None
    energy_level: int | None = None
    anxiety_level: int | None = None
    sleep_hours: float | None = None

    def __post_init__(self) -> None:
        _check_timestamp(self.timestamp)
        _check_scale("mood_rating", self.mood_rating)
        _check_scale("stress_level", self.stress_level)
        _check_scale("energy_level", self.energy_level)
        _check_scale("anxiety_level", self.anxiety_level)
        if self.sleep_hours is not None and not 0 <= self.sleep_hours <= 24:
            raise ValueError("sleep_hours must be between 0 and 24")


ActivityRecord = StudySession | AssignmentSubmission | Grade | WellnessEntry


class StudentActivity(Base):
    """One activity event per row; kind-specific columns are nullable."""

    __tablename__ = "student_activity"

    id: Mapped[int] = mapped_column(primary_key=True)
    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"),
        index=True,
    )
    # Use String to avoid PostgreSQL enum mapping issues - values validated at app layer
    kind: Mapped[str] = mapped_column(String(50))
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    # study_session
    duration_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # assignment_submission
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    assignment_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # grade
    marks_obtained: Mapped[float | None] = mapped_column(Float, nullable=True)
    total_marks: Mapped[float | None] = mapped_column(Float, nullable=True)

    # wellness_entry
    mood_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    stress_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    energy_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    anxiety_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sleep_hours: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (
        Index("ix_student_activity_lookup", "student_id", "kind", "timestamp"),
    )

    @classmethod
    def from_record(cls, record: ActivityRecord) -> "StudentActivity":
        row = cls(
            student_id=record.student_id,
            kind=record.kind.value,
            timestamp=record.timestamp.astimezone(timezone.utc),
        )
        if isinstance(record, StudySession):
            row.duration_minutes = record.duration_minutes
        elif isinstance(record, AssignmentSubmission):
            row.status = record.status.value
            row.assignment_id = record.assignment_id
        elif isinstance(record, Grade):
            row.marks_obtained = record.marks_obtained
            row.total_marks = record.total_marks
        elif isinstance(record, WellnessEntry):
            row.mood_rating = record.mood_rating
            row.stress_level = record.stress_level
            row.energy_level = record.energy_level
            row.anxiety_level = record.anxiety_level
            row.sleep_hours = record.sleep_hours
        else:
            assert_never(record)
        return row

    def to_record(self) -> ActivityRecord:
        """Rebuild the typed record. Raises ValueError on a malformed row."""
        timestamp = self.timestamp
        # SQLite hands back naive datetimes; rows are always written in UTC
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        kind = ActivityKind(self.kind)
        if kind is ActivityKind.STUDY_SESSION:
            return StudySession(
                student_id=self.student_id,
                timestamp=timestamp,
                duration_minutes=self.duration_minutes or 0,
            )
        elif kind is ActivityKind.ASSIGNMENT_SUBMISSION:
            return AssignmentSubmission(
                student_id=self.student_id,
                timestamp=timestamp,
                status=SubmissionStatus(self.status or SubmissionStatus.SUBMITTED.value),
                assignment_id=self.assignment_id,
            )
        elif kind is ActivityKind.GRADE:
            if self.marks_obtained is None or self.total_marks is None:
                raise ValueError(f"grade row {self.id} is missing marks")
            return Grade(
                student_id=self.student_id,
                timestamp=timestamp,
                marks_obtained=self.marks_obtained,
                total_marks=self.total_marks,
            )
        elif kind is ActivityKind.WELLNESS_ENTRY:
            return WellnessEntry(
                student_id=self.student_id,
                timestamp=timestamp,
                mood_rating=self.mood_rating,
                stress_level=self.stress_level,
                energy_level=self.energy_level,
                anxiety_level=self.anxiety_level,
                sleep_hours=self.sleep_hours,
            )
        else:
            assert_never(kind)

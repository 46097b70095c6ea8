"""Gamification models for achievements, challenges, and unlock records."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from engagement.models.base import Base


class AchievementRarity(str, Enum):
    """Achievement rarity levels."""
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class ChallengeType(str, Enum):
    """Length of the calendar window a challenge runs over."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class LeaderboardOrder(str, Enum):
    """Fields the leaderboard can be ordered by."""
    POINTS = "points"
    LEVEL = "level"


@dataclass(frozen=True)
class AchievementDefinition:
    """Static achievement definition - shared by all students, never mutated."""

    id: str  # e.g. "first-assignment"; the idempotency key for unlocking
    title: str
    description: str
    icon: str
    rarity: AchievementRarity
    xp_reward: int
    point_reward: int
    progress_metric: str  # name of a metric in services.achievements.PROGRESS_METRICS
    target: float  # unlocked once the metric reaches this value


@dataclass(frozen=True)
class ChallengeDefinition:
    """Static challenge definition. Windows are derived from ``type`` at read time."""

    id: str
    title: str
    description: str
    type: ChallengeType
    target_metric: str  # name of a metric in services.challenges.CHALLENGE_METRICS
    target_value: int
    reward_description: str


@dataclass(frozen=True)
class UnlockedAchievement:
    """A student's unlock of one achievement. Created once, never updated."""

    student_id: int
    achievement_id: str
    unlocked_at: datetime


class Student(Base):
    """Roster entry used for leaderboard display names."""

    __tablename__ = "students"

    id: Mapped[int] = mapped_column(primary_key=True)
    display_name: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class StudentAchievement(Base):
    """Junction table recording which achievements a student has unlocked."""

    __tablename__ = "student_achievements"

    id: Mapped[int] = mapped_column(primary_key=True)
    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"),
        index=True,
    )
    # No foreign key: catalogs live in code and may drop ids that old rows still reference
    achievement_id: Mapped[str] = mapped_column(String(100))
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_student_achievement_unique", "student_id", "achievement_id", unique=True),
    )

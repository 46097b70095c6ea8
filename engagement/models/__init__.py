from engagement.models.base import Base
from engagement.models.activity import (
    ActivityKind,
    ActivityRecord,
    AssignmentSubmission,
    Grade,
    StudentActivity,
    StudySession,
    SubmissionStatus,
    WellnessEntry,
)
from engagement.models.gamification import (
    AchievementDefinition,
    AchievementRarity,
    ChallengeDefinition,
    ChallengeType,
    LeaderboardOrder,
    Student,
    StudentAchievement,
    UnlockedAchievement,
)

__all__ = [
    "Base",
    "ActivityKind",
    "ActivityRecord",
    "AssignmentSubmission",
    "Grade",
    "StudentActivity",
    "StudySession",
    "SubmissionStatus",
    "WellnessEntry",
    "AchievementDefinition",
    "AchievementRarity",
    "ChallengeDefinition",
    "ChallengeType",
    "LeaderboardOrder",
    "Student",
    "StudentAchievement",
    "UnlockedAchievement",
]

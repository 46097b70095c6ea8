"""Achievement and challenge catalogs.

A ``Catalog`` is an immutable value handed to the engine at construction.
``default_catalog()`` builds the stock definitions; tests and deployments
can build their own with ``Catalog(achievements=..., challenges=...)``.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from engagement.core.exceptions import UnknownCatalogReference
from engagement.models.gamification import (
    AchievementDefinition,
    AchievementRarity,
    ChallengeDefinition,
    ChallengeType,
)


DEFAULT_ACHIEVEMENTS: tuple[AchievementDefinition, ...] = (
    AchievementDefinition(
        id="first-assignment",
        title="First Steps",
        description="Complete your first assignment",
        icon="🎯",
        rarity=AchievementRarity.COMMON,
        xp_reward=50,
        point_reward=100,
        progress_metric="submitted_assignments",
        target=1,
    ),
    AchievementDefinition(
        id="study-warrior",
        title="Study Warrior",
        description="Study for 7 consecutive days",
        icon="⚔️",
        rarity=AchievementRarity.RARE,
        xp_reward=200,
        point_reward=500,
        progress_metric="study_streak",
        target=7,
    ),
    AchievementDefinition(
        id="perfect-score",
        title="Perfect Score",
        description="Get 100% on any quiz",
        icon="💯",
        rarity=AchievementRarity.EPIC,
        xp_reward=300,
        point_reward=750,
        progress_metric="perfect_grades",
        target=1,
    ),
    AchievementDefinition(
        id="knowledge-master",
        title="Knowledge Master",
        description="Complete 50 assignments",
        icon="🧠",
        rarity=AchievementRarity.LEGENDARY,
        xp_reward=500,
        point_reward=1000,
        progress_metric="submitted_assignments",
        target=50,
    ),
    AchievementDefinition(
        id="wellness-champion",
        title="Wellness Champion",
        description="Maintain high wellness score for 30 days",
        icon="💚",
        rarity=AchievementRarity.EPIC,
        xp_reward=400,
        point_reward=800,
        progress_metric="high_wellness_days",
        target=30,
    ),
    AchievementDefinition(
        id="streak-master",
        title="Streak Master",
        description="Maintain a 30-day study streak",
        icon="🔥",
        rarity=AchievementRarity.LEGENDARY,
        xp_reward=600,
        point_reward=1200,
        progress_metric="study_streak",
        target=30,
    ),
)

DEFAULT_CHALLENGES: tuple[ChallengeDefinition, ...] = (
    ChallengeDefinition(
        id="daily-grind",
        title="Daily Grind",
        description="Complete 3 assignments today",
        type=ChallengeType.DAILY,
        target_metric="submissions_count",
        target_value=3,
        reward_description="50 XP",
    ),
    ChallengeDefinition(
        id="study-marathon",
        title="Study Marathon",
        description="Study for 20 hours this week",
        type=ChallengeType.WEEKLY,
        target_metric="study_hours",
        target_value=20,
        reward_description="200 XP + Badge",
    ),
    ChallengeDefinition(
        id="subject-master",
        title="Subject Master",
        description="Get A grade in all subjects this month",
        type=ChallengeType.MONTHLY,
        target_metric="a_grades_count",
        target_value=5,
        reward_description="500 XP + Title",
    ),
)


@dataclass(frozen=True)
class Catalog:
    """Immutable set of achievement and challenge definitions."""

    achievements: tuple[AchievementDefinition, ...] = DEFAULT_ACHIEVEMENTS
    challenges: tuple[ChallengeDefinition, ...] = DEFAULT_CHALLENGES
    _by_id: Mapping[str, AchievementDefinition] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # Lists are accepted for convenience but stored as tuples
        object.__setattr__(self, "achievements", tuple(self.achievements))
        object.__setattr__(self, "challenges", tuple(self.challenges))

        _check_unique("achievement", [a.id for a in self.achievements])
        _check_unique("challenge", [c.id for c in self.challenges])

        for achievement in self.achievements:
            if achievement.target <= 0:
                raise ValueError(f"Achievement {achievement.id!r} needs a positive target")
        for challenge in self.challenges:
            if challenge.target_value <= 0:
                raise ValueError(f"Challenge {challenge.id!r} needs a positive target_value")

        object.__setattr__(
            self,
            "_by_id",
            MappingProxyType({a.id: a for a in self.achievements}),
        )

    def get_achievement(self, achievement_id: str) -> AchievementDefinition | None:
        """Look up a definition; None when the id is not (or no longer) in the catalog."""
        return self._by_id.get(achievement_id)

    def resolve(self, achievement_id: str) -> AchievementDefinition:
        """Like get_achievement, but raises UnknownCatalogReference for a missing id."""
        definition = self._by_id.get(achievement_id)
        if definition is None:
            raise UnknownCatalogReference(achievement_id)
        return definition

    def __contains__(self, achievement_id: object) -> bool:
        return achievement_id in self._by_id


def _check_unique(label: str, ids: list[str]) -> None:
    seen: set[str] = set()
    for item_id in ids:
        if item_id in seen:
            raise ValueError(f"Duplicate {label} id in catalog: {item_id!r}")
        seen.add(item_id)


def default_catalog() -> Catalog:
    """Build the stock catalog."""
    return Catalog()

"""Engagement API endpoints for profiles, achievements, challenges, and leaderboards."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from engagement.core.config import settings
from engagement.core.database import get_db
from engagement.models.gamification import AchievementRarity, ChallengeType, LeaderboardOrder
from engagement.services.achievements import AchievementStatus
from engagement.services.catalog import default_catalog
from engagement.services.challenges import ChallengeProgress
from engagement.services.engine import EngagementEngine
from engagement.services.sql_store import SQLAlchemyActivityStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/engagement", tags=["engagement"])


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class AchievementResponse(BaseModel):
    """Single achievement with the student's unlock state."""
    id: str
    title: str
    description: str
    icon: str
    rarity: str
    xp_reward: int
    point_reward: int
    target: float
    is_unlocked: bool
    unlocked_at: str | None
    current_value: float | None
    progress: float | None


class ProfileResponse(BaseModel):
    """Full engagement profile."""
    student_id: int
    level: int
    xp: int
    xp_to_next_level: int
    total_points: int
    rank: int
    streak_days: int
    achievements: list[AchievementResponse]


class ChallengeResponse(BaseModel):
    """Progress on one challenge in its current window."""
    id: str
    title: str
    description: str
    type: str
    progress: int
    max_progress: int
    completed: bool
    reward: str
    window_start: str
    window_end: str
    expires_in: str


class LeaderboardEntryResponse(BaseModel):
    """Single leaderboard entry."""
    rank: int
    student_id: int
    display_name: str
    points: int
    level: int
    badge: str
    is_current_user: bool


class LeaderboardResponse(BaseModel):
    """Leaderboard response."""
    order_by: str
    leaderboard: list[LeaderboardEntryResponse]


class EvaluateResponse(BaseModel):
    """Response for newly unlocked achievements."""
    unlocked: list[str]
    achievements: list[dict[str, Any]]
    xp_gained: int
    points_gained: int


# =============================================================================
# HELPERS
# =============================================================================

def get_engine(db: AsyncSession = Depends(get_db)) -> EngagementEngine:
    """Engine bound to the request's database session."""
    return EngagementEngine(SQLAlchemyActivityStore(db))


def _achievement_to_dict(status_: AchievementStatus) -> dict[str, Any]:
    definition = status_.definition
    progress = status_.progress
    return {
        "id": definition.id,
        "title": definition.title,
        "description": definition.description,
        "icon": definition.icon,
        "rarity": definition.rarity.value,
        "xp_reward": definition.xp_reward,
        "point_reward": definition.point_reward,
        "target": definition.target,
        "is_unlocked": status_.unlocked,
        "unlocked_at": status_.unlocked_at.isoformat() if status_.unlocked_at else None,
        "current_value": progress.current if progress else None,
        "progress": progress.ratio if progress else None,
    }


def _challenge_to_dict(challenge: ChallengeProgress) -> dict[str, Any]:
    definition = challenge.definition
    return {
        "id": definition.id,
        "title": definition.title,
        "description": definition.description,
        "type": definition.type.value,
        "progress": challenge.progress,
        "max_progress": challenge.max_progress,
        "completed": challenge.completed,
        "reward": definition.reward_description,
        "window_start": challenge.window_start.isoformat(),
        "window_end": challenge.window_end.isoformat(),
        "expires_in": challenge.expires_in,
    }


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/students/{student_id}/profile", response_model=ProfileResponse)
async def get_profile(
    student_id: int,
    engine: EngagementEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Get a student's level, XP, points, rank, streak and unlocked achievements."""
    profile = await engine.get_profile(student_id)
    return {
        "student_id": profile.student_id,
        "level": profile.level,
        "xp": profile.xp,
        "xp_to_next_level": profile.xp_to_next,
        "total_points": profile.total_points,
        "rank": profile.rank,
        "streak_days": profile.streak_days,
        "achievements": [_achievement_to_dict(a) for a in profile.achievements],
    }


@router.get("/students/{student_id}/achievements", response_model=list[AchievementResponse])
async def list_achievements(
    student_id: int,
    engine: EngagementEngine = Depends(get_engine),
) -> list[dict[str, Any]]:
    """Get every achievement with the student's unlock state and progress."""
    statuses = await engine.list_achievements(student_id)
    return [_achievement_to_dict(s) for s in statuses]


@router.post("/students/{student_id}/achievements/evaluate", response_model=EvaluateResponse)
async def evaluate_achievements(
    student_id: int,
    engine: EngagementEngine = Depends(get_engine),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Check for and unlock any newly earned achievements."""
    newly_unlocked = await engine.evaluate_achievements(student_id)
    await db.commit()

    definitions = [engine.catalog.resolve(a) for a in newly_unlocked]
    return {
        "unlocked": newly_unlocked,
        "achievements": [
            {"id": d.id, "title": d.title, "icon": d.icon, "xp_reward": d.xp_reward}
            for d in definitions
        ],
        "xp_gained": sum(d.xp_reward for d in definitions),
        "points_gained": sum(d.point_reward for d in definitions),
    }


@router.get("/students/{student_id}/challenges", response_model=list[ChallengeResponse])
async def list_challenges(
    student_id: int,
    engine: EngagementEngine = Depends(get_engine),
) -> list[dict[str, Any]]:
    """Get progress on each active challenge."""
    challenges = await engine.list_challenges(student_id)
    return [_challenge_to_dict(c) for c in challenges]


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    order_by: str = Query(default="points", description="Field to rank by: points, level"),
    limit: int = Query(default=settings.leaderboard_default_limit, ge=1, le=settings.leaderboard_max_limit),
    viewer_id: int | None = Query(default=None, description="Student to flag as the current user"),
    engine: EngagementEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Get the leaderboard."""
    try:
        order = LeaderboardOrder(order_by)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid order_by. Must be one of: {[o.value for o in LeaderboardOrder]}",
        )

    entries = await engine.get_leaderboard(order, limit, viewer_id)
    return {
        "order_by": order.value,
        "leaderboard": [
            {
                "rank": e.rank,
                "student_id": e.student_id,
                "display_name": e.display_name,
                "points": e.points,
                "level": e.level,
                "badge": e.badge,
                "is_current_user": e.is_current_user,
            }
            for e in entries
        ],
    }


@router.get("/catalog")
async def get_catalog() -> dict[str, Any]:
    """Get the achievement and challenge definitions plus the available rarities."""
    catalog = default_catalog()
    return {
        "achievements": [
            {
                "id": a.id,
                "title": a.title,
                "description": a.description,
                "icon": a.icon,
                "rarity": a.rarity.value,
                "xp_reward": a.xp_reward,
                "point_reward": a.point_reward,
                "target": a.target,
            }
            for a in catalog.achievements
        ],
        "challenges": [
            {
                "id": c.id,
                "title": c.title,
                "description": c.description,
                "type": c.type.value,
                "target": c.target_value,
                "reward": c.reward_description,
            }
            for c in catalog.challenges
        ],
        "rarities": [r.value for r in AchievementRarity],
        "challenge_types": [t.value for t in ChallengeType],
    }

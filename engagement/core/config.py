from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # App settings
    app_name: str = "Engagement Engine"
    debug: bool = False

    # Database
    database_url: str = "postgresql+asyncpg://localhost:5432/engagement"

    # Calendar used for streak days and challenge windows (IANA name)
    timezone: str = "UTC"

    # Scoring
    level_xp_step: int = 1000  # XP per level, linear curve
    streak_window_days: int = 30
    high_wellness_score: int = 70  # 0-100 wellness score counted as a "high" day

    # Leaderboard
    leaderboard_default_limit: int = 50
    leaderboard_max_limit: int = 500

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "ENGAGEMENT_",
        "extra": "ignore",
    }

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Reject timezone names the zoneinfo database does not know."""
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {value!r}")
        return value

    @field_validator("level_xp_step", "streak_window_days")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


settings = Settings()

"""
Runtime configuration for the notification dispatcher.

Values come from environment variables (a local .env file is loaded first).
The reference timezone is always explicit - nothing here depends on the
host locale.
"""

import os
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

DAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


class NotificationSettings(BaseModel):
    """Cadence, timezone and delivery settings for scheduled notifications."""

    timezone: str = "Africa/Lagos"
    reminder_interval_seconds: int = Field(60, ge=1)
    digest_day_of_week: str = "sun"
    digest_hour: int = Field(18, ge=0, le=23)
    digest_minute: int = Field(0, ge=0, le=59)
    max_workers: int = Field(4, ge=1)
    send_timeout_seconds: float = Field(30.0, gt=0)
    frontend_url: str = "http://localhost:5173"
    from_email: str = "onboarding@resend.dev"
    from_name: str = "Chrono"

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @field_validator("digest_day_of_week")
    @classmethod
    def _known_day(cls, value: str) -> str:
        value = value.strip().lower()[:3]
        if value not in DAY_NAMES:
            raise ValueError(f"digest_day_of_week must be one of {', '.join(DAY_NAMES)}")
        return value

    @field_validator("frontend_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls) -> "NotificationSettings":
        """Build settings from the environment, falling back to defaults."""
        load_dotenv()

        env_map = {
            "timezone": "NOTIFICATION_TIMEZONE",
            "reminder_interval_seconds": "REMINDER_INTERVAL_SECONDS",
            "digest_day_of_week": "DIGEST_DAY_OF_WEEK",
            "digest_hour": "DIGEST_HOUR",
            "digest_minute": "DIGEST_MINUTE",
            "max_workers": "NOTIFICATION_MAX_WORKERS",
            "send_timeout_seconds": "NOTIFICATION_SEND_TIMEOUT_SECONDS",
            "frontend_url": "FRONTEND_URL",
            "from_email": "NOTIFICATION_FROM_EMAIL",
            "from_name": "NOTIFICATION_FROM_NAME",
        }
        values = {
            field: os.getenv(var) for field, var in env_map.items() if os.getenv(var)
        }
        return cls(**values)

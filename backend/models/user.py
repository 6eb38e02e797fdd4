"""Pydantic models for user data."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.types import UserID


class UserProfile(BaseModel):
    """User profile with notification preferences."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UserID
    email: str = Field(..., pattern=r"^[^@]+@[^@]+\.[^@]+$")
    name: str | None = None
    notification_preferences: dict[str, bool] = Field(
        default_factory=lambda: {"enabled": True}
    )

    @field_validator("notification_preferences", mode="before")
    @classmethod
    def _default_preferences(cls, value: Any) -> Any:
        return {"enabled": True} if value is None else value

    @property
    def notifications_enabled(self) -> bool:
        # Default to enabled if not set
        return self.notification_preferences.get("enabled", True) is not False

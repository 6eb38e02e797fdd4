"""Pydantic models for notification dispatch."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from models.task import Task


class NotificationKind(str, Enum):
    """Kinds of message the composer knows how to build."""

    WELCOME = "welcome"
    WEEKLY_DIGEST = "weekly_digest"
    TASK_REMINDER = "task_reminder"


class TimeWindow(BaseModel):
    """
    Instant range derived from "now" on every tick.

    Half-open ``[start, end)`` unless ``closed`` is set, in which case the
    end instant is included as well.
    """

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime
    closed: bool = False

    def contains(self, instant: datetime) -> bool:
        if instant < self.start:
            return False
        if self.closed:
            return instant <= self.end
        return instant < self.end


class Message(BaseModel):
    """Rendered email content ready for the transport."""

    subject: str = Field(..., min_length=1)
    html: str
    text: str
    unsubscribe_url: str | None = None


class DigestStats(BaseModel):
    """Weekly progress numbers, computed fresh for every digest run."""

    completed_count: int = Field(0, ge=0)
    total_due_count: int = Field(0, ge=0)
    completed_of_due_count: int = Field(0, ge=0)
    overdue_count: int = Field(0, ge=0)

    @property
    def completion_rate(self) -> int:
        """Integer percentage in [0, 100], rounded half-up. 0 when nothing was due."""
        if self.total_due_count == 0:
            return 0
        done = min(self.completed_of_due_count, self.total_due_count)
        return (200 * done + self.total_due_count) // (2 * self.total_due_count)

    @classmethod
    def from_tasks(
        cls,
        completed: list[Task],
        due_last_week: list[Task],
        overdue: list[Task],
    ) -> "DigestStats":
        return cls(
            completed_count=len(completed),
            total_due_count=len(due_last_week),
            completed_of_due_count=sum(1 for t in due_last_week if t.completed),
            overdue_count=len(overdue),
        )

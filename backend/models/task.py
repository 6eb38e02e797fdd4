"""Pydantic models for study tasks and the task query shape."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from models.types import CourseID, TaskID, UserID
from models.user import UserProfile


def ensure_aware(value: datetime) -> datetime:
    """Interpret naive datetimes as UTC so all comparisons use absolute instants."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Course(BaseModel):
    """Course a task belongs to (embedded from the courses table)."""

    id: CourseID | None = None
    course_title: str | None = None


class Task(BaseModel):
    """Study task record from the store."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: TaskID
    user_id: UserID
    goal: str | None = None
    deadline: datetime
    completed: bool = False
    reminder_sent: bool = False
    course_id: CourseID | None = None
    course: Course | None = None
    user: UserProfile | None = None
    updated_at: datetime | None = None

    @field_validator("completed", "reminder_sent", mode="before")
    @classmethod
    def _null_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("deadline", "updated_at")
    @classmethod
    def _aware(cls, value: datetime | None) -> datetime | None:
        return ensure_aware(value) if value is not None else None

    @property
    def course_name(self) -> str | None:
        return self.course.course_title if self.course else None


class TaskFilter(BaseModel):
    """
    Query shape accepted by the task store.

    None means "don't filter on this field". ``reminder_sent=False`` means
    "not true", so rows with a null flag still match.

    ``matches()`` is the in-memory reference for these semantics; store
    implementations must select exactly the tasks it accepts.
    """

    completed: bool | None = None
    reminder_sent: bool | None = None
    user_id: UserID | None = None
    deadline_gte: datetime | None = None
    deadline_lt: datetime | None = None
    deadline_lte: datetime | None = None
    updated_gte: datetime | None = None
    order_by_deadline: bool = False
    with_course: bool = False
    with_user: bool = False

    def matches(self, task: Task) -> bool:
        if self.completed is not None and task.completed != self.completed:
            return False
        if self.reminder_sent is not None and task.reminder_sent != self.reminder_sent:
            return False
        if self.user_id is not None and task.user_id != self.user_id:
            return False
        if self.deadline_gte is not None and task.deadline < self.deadline_gte:
            return False
        if self.deadline_lt is not None and task.deadline >= self.deadline_lt:
            return False
        if self.deadline_lte is not None and task.deadline > self.deadline_lte:
            return False
        if self.updated_gte is not None:
            if task.updated_at is None or task.updated_at < self.updated_gte:
                return False
        return True

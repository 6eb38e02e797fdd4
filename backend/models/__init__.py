"""Pydantic models for data validation and type checking."""

from models.notification import DigestStats, Message, NotificationKind, TimeWindow
from models.task import Course, Task, TaskFilter
from models.user import UserProfile

__all__ = [
    "Course",
    "Task",
    "TaskFilter",
    "UserProfile",
    "DigestStats",
    "Message",
    "NotificationKind",
    "TimeWindow",
]

"""
Supabase-backed task store used by the notification dispatcher.

The dispatcher only reads tasks and users and writes back a single field
(``reminder_sent``) through a conditional update.
"""

from typing import Any, cast

from pydantic import ValidationError

from models.task import Task, TaskFilter
from models.user import UserProfile
from notifications.errors import StoreUnavailableError
from shared.db import get_supabase_client
from shared.utils import parse_timestamp, to_store_timestamp

TASK_COLUMNS = "id, user_id, goal, deadline, completed, reminder_sent, course_id, updated_at"
COURSE_EMBED = "course:courses(id, course_title)"
USER_COLUMNS = "id, email, name, notification_preferences"
USER_EMBED = f"user:user_profiles({USER_COLUMNS})"


class SupabaseTaskStore:
    """Task and user queries against Supabase tables."""

    def __init__(self, client: Any = None):
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            try:
                self._client = get_supabase_client()
            except Exception as e:
                raise StoreUnavailableError(f"Could not connect to store: {e}") from e
        return self._client

    def query_tasks(self, task_filter: TaskFilter) -> list[Task]:
        """Fetch tasks matching the filter (see TaskFilter.matches for semantics)."""
        select = TASK_COLUMNS
        if task_filter.with_course:
            select += f", {COURSE_EMBED}"
        if task_filter.with_user:
            select += f", {USER_EMBED}"

        try:
            query = self.client.table("tasks").select(select)

            if task_filter.completed is not None:
                query = query.eq("completed", task_filter.completed)
            if task_filter.reminder_sent is True:
                query = query.eq("reminder_sent", True)
            elif task_filter.reminder_sent is False:
                # "not true" so rows with a null flag are still candidates
                query = query.not_.is_("reminder_sent", "true")
            if task_filter.user_id is not None:
                query = query.eq("user_id", task_filter.user_id)
            if task_filter.deadline_gte is not None:
                query = query.gte("deadline", to_store_timestamp(task_filter.deadline_gte))
            if task_filter.deadline_lt is not None:
                query = query.lt("deadline", to_store_timestamp(task_filter.deadline_lt))
            if task_filter.deadline_lte is not None:
                query = query.lte("deadline", to_store_timestamp(task_filter.deadline_lte))
            if task_filter.updated_gte is not None:
                query = query.gte("updated_at", to_store_timestamp(task_filter.updated_gte))
            if task_filter.order_by_deadline:
                query = query.order("deadline", desc=False)

            response = query.execute()
        except Exception as e:
            raise StoreUnavailableError(f"Task query failed: {e}") from e

        tasks = []
        for row in response.data or []:
            task = _parse_task(cast(dict[str, Any], row))
            if task is not None:
                tasks.append(task)
        return tasks

    def query_users(self) -> list[UserProfile]:
        try:
            response = self.client.table("user_profiles").select(USER_COLUMNS).execute()
        except Exception as e:
            raise StoreUnavailableError(f"User query failed: {e}") from e

        users = []
        for row in response.data or []:
            try:
                users.append(UserProfile.model_validate(row))
            except ValidationError as e:
                print(f"  ⚠️  Skipping malformed user profile {row.get('id')}: {e.error_count()} error(s)")
        return users

    def commit_reminder_sent(self, task_id: str) -> bool:
        """
        Set reminder_sent = true only if it is not already true.

        Returns False when no row changed (task gone, or another pass won).
        """
        try:
            response = (
                self.client.table("tasks")
                .update({"reminder_sent": True})
                .eq("id", task_id)
                .not_.is_("reminder_sent", "true")
                .execute()
            )
        except Exception as e:
            raise StoreUnavailableError(f"Reminder commit failed for task {task_id}: {e}") from e

        return bool(response.data)

    def get_user_preference(self, user_id: str) -> dict[str, bool] | None:
        """Return {'notifications_enabled': bool}, or None if the user doesn't exist."""
        try:
            response = (
                self.client.table("user_profiles")
                .select("notification_preferences")
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise StoreUnavailableError(f"Preference lookup failed for user {user_id}: {e}") from e

        if not response.data:
            return None

        row = cast(dict[str, Any], response.data[0])
        preferences = row.get("notification_preferences") or {}
        return {"notifications_enabled": preferences.get("enabled", True) is not False}


def _parse_task(row: dict[str, Any]) -> Task | None:
    """Validate one task row; malformed rows are reported and dropped."""
    row = dict(row)
    for field in ("deadline", "updated_at"):
        if isinstance(row.get(field), str):
            row[field] = parse_timestamp(row[field])

    try:
        return Task.model_validate(row)
    except ValidationError as e:
        print(f"  ⚠️  Skipping malformed task {row.get('id')}: {e.error_count()} error(s)")
        return None

"""
Dispatch engine for scheduled study-task notifications.

Two runs share the same shape - fetch candidates, filter by time window,
check the user's preference, compose, send, commit:

- run_task_reminders(): every tick, reminds users about tasks due in 5 minutes.
  The conditional ``reminder_sent`` commit after a successful send keeps
  later ticks from re-sending; the per-kind lock stays held while any send
  from the previous tick is still running.
- run_weekly_digest(): once a week, sends each user their progress summary.

Each candidate is processed independently: one failure is logged and
counted, and the rest of the run carries on. Only a store outage while
fetching the candidate list aborts a run.
"""

import math
import threading
import time
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Any, Callable, Iterable, Protocol, TypeVar

from config.settings import NotificationSettings
from models.notification import DigestStats, Message, NotificationKind
from models.task import Task, TaskFilter
from models.types import DispatchStats
from models.user import UserProfile
from notifications.composer import compose
from notifications.email_sender import send_email
from notifications.error_logger import log_notification_error
from notifications.errors import StoreUnavailableError
from notifications.preferences import PreferenceGate
from notifications.unsubscribe_tokens import build_unsubscribe_url
from notifications.windows import (
    digest_windows,
    is_due_within_last_week,
    is_overdue,
    is_reminder_due,
    is_upcoming_within_week,
    reminder_prefetch_window,
)
from shared.clock import SystemClock
from shared.utils import print_summary

T = TypeVar("T")

SENT = "sent"
FAILED = "failed"
SKIPPED = "skipped"

SendFn = Callable[[str, Message], dict[str, Any]]


class TaskStore(Protocol):
    def query_tasks(self, task_filter: TaskFilter) -> list[Task]: ...

    def query_users(self) -> list[UserProfile]: ...

    def commit_reminder_sent(self, task_id: str) -> bool: ...

    def get_user_preference(self, user_id: str) -> dict[str, bool] | None: ...


class Clock(Protocol):
    def now(self) -> datetime: ...


def _empty_stats() -> DispatchStats:
    return {SENT: 0, FAILED: 0, SKIPPED: 0, "aborted": 0}


class DispatchEngine:
    """Runs reminder and digest passes against the task store."""

    def __init__(
        self,
        store: TaskStore,
        send: SendFn | None = None,
        clock: Clock | None = None,
        gate: PreferenceGate | None = None,
        settings: NotificationSettings | None = None,
        dry_run: bool = False,
    ):
        self.store = store
        self.settings = settings or NotificationSettings.from_env()
        self.send = send or (lambda recipient, message: send_email(recipient, message, self.settings))
        self.clock = clock or SystemClock(self.settings.timezone)
        self.gate = gate or PreferenceGate(store)
        self.dry_run = dry_run
        self._locks = {
            NotificationKind.TASK_REMINDER: threading.Lock(),
            NotificationKind.WEEKLY_DIGEST: threading.Lock(),
        }
        self._stragglers: dict[NotificationKind, list[Future]] = {kind: [] for kind in self._locks}

    # ------------------------------------------------------------------
    # Public runs
    # ------------------------------------------------------------------

    def run_task_reminders(self) -> DispatchStats:
        """One reminder pass; returns sent/failed/skipped/aborted counts."""
        return self._run_exclusive(NotificationKind.TASK_REMINDER, self._run_task_reminders)

    def run_weekly_digest(self) -> DispatchStats:
        """One weekly digest pass; returns sent/failed/skipped/aborted counts."""
        return self._run_exclusive(NotificationKind.WEEKLY_DIGEST, self._run_weekly_digest)

    def run(self, kind: NotificationKind | str) -> DispatchStats:
        kind = NotificationKind(kind)
        if kind is NotificationKind.TASK_REMINDER:
            return self.run_task_reminders()
        if kind is NotificationKind.WEEKLY_DIGEST:
            return self.run_weekly_digest()
        raise ValueError(f"{kind.value} is not a scheduled notification kind")

    def _run_exclusive(self, kind: NotificationKind, run: Callable[[], DispatchStats]) -> DispatchStats:
        # Overlapping reminder runs would both read reminder_sent=false and double-send
        lock = self._locks[kind]
        if not lock.acquire(blocking=False):
            print(f"⚠️  Previous {kind.value} run still in progress, skipping this tick")
            return _empty_stats()
        try:
            return run()
        finally:
            self._release_when_settled(kind)

    def _release_when_settled(self, kind: NotificationKind) -> None:
        """
        Release the kind's lock once every send it started has finished.

        Timed-out sends keep running in their worker thread and may still
        succeed, so the lock stays held (and later ticks are skipped) until
        the last of them completes.
        """
        lock = self._locks[kind]
        stragglers = self._stragglers[kind]
        self._stragglers[kind] = []
        if not stragglers:
            lock.release()
            return

        remaining = len(stragglers)
        counter = threading.Lock()

        def _settled(_future: Future) -> None:
            nonlocal remaining
            with counter:
                remaining -= 1
                last = remaining == 0
            if last:
                lock.release()

        for future in stragglers:
            future.add_done_callback(_settled)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no run (or timed-out send) of any kind is in flight."""
        deadline = None if timeout is None else time.monotonic() + timeout
        for lock in self._locks.values():
            remaining = -1 if deadline is None else max(deadline - time.monotonic(), 0)
            if not lock.acquire(timeout=remaining):
                return False
            lock.release()
        return True

    # ------------------------------------------------------------------
    # Task reminders
    # ------------------------------------------------------------------

    def _run_task_reminders(self) -> DispatchStats:
        now = self.clock.now()
        stats = _empty_stats()
        prefetch = reminder_prefetch_window(now)

        try:
            candidates = self.store.query_tasks(
                TaskFilter(
                    completed=False,
                    reminder_sent=False,
                    deadline_gte=prefetch.start,
                    deadline_lt=prefetch.end,
                    with_course=True,
                    with_user=True,
                )
            )
        except StoreUnavailableError as e:
            return self._abort("reminder", e, stats, now)

        if not candidates:
            return stats

        outcomes = self._process_all(
            candidates,
            lambda task: self._remind(task, now),
            kind=NotificationKind.TASK_REMINDER,
            error_type="reminder",
            describe=lambda task: {"task_id": task.id, "user_id": task.user_id},
        )
        stats.update(_count(outcomes))
        print_summary("Task Reminders", stats)
        return stats

    def _remind(self, task: Task, now: datetime) -> str:
        if task.completed or task.reminder_sent:
            return SKIPPED
        if not is_reminder_due(task.deadline, now):
            print(f"  ⊘ Task reminder skipped for {task.id}: outside_window")
            return SKIPPED

        user = task.user
        if user is None:
            print(f"  ⚠️  Task reminder skipped for {task.id}: user_not_found")
            return SKIPPED

        # Disabled users are left pending (reminder_sent stays false); the
        # deadline-bounded query drops the task once its window has passed.
        if not self.gate.is_enabled(task.user_id):
            print(f"  ⊘ Task reminder skipped for {user.email}: notifications_disabled")
            return SKIPPED

        message = compose(
            NotificationKind.TASK_REMINDER,
            {
                "user_name": user.name,
                "task": task,
                "course_name": task.course_name,
                "timezone": self.settings.tzinfo,
                "now": now,
                "frontend_url": self.settings.frontend_url,
                "unsubscribe_url": build_unsubscribe_url(user.id, self.settings.frontend_url),
            },
        )

        if self.dry_run:
            print(f"  [DRY RUN] Would send task reminder for {task.id} to {user.email}")
            return SENT

        result = self.send(user.email, message)
        if not result.get("success"):
            return self._record_send_failure(
                "reminder", result, {"task_id": task.id, "user_id": task.user_id}
            )

        if not self.store.commit_reminder_sent(task.id):
            print(f"  ⚠️  Task {task.id} was already marked reminded (or no longer exists)")
        print(f"  ✓ Task reminder sent to: {user.email}")
        return SENT

    # ------------------------------------------------------------------
    # Weekly digest
    # ------------------------------------------------------------------

    def _run_weekly_digest(self) -> DispatchStats:
        now = self.clock.now()
        stats = _empty_stats()

        try:
            users = self.store.query_users()
        except StoreUnavailableError as e:
            return self._abort("digest", e, stats, now)

        print(f"Sending weekly summaries to {len(users)} users...")
        outcomes = self._process_all(
            users,
            lambda user: self._digest(user, now),
            kind=NotificationKind.WEEKLY_DIGEST,
            error_type="digest",
            describe=lambda user: {"user_id": user.id},
        )
        stats.update(_count(outcomes))
        print_summary("Weekly Digest", stats)
        return stats

    def collect_digest(self, user: UserProfile, now: datetime) -> dict[str, Any]:
        """
        Fetch and classify a user's tasks for the digest.

        Returns:
            Dict with completed_tasks, due_tasks, upcoming_tasks, overdue_tasks
            and the computed DigestStats under 'stats'
        """
        past_week, next_week = digest_windows(now)

        completed_tasks = self.store.query_tasks(
            TaskFilter(user_id=user.id, completed=True, updated_gte=past_week.start, with_course=True)
        )
        due_tasks = [
            t
            for t in self.store.query_tasks(
                TaskFilter(
                    user_id=user.id,
                    deadline_gte=past_week.start,
                    deadline_lte=past_week.end,
                    with_course=True,
                )
            )
            if is_due_within_last_week(t.deadline, now)
        ]
        upcoming_tasks = [
            t
            for t in self.store.query_tasks(
                TaskFilter(
                    user_id=user.id,
                    completed=False,
                    deadline_gte=next_week.start,
                    deadline_lte=next_week.end,
                    with_course=True,
                )
            )
            if is_upcoming_within_week(t.deadline, now)
        ]
        # sorted() is stable: equal deadlines keep the store's order
        overdue_tasks = sorted(
            (
                t
                for t in self.store.query_tasks(
                    TaskFilter(
                        user_id=user.id,
                        completed=False,
                        deadline_lt=now,
                        order_by_deadline=True,
                        with_course=True,
                    )
                )
                if is_overdue(t.deadline, now, t.completed)
            ),
            key=lambda t: t.deadline,
        )

        return {
            "completed_tasks": completed_tasks,
            "due_tasks": due_tasks,
            "upcoming_tasks": upcoming_tasks,
            "overdue_tasks": overdue_tasks,
            "stats": DigestStats.from_tasks(completed_tasks, due_tasks, overdue_tasks),
        }

    def _digest(self, user: UserProfile, now: datetime) -> str:
        if not self.gate.is_enabled(user.id):
            print(f"  ⊘ Weekly summary skipped for {user.email}: notifications_disabled")
            return SKIPPED

        digest = self.collect_digest(user, now)
        message = compose(
            NotificationKind.WEEKLY_DIGEST,
            {
                "user_name": user.name,
                "completed_tasks": digest["completed_tasks"],
                "upcoming_tasks": digest["upcoming_tasks"],
                "overdue_tasks": digest["overdue_tasks"],
                "stats": digest["stats"],
                "now": now,
                "timezone": self.settings.tzinfo,
                "frontend_url": self.settings.frontend_url,
                "unsubscribe_url": build_unsubscribe_url(user.id, self.settings.frontend_url),
            },
        )

        if self.dry_run:
            print(f"  [DRY RUN] Would send weekly summary to {user.email}")
            return SENT

        result = self.send(user.email, message)
        if not result.get("success"):
            return self._record_send_failure("digest", result, {"user_id": user.id})

        print(f"  ✓ Weekly summary sent to: {user.email}")
        return SENT

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _process_all(
        self,
        items: list[T],
        handle: Callable[[T], str],
        kind: NotificationKind,
        error_type: str,
        describe: Callable[[T], dict[str, Any]],
    ) -> list[str]:
        """
        Process candidates in a bounded thread pool.

        The batch gets send_timeout_seconds per wave of workers; anything
        still running after that is counted as failed so one stuck send
        can't hold up the run. Sends that were already running are left to
        finish and keep the kind's lock held until they do.
        """
        if not items:
            return []

        workers = min(self.settings.max_workers, len(items))
        budget = self.settings.send_timeout_seconds * math.ceil(len(items) / workers)

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"notify-{error_type}")
        try:
            futures = {
                executor.submit(self._guarded, handle, item, error_type, describe): item
                for item in items
            }
            done, not_done = wait(futures, timeout=budget)

            outcomes = [future.result() for future in done]
            for future in not_done:
                if not future.cancel():
                    self._stragglers[kind].append(future)
                context = describe(futures[future])
                error_file = log_notification_error(
                    error_type=error_type,
                    error_message=f"Timed out after {budget:.0f}s",
                    context=context,
                )
                print(f"  ✗ Timed out processing {context}. Details logged to: {error_file}")
                outcomes.append(FAILED)
            return outcomes
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _guarded(
        handle: Callable[[T], str],
        item: T,
        error_type: str,
        describe: Callable[[T], dict[str, Any]],
    ) -> str:
        try:
            return handle(item)
        except Exception as e:
            error_file = log_notification_error(
                error_type=error_type, error_message=str(e), context=describe(item)
            )
            print(f"  ✗ Error processing {describe(item)}: {e}. Details logged to: {error_file}")
            return FAILED

    @staticmethod
    def _record_send_failure(error_type: str, result: dict[str, Any], context: dict[str, Any]) -> str:
        error_msg = str(result.get("error") or result.get("reason") or "Unknown error")
        print(f"  ✗ Failed to send {error_type} for {context}: {error_msg}")
        log_notification_error(error_type="sending", error_message=error_msg, context={"kind": error_type, **context})
        return FAILED

    @staticmethod
    def _abort(error_type: str, error: Exception, stats: DispatchStats, now: datetime) -> DispatchStats:
        error_file = log_notification_error(
            error_type="store",
            error_message=str(error),
            context={"run": error_type, "started_at": now.isoformat()},
        )
        print(f"✗ Store unavailable, {error_type} run aborted. Details logged to: {error_file}")
        stats["aborted"] = 1
        return stats


def _count(outcomes: Iterable[str]) -> DispatchStats:
    counts = Counter(outcomes)
    return {SENT: counts[SENT], FAILED: counts[FAILED], SKIPPED: counts[SKIPPED]}

"""
Unit tests for notifications/dispatch.py

Tests reminder idempotency, preference gating, failure isolation, run
aborts and weekly digest aggregation, using an in-memory store and a spy
transport.
"""

import os
import threading
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from config.settings import NotificationSettings
from models.notification import NotificationKind
from notifications.dispatch import DispatchEngine
from shared.clock import FixedClock
from tests.fixtures.fake_store import InMemoryTaskStore
from tests.fixtures.mock_helpers import RecordingTransport
from tests.fixtures.task_factory import create_test_task
from tests.fixtures.user_factory import create_test_profile

NOW = datetime(2024, 1, 7, 18, 0, 0, tzinfo=timezone.utc)  # Sunday
SETTINGS = NotificationSettings(timezone="UTC", max_workers=4, send_timeout_seconds=5)


class DispatchTestCase(unittest.TestCase):
    """Shared setup: silence error report files and build engines."""

    def setUp(self):
        patcher = patch("notifications.dispatch.log_notification_error", return_value="/tmp/error.txt")
        self.mock_log_error = patcher.start()
        self.addCleanup(patcher.stop)

        self.clock = FixedClock(NOW)
        self.store = InMemoryTaskStore()
        self.transport = RecordingTransport()

    def engine(self, **kwargs) -> DispatchEngine:
        options = {
            "store": self.store,
            "send": self.transport,
            "clock": self.clock,
            "settings": SETTINGS,
        }
        options.update(kwargs)
        return DispatchEngine(**options)

    def add_user(self, **kwargs):
        user = create_test_profile(**kwargs)
        self.store.add_user(user)
        return user

    def add_task(self, user, **kwargs):
        task = create_test_task(user_id=user.id, **kwargs)
        self.store.add_task(task)
        return task


class TestTaskReminders(DispatchTestCase):

    def test_sends_once_then_suppressed(self):
        """Deadline at now+5.5min: one send on tick 1, none on tick 2."""
        user = self.add_user(email="ada@example.com")
        task = self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30))
        engine = self.engine()

        stats = engine.run_task_reminders()

        self.assertEqual(stats["sent"], 1)
        self.assertEqual(self.transport.recipients, ["ada@example.com"])
        self.assertTrue(self.store.tasks[task.id].reminder_sent)

        self.clock.advance(timedelta(minutes=1))
        stats = engine.run_task_reminders()

        self.assertEqual(len(self.transport.calls), 1)
        self.assertEqual(stats["sent"], 0)

    def test_reminded_task_never_redispatched(self):
        """Re-running at the same instant doesn't resend once the flag is set."""
        user = self.add_user()
        self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30))
        engine = self.engine()

        engine.run_task_reminders()
        engine.run_task_reminders()
        engine.run_task_reminders()

        self.assertEqual(len(self.transport.calls), 1)

    def test_already_flagged_task_not_sent(self):
        user = self.add_user()
        self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30), reminder_sent=True)

        self.engine().run_task_reminders()

        self.assertEqual(self.transport.calls, [])

    def test_disabled_user_gets_nothing(self):
        """notifications disabled: zero sends and reminder_sent stays false."""
        user = self.add_user(notifications_enabled=False)
        task = self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30))

        stats = self.engine().run_task_reminders()

        self.assertEqual(self.transport.calls, [])
        self.assertFalse(self.store.tasks[task.id].reminder_sent)
        self.assertEqual(stats["skipped"], 1)
        self.assertEqual(stats["failed"], 0)
        self.assertEqual(self.store.commit_calls, [])

    def test_send_failure_leaves_task_pending(self):
        """Failed send: flag stays false and the task is still a candidate next time."""
        user = self.add_user()
        task = self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30))
        self.transport = RecordingTransport([{"success": False, "error": "provider rejected"}])
        engine = self.engine()

        stats = engine.run_task_reminders()

        self.assertEqual(stats["failed"], 1)
        self.assertFalse(self.store.tasks[task.id].reminder_sent)
        self.assertEqual(self.store.commit_calls, [])
        self.mock_log_error.assert_called()

        stats = engine.run_task_reminders()

        self.assertEqual(stats["sent"], 1)
        self.assertEqual(len(self.transport.calls), 2)
        self.assertTrue(self.store.tasks[task.id].reminder_sent)

    def test_outside_window_not_sent(self):
        """Prefetch slack admits the task, the exact window check rejects it."""
        user = self.add_user()
        self.add_task(user, deadline=NOW + timedelta(minutes=4, seconds=30))
        self.add_task(user, deadline=NOW + timedelta(minutes=6, seconds=30))

        stats = self.engine().run_task_reminders()

        self.assertEqual(self.transport.calls, [])
        self.assertEqual(stats["skipped"], 2)

    def test_completed_task_not_candidate(self):
        user = self.add_user()
        self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30), completed=True)

        self.engine().run_task_reminders()

        self.assertEqual(self.transport.calls, [])

    def test_candidate_query_is_bounded(self):
        user = self.add_user()
        self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30))

        self.engine().run_task_reminders()

        query = self.store.queries[0]
        self.assertFalse(query.completed)
        self.assertFalse(query.reminder_sent)
        self.assertLessEqual(query.deadline_gte, NOW + timedelta(minutes=5))
        self.assertGreaterEqual(query.deadline_lt, NOW + timedelta(minutes=6))
        self.assertTrue(query.with_user)

    def test_one_failure_does_not_stop_others(self):
        """An exception for one candidate is isolated; the rest are still sent."""
        good = self.add_user(email="good@example.com")
        bad = self.add_user(email="bad@example.com")
        self.add_task(good, deadline=NOW + timedelta(minutes=5, seconds=10))
        self.add_task(bad, deadline=NOW + timedelta(minutes=5, seconds=20))

        def send(recipient, message):
            if recipient == "bad@example.com":
                raise RuntimeError("socket closed")
            return {"success": True, "email_id": "e1"}

        stats = self.engine(send=send).run_task_reminders()

        self.assertEqual(stats["sent"], 1)
        self.assertEqual(stats["failed"], 1)
        self.mock_log_error.assert_called()

    def test_reminder_content(self):
        user = self.add_user(name="Ada")
        self.add_task(
            user,
            goal="Lab report",
            course_title="Chemistry",
            deadline=NOW + timedelta(minutes=5, seconds=30),
        )

        self.engine().run_task_reminders()

        _, message = self.transport.calls[0]
        self.assertIn("Lab report", message.subject)
        self.assertIn("Chemistry", message.text)
        self.assertIn("Hi Ada", message.text)

    def test_lost_commit_race_still_counts_sent(self):
        user = self.add_user()
        self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30))

        with patch.object(self.store, "commit_reminder_sent", return_value=False):
            stats = self.engine().run_task_reminders()

        self.assertEqual(stats["sent"], 1)

    def test_commit_failure_counts_as_failed(self):
        user = self.add_user()
        self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30))

        with patch.object(self.store, "commit_reminder_sent", side_effect=RuntimeError("write failed")):
            stats = self.engine().run_task_reminders()

        self.assertEqual(stats["failed"], 1)

    def test_store_unavailable_aborts_run(self):
        user = self.add_user()
        self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30))
        self.store.unavailable = True

        stats = self.engine().run_task_reminders()

        self.assertEqual(stats["aborted"], 1)
        self.assertEqual(self.transport.calls, [])
        self.assertEqual(self.mock_log_error.call_args.kwargs["error_type"], "store")

    def test_dry_run_sends_and_commits_nothing(self):
        user = self.add_user()
        task = self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30))

        stats = self.engine(dry_run=True).run_task_reminders()

        self.assertEqual(stats["sent"], 1)
        self.assertEqual(self.transport.calls, [])
        self.assertFalse(self.store.tasks[task.id].reminder_sent)

    def test_skips_while_previous_run_in_flight(self):
        user = self.add_user()
        self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30))
        engine = self.engine()

        lock = engine._locks[NotificationKind.TASK_REMINDER]
        lock.acquire()
        try:
            stats = engine.run_task_reminders()
        finally:
            lock.release()

        self.assertEqual(stats["sent"], 0)
        self.assertEqual(self.transport.calls, [])
        self.assertEqual(self.store.queries, [])

    def test_digest_lock_independent_of_reminder_lock(self):
        self.add_user()
        engine = self.engine()

        with engine._locks[NotificationKind.TASK_REMINDER]:
            stats = engine.run_weekly_digest()

        self.assertEqual(stats["sent"], 1)

    def test_hung_send_times_out(self):
        user = self.add_user()
        self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30))
        release = threading.Event()

        def hung_send(recipient, message):
            release.wait(5)
            return {"success": True}

        settings = NotificationSettings(timezone="UTC", max_workers=1, send_timeout_seconds=0.2)
        engine = self.engine(send=hung_send, settings=settings)
        try:
            stats = engine.run_task_reminders()
        finally:
            release.set()

        self.assertEqual(stats["failed"], 1)
        self.assertTrue(engine.wait_idle(timeout=5))

    def test_timed_out_send_blocks_later_ticks_until_it_finishes(self):
        user = self.add_user()
        task = self.add_task(user, deadline=NOW + timedelta(minutes=5, seconds=30))
        release = threading.Event()
        calls = []

        def slow_send(recipient, message):
            calls.append(recipient)
            release.wait(5)
            return {"success": True, "email_id": "email_1"}

        def worker_count():
            return sum(1 for t in threading.enumerate() if t.name.startswith("notify-reminder"))

        settings = NotificationSettings(timezone="UTC", max_workers=1, send_timeout_seconds=0.2)
        engine = self.engine(send=slow_send, settings=settings)
        baseline = worker_count()
        try:
            first = engine.run_task_reminders()
            self.clock.advance(timedelta(seconds=30))
            second = engine.run_task_reminders()
            third = engine.run_task_reminders()
            workers = worker_count()
            idle_while_sending = engine.wait_idle(timeout=0.05)
        finally:
            release.set()

        self.assertEqual(first["failed"], 1)
        self.assertEqual(second, {"sent": 0, "failed": 0, "skipped": 0, "aborted": 0})
        self.assertEqual(third, second)
        self.assertLessEqual(workers, baseline + 1)
        self.assertFalse(idle_while_sending)

        # The late send commits, then the lock frees up
        self.assertTrue(engine.wait_idle(timeout=5))
        self.assertTrue(self.store.tasks[task.id].reminder_sent)

        fourth = engine.run_task_reminders()
        self.assertEqual(fourth["sent"], 0)
        self.assertEqual(calls, [user.email])
        self.assertEqual(self.store.commit_calls, [task.id])

    @patch("config.settings.load_dotenv")
    def test_settings_default_to_environment(self, mock_load_dotenv):
        env = {"NOTIFICATION_TIMEZONE": "UTC", "FRONTEND_URL": "https://chrono.example.com/"}
        with patch.dict(os.environ, env):
            engine = DispatchEngine(store=self.store, send=self.transport, clock=self.clock)

        mock_load_dotenv.assert_called_once()
        self.assertEqual(engine.settings.timezone, "UTC")
        self.assertEqual(engine.settings.frontend_url, "https://chrono.example.com")

    def test_run_by_kind(self):
        engine = self.engine()
        self.assertEqual(engine.run("task_reminder")["sent"], 0)
        with self.assertRaises(ValueError):
            engine.run(NotificationKind.WELCOME)


class TestWeeklyDigest(DispatchTestCase):

    def _seed_scenario(self):
        """3 tasks due in the last week (2 completed), 1 of them overdue."""
        user = self.add_user(email="ada@example.com", name="Ada")
        self.add_task(user, goal="Done A", deadline=NOW - timedelta(days=3), completed=True,
                      updated_at=NOW - timedelta(days=3))
        self.add_task(user, goal="Done B", deadline=NOW - timedelta(days=1), completed=True,
                      updated_at=NOW - timedelta(days=1))
        self.add_task(user, goal="Late essay", deadline=NOW - timedelta(days=2))
        self.add_task(user, goal="Next quiz", deadline=NOW + timedelta(days=2))
        return user

    def test_stats_for_scenario(self):
        user = self._seed_scenario()

        digest = self.engine().collect_digest(user, NOW)

        stats = digest["stats"]
        self.assertEqual(stats.total_due_count, 3)
        self.assertEqual(stats.completed_count, 2)
        self.assertEqual(stats.completion_rate, 67)
        self.assertEqual(stats.overdue_count, 1)
        self.assertEqual(digest["overdue_tasks"][0].goal, "Late essay")
        self.assertEqual(digest["overdue_tasks"][0].deadline, NOW - timedelta(days=2))
        self.assertEqual([t.goal for t in digest["upcoming_tasks"]], ["Next quiz"])

    def test_digest_sent(self):
        self._seed_scenario()

        stats = self.engine().run_weekly_digest()

        self.assertEqual(stats["sent"], 1)
        recipient, message = self.transport.calls[0]
        self.assertEqual(recipient, "ada@example.com")
        self.assertIn("Completion Rate: 67%", message.text)
        self.assertIn("Late essay - Overdue by 2 day(s)", message.text)
        self.assertIn("Next quiz", message.text)

    def test_overdue_sorted_earliest_first(self):
        user = self.add_user()
        for days in (1, 9, 3, 30, 3):
            self.add_task(user, goal=f"late {days}", deadline=NOW - timedelta(days=days))

        overdue = self.engine().collect_digest(user, NOW)["overdue_tasks"]

        deadlines = [t.deadline for t in overdue]
        self.assertEqual(deadlines, sorted(deadlines))
        self.assertEqual(len(overdue), 5)

    def test_no_due_tasks_rate_zero(self):
        user = self.add_user()
        self.add_task(user, deadline=NOW - timedelta(days=30), completed=True,
                      updated_at=NOW - timedelta(days=1))

        stats = self.engine().collect_digest(user, NOW)["stats"]

        self.assertEqual(stats.total_due_count, 0)
        self.assertEqual(stats.completed_count, 1)
        self.assertEqual(stats.completion_rate, 0)

    def test_completed_long_ago_not_counted(self):
        user = self.add_user()
        self.add_task(user, deadline=NOW - timedelta(days=20), completed=True,
                      updated_at=NOW - timedelta(days=14))

        stats = self.engine().collect_digest(user, NOW)["stats"]

        self.assertEqual(stats.completed_count, 0)

    def test_other_users_tasks_excluded(self):
        user = self.add_user()
        other = self.add_user()
        self.add_task(other, deadline=NOW - timedelta(days=2))

        stats = self.engine().collect_digest(user, NOW)["stats"]

        self.assertEqual(stats.overdue_count, 0)
        self.assertEqual(stats.total_due_count, 0)

    def test_disabled_users_get_no_digest(self):
        self.add_user(email="on@example.com")
        self.add_user(email="off@example.com", notifications_enabled=False)

        stats = self.engine().run_weekly_digest()

        self.assertEqual(self.transport.recipients, ["on@example.com"])
        self.assertEqual(stats["skipped"], 1)

    def test_send_failure_for_one_user_isolated(self):
        self.add_user(email="a@example.com")
        self.add_user(email="b@example.com")
        self.transport = RecordingTransport([{"success": False, "error": "rate limited"}])

        stats = self.engine(settings=NotificationSettings(timezone="UTC", max_workers=1)).run_weekly_digest()

        self.assertEqual(stats["failed"], 1)
        self.assertEqual(stats["sent"], 1)
        self.assertEqual(len(self.transport.calls), 2)

    def test_store_unavailable_aborts_run(self):
        self.add_user()
        self.store.unavailable = True

        stats = self.engine().run_weekly_digest()

        self.assertEqual(stats["aborted"], 1)
        self.assertEqual(self.transport.calls, [])


if __name__ == "__main__":
    unittest.main()

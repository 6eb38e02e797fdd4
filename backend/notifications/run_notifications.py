"""
CLI for running notification dispatch.

Usage:
    # Run the scheduler daemon (reminders every minute, digest weekly)
    uv run python -m notifications.run_notifications --serve

    # Run a single reminder pass
    uv run python -m notifications.run_notifications --reminders

    # Run the weekly digest now
    uv run python -m notifications.run_notifications --weekly-digest

    # Dry run (compose but don't send or mark anything)
    uv run python -m notifications.run_notifications --weekly-digest --dry-run
"""

import argparse
import signal
import threading

from config.settings import NotificationSettings
from notifications.dispatch import DispatchEngine
from notifications.scheduler import NotificationScheduler
from notifications.task_store import SupabaseTaskStore


def build_engine(dry_run: bool = False, settings: NotificationSettings | None = None) -> DispatchEngine:
    """Wire the engine to Supabase and Resend using environment settings."""
    settings = settings or NotificationSettings.from_env()
    return DispatchEngine(store=SupabaseTaskStore(), settings=settings, dry_run=dry_run)


def serve(engine: DispatchEngine) -> None:
    """Run the scheduler until SIGINT/SIGTERM."""
    scheduler = NotificationScheduler(engine)
    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        print(f"\nReceived signal {signum}, shutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    scheduler.start()
    try:
        stop_event.wait()
    finally:
        scheduler.stop(wait=True)


def main() -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Send study task reminders and weekly digests"
    )

    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument(
        "--serve", action="store_true", help="Run the notification scheduler"
    )
    mode.add_argument(
        "--reminders", action="store_true", help="Run one task reminder pass"
    )
    mode.add_argument(
        "--weekly-digest", action="store_true", help="Send weekly digest emails now"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Dry run mode (compose but don't send emails or mark reminders)",
    )

    args = parser.parse_args()
    engine = build_engine(dry_run=args.dry_run)

    if args.serve:
        serve(engine)
    elif args.reminders:
        engine.run_task_reminders()
    elif args.weekly_digest:
        engine.run_weekly_digest()


if __name__ == "__main__":
    main()

"""
Error logging utility for the notification dispatcher.

Writes one timestamped report file per error so failed sends and aborted
runs can be inspected after the fact.
"""

import os
import uuid
from datetime import datetime
from typing import Any

RULE = "-" * 60


def _log_dir() -> str:
    return os.getenv("NOTIFICATION_LOG_DIR") or os.path.join(os.path.dirname(__file__), "logs")


def _report_lines(error_type: str, error_message: str, context: dict[str, Any] | None) -> list[str]:
    lines = [
        f"Notification Error Report - {datetime.now()}",
        "=" * 60,
        "",
        f"Error Type: {error_type}",
        f"Error Message: {error_message}",
        "",
    ]
    if context:
        lines += ["Context:", RULE]
        lines += [f"{key}: {value}" for key, value in context.items()]
    return lines


def log_notification_error(
    error_type: str, error_message: str, context: dict[str, Any] | None = None
) -> str:
    """
    Write an error report and return its path.

    Args:
        error_type: Where it happened ('reminder', 'digest', 'sending', 'store')
        error_message: The error message
        context: Extra identifiers such as task_id, user_id or the run kind
    """
    log_dir = _log_dir()
    os.makedirs(log_dir, exist_ok=True)

    # Workers can fail within the same second
    stamp = f"{datetime.now():%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:6]}"
    path = os.path.join(log_dir, f"notification_error_{error_type}_{stamp}.txt")

    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(_report_lines(error_type, error_message, context)) + "\n")

    return path

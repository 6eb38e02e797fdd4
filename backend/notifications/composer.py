"""
Message composition for study-tracker notifications.

Turns a notification kind plus structured data into subject/HTML/text.
Pure transformation: nothing here touches the store or the network.
"""

from datetime import datetime, tzinfo
from html import escape
from typing import Any
from zoneinfo import ZoneInfo

from models.notification import DigestStats, Message, NotificationKind
from models.task import Task

DEFAULT_FRONTEND_URL = "http://localhost:5173"
PRODUCT_NAME = "Chrono"

UNTITLED_TASK = "Untitled Task"
UNNAMED_TASK = "Unnamed Task"
UNNAMED_COURSE = "Unnamed Course"
DEFAULT_GREETING_NAME = "there"
NO_DEADLINE = "No deadline set"


def compose(kind: NotificationKind | str, data: dict[str, Any]) -> Message:
    """
    Build the message for a notification kind.

    Args:
        kind: One of NotificationKind (or its string value)
        data: Kind-specific fields:
            - welcome: user_name
            - weekly_digest: user_name, completed_tasks, upcoming_tasks,
              overdue_tasks, stats (DigestStats), now
            - task_reminder: user_name, task, course_name, timezone
            All kinds accept frontend_url and unsubscribe_url.

    Returns:
        Message ready for the transport

    Raises:
        ValueError: Unknown kind
    """
    kind = NotificationKind(kind)
    builders = {
        NotificationKind.WELCOME: _compose_welcome,
        NotificationKind.WEEKLY_DIGEST: _compose_weekly_digest,
        NotificationKind.TASK_REMINDER: _compose_task_reminder,
    }
    message = builders[kind](data)
    return message.model_copy(update={"unsubscribe_url": data.get("unsubscribe_url")})


def format_deadline(deadline: datetime | None, tz: tzinfo | str | None = None) -> str:
    """Format a deadline like 'Sun, Jan 7, 2024, 06:00 PM' in the reference timezone."""
    if deadline is None:
        return NO_DEADLINE
    if isinstance(tz, str):
        tz = ZoneInfo(tz)
    local = deadline.astimezone(tz) if tz else deadline
    return f"{local:%a, %b} {local.day}, {local:%Y, %I:%M %p}"


def format_date(deadline: datetime, tz: tzinfo | None = None) -> str:
    local = deadline.astimezone(tz) if tz else deadline
    return f"{local:%b} {local.day}, {local:%Y}"


def _frontend_url(data: dict[str, Any]) -> str:
    return (data.get("frontend_url") or DEFAULT_FRONTEND_URL).rstrip("/")


def _year(data: dict[str, Any]) -> int:
    now = data.get("now")
    return now.year if isinstance(now, datetime) else datetime.now().year


def _footer_html(data: dict[str, Any]) -> str:
    unsubscribe_url = data.get("unsubscribe_url")
    unsubscribe = (
        f'<br><a href="{escape(unsubscribe_url)}">Turn off email notifications</a>'
        if unsubscribe_url
        else ""
    )
    return f"""
        <div class="footer">
            <p>© {_year(data)} {PRODUCT_NAME}{unsubscribe}</p>
        </div>
"""


def _footer_text(data: dict[str, Any]) -> str:
    text = f"\n{PRODUCT_NAME} © {_year(data)}\n"
    if data.get("unsubscribe_url"):
        text += f"Turn off email notifications: {data['unsubscribe_url']}\n"
    return text


def _wrap_html(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escape(title)}</title>
    <style>
        body {{
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;
            line-height: 1.6;
            color: #333;
            max-width: 600px;
            margin: 0 auto;
            padding: 20px;
        }}
        .stat {{ margin: 4px 0; }}
        .overdue {{ color: #b91c1c; }}
        .button {{
            display: inline-block;
            padding: 10px 18px;
            background-color: #2563eb;
            color: white;
            border-radius: 6px;
            text-decoration: none;
        }}
        .footer {{
            margin-top: 30px;
            padding-top: 20px;
            border-top: 1px solid #e5e7eb;
            font-size: 13px;
            color: #6b7280;
        }}
    </style>
</head>
<body>
{body}
</body>
</html>
"""


# ---------- WELCOME ----------

def _compose_welcome(data: dict[str, Any]) -> Message:
    name = data.get("user_name") or DEFAULT_GREETING_NAME
    dashboard_url = f"{_frontend_url(data)}/dashboard"

    body = f"""
        <p>Hi {escape(name)},</p>
        <p>Welcome to Study Tracker! Add your courses and tasks and we'll remind you before things are due.</p>
        <p><a class="button" href="{escape(dashboard_url)}">Get Started</a></p>
{_footer_html(data)}"""

    text = f"""Hi {name},

Welcome to Study Tracker!

Get started:
{dashboard_url}
{_footer_text(data)}"""

    return Message(
        subject="🚀 Welcome to Study Tracker - Stay on Top of Your Learning!",
        html=_wrap_html("Welcome", body),
        text=text,
    )


# ---------- WEEKLY DIGEST ----------

def _days_overdue(task: Task, now: datetime) -> int:
    return (now - task.deadline).days


def _prepare_digest_tasks(
    overdue_tasks: list[Task], upcoming_tasks: list[Task], now: datetime, tz: tzinfo | None
) -> tuple[list[str], list[str]]:
    """Format overdue and upcoming task lines once so both formatters share them."""
    overdue_lines = []
    for task in overdue_tasks:
        line = task.goal or UNTITLED_TASK
        days = _days_overdue(task, now)
        if days > 0:
            line += f" - Overdue by {days} day(s)"
        overdue_lines.append(line)

    upcoming_lines = [
        f"{task.goal or UNTITLED_TASK} - Due: {format_date(task.deadline, tz)}"
        for task in upcoming_tasks
    ]
    return overdue_lines, upcoming_lines


def _compose_weekly_digest(data: dict[str, Any]) -> Message:
    name = data.get("user_name") or DEFAULT_GREETING_NAME
    stats: DigestStats = data.get("stats") or DigestStats()
    now: datetime = data["now"]
    tz = data.get("timezone")
    if isinstance(tz, str):
        tz = ZoneInfo(tz)
    dashboard_url = f"{_frontend_url(data)}/dashboard"

    overdue_lines, upcoming_lines = _prepare_digest_tasks(
        data.get("overdue_tasks") or [], data.get("upcoming_tasks") or [], now, tz
    )

    body = f"""
        <h2>Your Weekly Summary</h2>
        <p>Hi {escape(name)},</p>
        <p class="stat"><strong>Tasks Completed:</strong> {stats.completed_count}</p>
        <p class="stat"><strong>Tasks Due:</strong> {stats.total_due_count}</p>
        <p class="stat"><strong>Completion Rate:</strong> {stats.completion_rate}%</p>
"""
    if overdue_lines:
        items = "".join(f"<li>{escape(line)}</li>" for line in overdue_lines)
        body += f"""
        <h3 class="overdue">⚠️ Overdue Tasks ({stats.overdue_count})</h3>
        <ul>{items}</ul>
"""
    if upcoming_lines:
        items = "".join(f"<li>{escape(line)}</li>" for line in upcoming_lines)
        body += f"""
        <h3>📅 Upcoming Tasks</h3>
        <ul>{items}</ul>
"""
    body += f"""
        <p><a class="button" href="{escape(dashboard_url)}">View Dashboard</a></p>
{_footer_html(data)}"""

    text = f"""Hi {name},

Tasks Completed: {stats.completed_count}
Tasks Due: {stats.total_due_count}
Completion Rate: {stats.completion_rate}%
"""
    if overdue_lines:
        text += f"\nOverdue Tasks ({stats.overdue_count}):\n"
        text += "\n".join(f"• {line}" for line in overdue_lines) + "\n"
    if upcoming_lines:
        text += "\nUpcoming Tasks:\n"
        text += "\n".join(f"• {line}" for line in upcoming_lines) + "\n"
    text += f"""
Dashboard:
{dashboard_url}
{_footer_text(data)}"""

    return Message(
        subject=f"📊 Your Weekly Summary - {PRODUCT_NAME}",
        html=_wrap_html("Weekly Summary", body),
        text=text,
    )


# ---------- TASK REMINDER ----------

def _compose_task_reminder(data: dict[str, Any]) -> Message:
    name = data.get("user_name") or DEFAULT_GREETING_NAME
    task: Task | None = data.get("task")
    goal = (task.goal if task else None) or UNNAMED_TASK
    course_name = data.get("course_name") or UNNAMED_COURSE
    deadline = format_deadline(task.deadline if task else None, data.get("timezone"))
    task_url = f"{_frontend_url(data)}/tasks/{task.id if task else ''}"

    body = f"""
        <p>Hi {escape(name)},</p>
        <p>Your task <strong>{escape(goal)}</strong> is due soon.</p>
        <p><strong>Course:</strong> {escape(course_name)}</p>
        <p><strong>Due:</strong> {deadline}</p>
        <p><a class="button" href="{escape(task_url)}">Mark as Complete</a></p>
{_footer_html(data)}"""

    text = f"""Hi {name},

"{goal}" is due in 5 minutes!
Course: {course_name}
Due: {deadline}

{task_url}
{_footer_text(data)}"""

    return Message(
        subject=f'⏰ Reminder: "{goal}" is due in 5 minutes!',
        html=_wrap_html("Task Reminder", body),
        text=text,
    )

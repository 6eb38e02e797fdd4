"""
Notification system for the study tracker.

This module handles:
- Task deadline reminders (5 minutes before a task is due)
- Weekly progress digests (completed / due / upcoming / overdue)
- Per-user opt-in checks before anything is sent
- Sending notification emails via Resend
"""

from .dispatch import DispatchEngine
from .email_sender import send_email, send_welcome_email
from .scheduler import NotificationScheduler

__all__ = [
    'DispatchEngine',
    'NotificationScheduler',
    'send_email',
    'send_welcome_email',
]

"""
Email sending via Resend API for notification system.

This is the only boundary from the dispatcher to the outside world. Failures
come back as string-tagged result dicts, never as exceptions.
"""

import os
from typing import Any

import resend

from config.settings import NotificationSettings
from models.notification import Message, NotificationKind
from notifications.composer import compose


def _configure_resend() -> bool:
    """Load the Resend API key from the environment; False if it isn't set."""
    api_key = os.getenv("RESEND_API_KEY")
    if not api_key:
        return False
    resend.api_key = api_key
    return True


def send_email(
    recipient: str,
    message: Message,
    settings: NotificationSettings | None = None,
) -> dict[str, Any]:
    """
    Send a composed message.

    Args:
        recipient: Recipient email address
        message: Composed message (subject, html, text, optional unsubscribe_url)
        settings: Sender identity; loaded from the environment when omitted

    Returns:
        Dictionary with 'success' (bool), 'email_id' (str if success), 'error' (str if failed)
    """
    if not recipient:
        return {"success": False, "error": "No recipient address"}

    if not _configure_resend():
        return {"success": False, "error": "Resend not configured"}

    settings = settings or NotificationSettings.from_env()

    headers = {
        "X-Priority": "3",
        "X-Mailer": settings.from_name,
    }
    if message.unsubscribe_url:
        headers["List-Unsubscribe"] = f"<{message.unsubscribe_url}>"
        headers["List-Unsubscribe-Post"] = "List-Unsubscribe=One-Click"

    try:
        response = resend.Emails.send({
            "from": f"{settings.from_name} <{settings.from_email}>",
            "to": recipient,
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
            "headers": headers,
        })

        return {
            "success": True,
            "email_id": response.get("id"),
        }

    except Exception as e:
        return {
            "success": False,
            "error": str(e),
        }


def send_welcome_email(
    email: str, name: str | None, settings: NotificationSettings | None = None
) -> dict[str, Any]:
    """Send the welcome email (not preference-gated; sent once at sign-up)."""
    settings = settings or NotificationSettings.from_env()
    message = compose(
        NotificationKind.WELCOME,
        {"user_name": name, "frontend_url": settings.frontend_url},
    )
    return send_email(email, message, settings)

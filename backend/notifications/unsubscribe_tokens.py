"""
Signed tokens for one-click "turn off email notifications" links.

Tokens carry only the user_id, are HMAC-signed and expire after 90 days, so
the settings endpoint that consumes them needs no database lookup to verify.
"""

import os
import hashlib
from typing import Optional
from urllib.parse import quote

from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

from notifications.errors import NotificationConfigError

UNSUBSCRIBE_SALT = "notification-opt-out"
TOKEN_MAX_AGE_DAYS = 90


def _get_serializer() -> URLSafeTimedSerializer:
    """
    Raises:
        NotificationConfigError: If UNSUBSCRIBE_SECRET_KEY is not set
    """
    secret_key = os.getenv("UNSUBSCRIBE_SECRET_KEY")
    if not secret_key:
        raise NotificationConfigError("UNSUBSCRIBE_SECRET_KEY environment variable must be set.")

    return URLSafeTimedSerializer(
        secret_key,
        salt=UNSUBSCRIBE_SALT,
        signer_kwargs={"digest_method": hashlib.sha256},
    )


def generate_unsubscribe_token(user_id: str) -> str:
    """Sign a user_id into a URL-safe token (format: payload.timestamp.signature)."""
    return _get_serializer().dumps(user_id)


def validate_unsubscribe_token(token: str, max_age_days: int = TOKEN_MAX_AGE_DAYS) -> Optional[str]:
    """
    Return the user_id from a valid token, or None.

    Never raises: bad signatures, expired tokens and a missing secret all
    return None.
    """
    try:
        return _get_serializer().loads(token, max_age=max_age_days * 24 * 60 * 60)
    except (BadSignature, SignatureExpired, NotificationConfigError, TypeError):
        return None


def build_unsubscribe_url(user_id: str, frontend_url: str) -> Optional[str]:
    """
    Opt-out link for a user, or None when no signing secret is configured.
    """
    try:
        token = generate_unsubscribe_token(user_id)
    except NotificationConfigError:
        return None
    return f"{frontend_url.rstrip('/')}/api/settings/notifications/unsubscribe?token={quote(token)}"

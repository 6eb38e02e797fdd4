"""Exceptions raised by the notification dispatcher."""


class StoreUnavailableError(RuntimeError):
    """The task store could not be queried; the whole run must abort."""


class NotificationConfigError(ValueError):
    """Required notification configuration (API keys, secrets) is missing."""

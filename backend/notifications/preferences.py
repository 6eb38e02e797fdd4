"""Opt-in check consulted before any gated notification is sent."""

from typing import Any, Protocol


class PreferenceLookup(Protocol):
    def get_user_preference(self, user_id: str) -> dict[str, Any] | None: ...


class PreferenceGate:
    """Answers whether a user currently wants notification emails."""

    def __init__(self, store: PreferenceLookup):
        self.store = store

    def is_enabled(self, user_id: str) -> bool:
        """
        Return True only if the user exists and hasn't opted out.

        Unknown users and failed lookups return False so nothing is sent.
        """
        try:
            preference = self.store.get_user_preference(user_id)
        except Exception as e:
            print(f"  ⚠️  Preference lookup failed for user {user_id}: {e}")
            return False

        if not preference:
            return False
        return preference.get("notifications_enabled", True) is not False

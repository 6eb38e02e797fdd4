"""Time sources pinned to an explicit reference timezone."""

from datetime import datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo

from models.task import ensure_aware


def _as_zone(tz: str | tzinfo) -> tzinfo:
    return ZoneInfo(tz) if isinstance(tz, str) else tz


class SystemClock:
    """Wall clock normalized to a single reference timezone."""

    def __init__(self, timezone: str | tzinfo = "Africa/Lagos"):
        self.timezone = _as_zone(timezone)

    def now(self) -> datetime:
        return datetime.now(self.timezone)


class FixedClock:
    """Clock frozen at a given instant; advance() moves it forward."""

    def __init__(self, instant: datetime, timezone: str | tzinfo | None = None):
        self.timezone = _as_zone(timezone) if timezone else ensure_aware(instant).tzinfo
        self._instant = ensure_aware(instant).astimezone(self.timezone)

    def now(self) -> datetime:
        return self._instant

    def advance(self, delta: timedelta) -> datetime:
        self._instant = self._instant + delta
        return self._instant

from datetime import datetime, timezone
from dateutil import parser as date_parser


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse a store timestamp into an aware datetime (naive values are UTC)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = date_parser.isoparse(value)
        except (ValueError, OverflowError, TypeError):
            try:
                dt = date_parser.parse(value)
            except (ValueError, OverflowError, TypeError):
                return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_store_timestamp(value: datetime) -> str:
    """Format an instant for store filters (always carries an explicit offset)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def print_summary(title: str, stats: dict[str, int]) -> None:
    """Print dispatch run summary."""
    print(f"\n{'=' * 60}")
    print(f"[{datetime.now(timezone.utc).isoformat(timespec='seconds')}] {title} Complete")
    print(f"{'=' * 60}")
    print(f"✓ Sent:    {stats.get('sent', 0)}")
    print(f"⊘ Skipped: {stats.get('skipped', 0)}")
    print(f"✗ Failed:  {stats.get('failed', 0)}")
    if stats.get("aborted"):
        print("✗ Run aborted (store unavailable)")
    print(f"{'=' * 60}\n")

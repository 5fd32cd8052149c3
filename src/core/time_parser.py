"""Wall-clock time helpers — pure business logic.

Settings store times canonically as "HH:MM:SS"; the chat UI only ever shows
and edits "HH:MM". Reminder times are resolved to the next future occurrence
in the device's local time.

No I/O: apart from reading the clock in `now_in`, this module only
transforms data.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo


def now_in(timezone: str) -> datetime:
    """Current wall-clock time in the named IANA timezone."""
    return datetime.now(ZoneInfo(timezone))


def parse_time_of_day(raw: str) -> tuple[int, int]:
    """Extract (hour, minute) from an "HH:MM" or "HH:MM:SS" string.

    Trailing seconds are ignored. Raises ValueError on malformed input.
    """
    if not raw or ":" not in raw:
        raise ValueError(f"No colon in time string: {raw!r}")

    parts = raw.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Expected HH:MM or HH:MM:SS, got {raw!r}")

    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Hour/minute out of range: {hour}:{minute}")
    return hour, minute


def next_occurrence(raw: str, now: datetime) -> datetime:
    """Return the next datetime at or after ``now`` with the given time of day.

    A time equal to ``now`` is still considered upcoming; a time already
    elapsed today rolls over to tomorrow. ``now``'s tzinfo is kept as-is.
    """
    hour, minute = parse_time_of_day(raw)
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate < now:
        candidate += timedelta(days=1)
    return candidate


def to_storage_time(raw: str) -> str:
    """Pad an "HH:MM" value to the canonical "HH:MM:SS" form."""
    hour, minute = parse_time_of_day(raw)
    parts = raw.strip().split(":")
    second = int(parts[2]) if len(parts) == 3 else 0
    if not 0 <= second <= 59:
        raise ValueError(f"Second out of range: {second}")
    return f"{hour:02d}:{minute:02d}:{second:02d}"


def to_display_time(raw: str) -> str:
    """Truncate a stored time to "HH:MM"."""
    hour, minute = parse_time_of_day(raw)
    return f"{hour:02d}:{minute:02d}"


def minutes_since_midnight(raw: str) -> int:
    hour, minute = parse_time_of_day(raw)
    return hour * 60 + minute


def format_minutes(total: int) -> str:
    """Format minutes from midnight as "HH:MM"."""
    return f"{total // 60:02d}:{total % 60:02d}"

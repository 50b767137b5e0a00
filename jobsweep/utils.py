import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from .errors import ConfigError

_UNITS = {
    "s": 1, "sec": 1, "second": 1,
    "m": 60, "min": 60, "minute": 60,
    "h": 3600, "hour": 3600,
    "d": 86400, "day": 86400,
    "w": 604800, "week": 604800,
}

# "30 days", "1 hour 30 minutes", "30d", "1h30m", "2 weeks"
_PART_RE = re.compile(r"(\d+)\s*([a-z]+)")
_DURATION_RE = re.compile(r"^\s*(?:\d+\s*[a-z]+\s*)+$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Fixed-width UTC ISO string, so that text comparison in SQL is chronological."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def parse_duration(s: str) -> timedelta:
    """
    Parse durations like '30 days', '5 minutes', '1 hour 30 minutes', '30d', '1h30m'.
    Raises ConfigError on bad input or a zero duration.
    """
    if not s or not s.strip():
        raise ConfigError("duration string is empty")
    text = s.strip().lower()
    if not _DURATION_RE.match(text):
        raise ConfigError(f"Invalid duration format: {s!r}")

    total = 0
    for amount, unit in _PART_RE.findall(text):
        key = unit if unit in _UNITS else unit.rstrip("s")
        if key not in _UNITS:
            raise ConfigError(f"Unknown duration unit {unit!r} in {s!r}")
        total += int(amount) * _UNITS[key]
    if total <= 0:
        raise ConfigError(f"duration must be > 0: {s!r}")
    return timedelta(seconds=total)

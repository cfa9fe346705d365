"""Duration strings used by TAT configuration (``"2d 4h 30m"``)."""

from __future__ import annotations

import math
import re

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 24 * MINUTES_PER_HOUR

_DURATION_RE = re.compile(
    r"^\s*(?:(?P<days>\d+)\s*d)?[\s,]*(?:(?P<hours>\d+)\s*h)?[\s,]*(?:(?P<minutes>\d+)\s*m)?\s*$",
    re.IGNORECASE,
)


def parse_duration(value: str | None) -> int:
    """Return the number of minutes in ``value``.

    Components are optional but must appear in day, hour, minute order.
    Blank or malformed input yields 0, which callers treat as unconfigured.
    """

    if value is None:
        return 0
    match = _DURATION_RE.match(str(value))
    if not match:
        return 0
    days = int(match.group("days") or 0)
    hours = int(match.group("hours") or 0)
    minutes = int(match.group("minutes") or 0)
    return days * MINUTES_PER_DAY + hours * MINUTES_PER_HOUR + minutes


def format_duration(minutes: int | float) -> str:
    total = max(0, int(minutes))
    if total == 0:
        return "0m"
    days, remainder = divmod(total, MINUTES_PER_DAY)
    hours, mins = divmod(remainder, MINUTES_PER_HOUR)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if mins:
        parts.append(f"{mins}m")
    return " ".join(parts)


def threshold_minutes(sla_minutes: int, pct: int | float) -> int:
    return int(math.floor(sla_minutes * pct / 100))


def risk_threshold(sla: str, pct: int | float) -> str:
    return format_duration(threshold_minutes(parse_duration(sla), pct))

"""Country local-time rendering and elapsed-time arithmetic.

Stored timestamps are naive and lag the upstream wall clock by a fixed
ingestion offset. Rendering adds that offset plus the country's fixed UTC
offset and tags the result with the country code, e.g.
``2025-05-10 14:30:00 (MY)``. Elapsed time is always measured between two
rendered strings so that every comparison in the pipeline goes through the
same conversion.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Mapping

LOCAL_FORMAT = "%Y-%m-%d %H:%M:%S"
INGESTION_OFFSET_HOURS = 8
RENDER_FALLBACK_COUNTRY = "MY"
REPARSE_FALLBACK_COUNTRY = "HK"

_LOCAL_RE = re.compile(r"^(?P<wall>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}) \((?P<country>[A-Z]{2,3})\)$")


@dataclass(frozen=True)
class CountryZone:
    zone: str
    offset_hours: int


DEFAULT_COUNTRY_ZONES: Mapping[str, CountryZone] = MappingProxyType(
    {
        "MY": CountryZone("Asia/Kuala_Lumpur", 8),
        "SG": CountryZone("Asia/Singapore", 8),
        "TH": CountryZone("Asia/Bangkok", 7),
        "ID": CountryZone("Asia/Jakarta", 7),
        "PH": CountryZone("Asia/Manila", 8),
        "HK": CountryZone("Asia/Hong_Kong", 8),
        "AU": CountryZone("Australia/Sydney", 10),
        "NZ": CountryZone("Pacific/Auckland", 12),
        "VN": CountryZone("Asia/Ho_Chi_Minh", 7),
    }
)


@dataclass(frozen=True)
class TimeSettings:
    country_zones: Mapping[str, CountryZone] = field(default_factory=lambda: DEFAULT_COUNTRY_ZONES)
    ingestion_offset_hours: int = INGESTION_OFFSET_HOURS

    def resolve_country(self, country_code: str | None, *, fallback: str) -> str:
        key = (country_code or "").strip().upper()
        if key in self.country_zones:
            return key
        return fallback

    def offset_for(self, country_code: str) -> timedelta:
        return timedelta(hours=self.country_zones[country_code].offset_hours)


DEFAULT_TIME_SETTINGS = TimeSettings()


class LocalTimeError(ValueError):
    """Raised when a local-time string cannot be parsed."""


def to_local(
    timestamp: datetime | None,
    country_code: str | None,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
) -> str | None:
    """Render a stored timestamp as country local time."""

    if timestamp is None:
        return None
    country = settings.resolve_country(country_code, fallback=RENDER_FALLBACK_COUNTRY)
    naive = timestamp.astimezone(timezone.utc).replace(tzinfo=None) if timestamp.tzinfo else timestamp
    shifted = naive + timedelta(hours=settings.ingestion_offset_hours) + settings.offset_for(country)
    return f"{shifted.strftime(LOCAL_FORMAT)} ({country})"


def now_local(
    country_code: str | None,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
    *,
    now: datetime | None = None,
) -> str:
    """Render the current instant as the country's wall clock."""

    country = settings.resolve_country(country_code, fallback=RENDER_FALLBACK_COUNTRY)
    current = now or datetime.now(timezone.utc)
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    wall = current.astimezone(timezone(settings.offset_for(country))).replace(tzinfo=None)
    return f"{wall.strftime(LOCAL_FORMAT)} ({country})"


def _split_local(value: str) -> tuple[datetime, str]:
    match = _LOCAL_RE.match(value.strip())
    if not match:
        raise LocalTimeError(f"Unrecognised local time: {value!r}")
    return datetime.strptime(match.group("wall"), LOCAL_FORMAT), match.group("country")


def parse_local(
    value: str,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
    *,
    offset_country: str | None = None,
) -> datetime:
    """Return an aware datetime for a rendered local-time string.

    The offset comes from ``offset_country`` when given, otherwise from the
    string's own suffix. Unknown suffixes reparse with the HK offset.
    """

    wall, suffix = _split_local(value)
    country = settings.resolve_country(offset_country or suffix, fallback=REPARSE_FALLBACK_COUNTRY)
    return wall.replace(tzinfo=timezone(settings.offset_for(country)))


def elapsed_minutes(
    start_local: str,
    end_local: str,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
) -> int:
    """Whole minutes from ``start_local`` to ``end_local``.

    Both strings are reparsed with the offset of the first string's country.
    """

    _, suffix = _split_local(start_local)
    start = parse_local(start_local, settings, offset_country=suffix)
    end = parse_local(end_local, settings, offset_country=suffix)
    return int((end - start).total_seconds() // 60)


def elapsed_between(
    start: datetime,
    end: datetime | None,
    country_code: str | None,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
    *,
    now: datetime | None = None,
) -> tuple[int, bool]:
    """Minutes from a stored ``start`` to ``end`` (or to now when ``end`` is None).

    Returns ``(minutes, pending)``; ``pending`` is True when measured to now.
    """

    start_local = to_local(start, country_code, settings)
    if end is not None:
        return elapsed_minutes(start_local, to_local(end, country_code, settings), settings), False
    return elapsed_minutes(start_local, now_local(country_code, settings, now=now), settings), True

from __future__ import annotations

import pytest

from sla_sync.sla.durations import format_duration, parse_duration, risk_threshold, threshold_minutes


@pytest.mark.parametrize(
    "value, minutes",
    [
        ("2h", 120),
        ("2d", 2880),
        ("1d 4h 30m", 1710),
        ("1d, 2h", 1560),
        ("2 h 15 m", 135),
        ("45m", 45),
        ("  3H  ", 180),
    ],
)
def test_parse_duration_accepts_known_forms(value: str, minutes: int) -> None:
    assert parse_duration(value) == minutes


@pytest.mark.parametrize("value", [None, "", "abc", "2x", "30m 2h", "-2h"])
def test_parse_duration_invalid_is_zero(value) -> None:
    assert parse_duration(value) == 0


def test_format_duration_omits_zero_units() -> None:
    assert format_duration(0) == "0m"
    assert format_duration(-15) == "0m"
    assert format_duration(1440) == "1d"
    assert format_duration(1710) == "1d 4h 30m"
    assert format_duration(61) == "1h 1m"
    assert format_duration(96) == "1h 36m"


def test_format_then_parse_preserves_minutes() -> None:
    for minutes in (1, 59, 60, 1439, 1441, 10_000):
        assert parse_duration(format_duration(minutes)) == minutes


def test_risk_threshold_floors() -> None:
    assert risk_threshold("2h", 80) == "1h 36m"
    assert risk_threshold("7d", 80) == "5d 14h 24m"
    assert threshold_minutes(125, 80) == 100
    assert threshold_minutes(1, 80) == 0

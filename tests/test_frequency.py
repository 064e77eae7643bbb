# tests/test_frequency.py

from __future__ import annotations

from datetime import timedelta

import pytest

from taskminder.core.errors import InvalidFrequency
from taskminder.tasks.frequency import (
    format_interval,
    frequency_in_days,
    is_valid_frequency,
    parse_frequency,
)


@pytest.mark.parametrize(
    ("expr", "expected"),
    [
        ("1 second", timedelta(seconds=1)),
        ("30 minutes", timedelta(minutes=30)),
        ("2 hours", timedelta(hours=2)),
        ("7 days", timedelta(days=7)),
        ("2 weeks", timedelta(days=14)),
        ("1 month", timedelta(days=30)),
        ("every 3 days", timedelta(days=3)),
        ("EVERY 1 Week", timedelta(days=7)),
        ("12hours", timedelta(hours=12)),
        ("  5   minutes  ", timedelta(minutes=5)),
    ],
)
def test_parse_frequency_accepts_grammar(expr: str, expected: timedelta) -> None:
    assert parse_frequency(expr) == expected


def test_singular_and_plural_are_interchangeable() -> None:
    assert parse_frequency("1 day") == parse_frequency("1 days")
    assert parse_frequency("3 week") == parse_frequency("3 weeks")


@pytest.mark.parametrize(
    "expr",
    ["", "daily", "every day", "7", "days 7", "7 fortnights", "1.5 days", "-2 days", "7 days ago"],
)
def test_parse_frequency_rejects_malformed(expr: str) -> None:
    with pytest.raises(InvalidFrequency) as exc:
        parse_frequency(expr)
    assert "Invalid frequency format" in str(exc.value)
    assert exc.value.expression == expr


def test_only_ascii_digits_are_accepted() -> None:
    with pytest.raises(InvalidFrequency):
        parse_frequency("\u0663 days")
    assert not is_valid_frequency("\uff17 days")


def test_zero_count_is_rejected() -> None:
    with pytest.raises(InvalidFrequency):
        parse_frequency("0 days")
    assert not is_valid_frequency("every 0 hours")


def test_invalid_frequency_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        parse_frequency("sometimes")


def test_frequency_in_days_is_fractional() -> None:
    assert frequency_in_days("12 hours") == pytest.approx(0.5)
    assert frequency_in_days("2 weeks") == pytest.approx(14.0)


def test_format_interval_uses_largest_even_unit() -> None:
    assert format_interval(timedelta(days=30)) == "1 month"
    assert format_interval(timedelta(days=14)) == "2 weeks"
    assert format_interval(timedelta(days=3)) == "3 days"
    assert format_interval(timedelta(minutes=90)) == "90 minutes"
    assert format_interval(timedelta(seconds=1)) == "1 second"

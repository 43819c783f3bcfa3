"""Tests for due-date classification."""

from datetime import datetime, timedelta

import pytest

from strata.core import due_dates

NOW = datetime(2025, 1, 15, 12, 0, 0)


def day_offset(days: int) -> int:
    return int((NOW + timedelta(days=days)).timestamp() * 1000)


@pytest.mark.parametrize(("days", "expected"), [(-7, True), (-1, True), (0, False), (1, False)])
def test_is_overdue(days: int, expected: bool) -> None:
    assert due_dates.is_overdue(day_offset(days), NOW) is expected


@pytest.mark.parametrize(("days", "expected"), [(-1, False), (0, True), (1, False)])
def test_is_due_today(days: int, expected: bool) -> None:
    assert due_dates.is_due_today(day_offset(days), NOW) is expected


@pytest.mark.parametrize(
    ("days", "expected"), [(-1, False), (0, True), (3, True), (6, True), (8, False)]
)
def test_is_due_this_week(days: int, expected: bool) -> None:
    assert due_dates.is_due_this_week(day_offset(days), NOW) is expected


def test_midnight_today_is_not_overdue() -> None:
    midnight = int(datetime(2025, 1, 15).timestamp() * 1000)
    assert not due_dates.is_overdue(midnight, NOW)
    assert due_dates.is_overdue(midnight - 1, NOW)


@pytest.mark.parametrize(
    ("days", "expected"),
    [(-1, "overdue"), (0, "today"), (1, "soon"), (2, "soon"), (3, "normal"), (10, "normal")],
)
def test_urgency(days: int, expected: str) -> None:
    assert due_dates.urgency(day_offset(days), NOW) == expected


def test_urgency_without_due_date() -> None:
    assert due_dates.urgency(None, NOW) is None


def test_format_due_date() -> None:
    assert due_dates.format_due_date(day_offset(0), NOW) == "Today"
    assert due_dates.format_due_date(day_offset(1), NOW) == "Tomorrow"
    assert due_dates.format_due_date(day_offset(-1), NOW) == "Yesterday"
    assert due_dates.format_due_date(day_offset(10), NOW) == "Jan 25"


def test_all_filter_matches_everything() -> None:
    assert due_dates.matches_filter(None, "all", NOW)
    assert due_dates.matches_filter(day_offset(-5), "all", NOW)


@pytest.mark.parametrize("name", ["overdue", "today", "week"])
def test_other_filters_skip_missing_dates(name: str) -> None:
    assert not due_dates.matches_filter(None, name, NOW)  # type: ignore[arg-type]


def test_today_and_week_filters_include_overdue() -> None:
    assert due_dates.matches_filter(day_offset(-1), "today", NOW)
    assert not due_dates.matches_filter(day_offset(1), "today", NOW)
    assert due_dates.matches_filter(day_offset(-1), "week", NOW)
    assert due_dates.matches_filter(day_offset(3), "week", NOW)
    assert not due_dates.matches_filter(day_offset(8), "week", NOW)
    assert not due_dates.matches_filter(day_offset(0), "overdue", NOW)


def test_unknown_filter_raises() -> None:
    with pytest.raises(ValueError, match="Unknown due-date filter"):
        due_dates.matches_filter(1, "month", NOW)  # type: ignore[arg-type]


def test_parse_due_date_is_local_midnight() -> None:
    assert due_dates.parse_due_date("2025-01-15") == int(datetime(2025, 1, 15).timestamp() * 1000)
    with pytest.raises(ValueError):
        due_dates.parse_due_date("next tuesday")

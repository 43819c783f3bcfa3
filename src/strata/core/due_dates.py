"""Due-date classification in local time.

Due dates are stored as epoch milliseconds. Day boundaries are local
midnights; ``now`` can be injected for deterministic callers and tests.
"""

from datetime import datetime, timedelta
from typing import Literal

Urgency = Literal["overdue", "today", "soon", "normal"]
DueFilter = Literal["all", "overdue", "today", "week"]

DUE_FILTERS: tuple[str, ...] = ("all", "overdue", "today", "week")

# Days from the start of today that still count as "soon".
SOON_DAYS = 3


def _day_start_ms(now: datetime | None, offset_days: int = 0) -> int:
    current = now or datetime.now()
    start = current.replace(hour=0, minute=0, second=0, microsecond=0)
    return int((start + timedelta(days=offset_days)).timestamp() * 1000)


def is_overdue(due: int, now: datetime | None = None) -> bool:
    """Due before the start of today."""
    return due < _day_start_ms(now)


def is_due_today(due: int, now: datetime | None = None) -> bool:
    return _day_start_ms(now) <= due < _day_start_ms(now, 1)


def is_due_this_week(due: int, now: datetime | None = None) -> bool:
    """Due today or within the next six days."""
    return _day_start_ms(now) <= due < _day_start_ms(now, 7)


def urgency(due: int | None, now: datetime | None = None) -> Urgency | None:
    """Classify a due date; ``None`` when there is no due date."""
    if due is None:
        return None
    if is_overdue(due, now):
        return "overdue"
    if is_due_today(due, now):
        return "today"
    if due < _day_start_ms(now, SOON_DAYS):
        return "soon"
    return "normal"


def format_due_date(due: int, now: datetime | None = None) -> str:
    """Short label: Today, Tomorrow, Yesterday, or e.g. ``Jan 25``."""
    day = datetime.fromtimestamp(due / 1000).replace(hour=0, minute=0, second=0, microsecond=0)
    day_ms = int(day.timestamp() * 1000)
    labels = {
        _day_start_ms(now): "Today",
        _day_start_ms(now, 1): "Tomorrow",
        _day_start_ms(now, -1): "Yesterday",
    }
    return labels.get(day_ms, f"{day:%b} {day.day}")


def matches_filter(due: int | None, due_filter: DueFilter, now: datetime | None = None) -> bool:
    """Whether a due date passes a view filter.

    ``today`` and ``week`` include overdue items; only ``all`` matches nodes
    without a due date.

    Raises:
        ValueError: If ``due_filter`` is not a known filter.
    """
    if due_filter not in DUE_FILTERS:
        msg = f"Unknown due-date filter: {due_filter!r}"
        raise ValueError(msg)
    if due_filter == "all":
        return True
    if due is None:
        return False
    if due_filter == "overdue":
        return is_overdue(due, now)
    if due_filter == "today":
        return is_due_today(due, now) or is_overdue(due, now)
    return is_due_this_week(due, now) or is_overdue(due, now)


def parse_due_date(value: str) -> int:
    """Parse ``YYYY-MM-DD`` (local midnight) or ``YYYY-MM-DDTHH:MM`` to epoch ms.

    Raises:
        ValueError: If the value is not an ISO date or datetime.
    """
    return int(datetime.fromisoformat(value).timestamp() * 1000)

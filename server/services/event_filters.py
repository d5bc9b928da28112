"""
Pure, in-memory views over the active event list.

Nothing here touches the store: the dashboard fetches the active list once and
derives search, time-range and upcoming/past views from it.
"""

from datetime import date, timedelta
from enum import Enum
from typing import Iterable, List, Optional, Tuple


class TimeFilter(str, Enum):
    ALL = "all"
    TODAY = "today"
    THIS_WEEK = "thisWeek"
    NEXT_WEEK = "nextWeek"
    THIS_MONTH = "thisMonth"


def date_range(mode: TimeFilter, today: date) -> Optional[Tuple[date, date]]:
    """
    Returns the half-open [start, end) window for a filter mode, or None for ALL.

    Weeks end on Sunday: "this week" is today through the upcoming Sunday
    (today itself when today is Sunday), "next week" the Monday after that
    through the following Sunday.
    """
    if mode == TimeFilter.ALL:
        return None

    if mode == TimeFilter.TODAY:
        return today, today + timedelta(days=1)

    days_to_sunday = 6 - today.weekday()
    next_monday = today + timedelta(days=days_to_sunday + 1)

    if mode == TimeFilter.THIS_WEEK:
        return today, next_monday

    if mode == TimeFilter.NEXT_WEEK:
        return next_monday, next_monday + timedelta(days=7)

    if today.month == 12:
        first_of_next = date(today.year + 1, 1, 1)
    else:
        first_of_next = date(today.year, today.month + 1, 1)
    return today, first_of_next


def matches_query(event, query: str) -> bool:
    """Case-insensitive substring match on name, location or description."""
    needle = query.strip().lower()
    if not needle:
        return True
    for value in (event.name, event.location, event.description):
        if value and needle in value.lower():
            return True
    return False


def filter_events(
    events: Iterable,
    query: str = "",
    mode: TimeFilter = TimeFilter.ALL,
    today: Optional[date] = None,
) -> List:
    today = today or date.today()
    window = date_range(mode, today)

    filtered = []
    for event in events:
        if window is not None:
            start, end = window
            if not (start <= event.date < end):
                continue
        if not matches_query(event, query):
            continue
        filtered.append(event)
    return filtered


def split_upcoming_past(
    events: Iterable, today: Optional[date] = None
) -> Tuple[List, List]:
    """Events dated today or later are upcoming, everything else is past."""
    today = today or date.today()
    upcoming, past = [], []
    for event in events:
        (upcoming if event.date >= today else past).append(event)
    return upcoming, past

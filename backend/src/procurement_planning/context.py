"""Cultural calendar lookup: maps the current time to a planning context."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Mapping

from backend.src.config import HIGH_IMPACT_EVENTS
from backend.src.models import CalendarContext, STANDARD_WEEKDAY_TAG, WEEKEND_RUSH_TAG

# datetime.weekday(): Monday == 0
_FRIDAY, _SATURDAY, _SUNDAY = 4, 5, 6


def _events_in_window(
    today: datetime, horizon_days: int, event_calendar: Mapping[str, str]
) -> set[str]:
    """Return names of calendar events falling within [today, today + horizon_days)."""
    found = set()
    for offset in range(max(horizon_days, 1)):
        day = today + timedelta(days=offset)
        name = event_calendar.get(day.strftime("%m-%d"))
        if name:
            found.add(name)
    return found


def derive_calendar_context(
    now: datetime,
    horizon_days: int,
    event_calendar: Mapping[str, str] | None = None,
) -> CalendarContext:
    """Build the calendar context for a planning request made at ``now``.

    Saturday and Sunday count as the weekend. Friday is folded into the
    weekend-rush window, so it carries the 'Weekend Rush' tag without being
    marked as weekend.
    """
    if event_calendar is None:
        event_calendar = HIGH_IMPACT_EVENTS

    weekday = now.weekday()
    is_weekend = weekday in (_SATURDAY, _SUNDAY)
    in_rush_window = weekday in (_FRIDAY, _SATURDAY, _SUNDAY)

    events = {WEEKEND_RUSH_TAG if in_rush_window else STANDARD_WEEKDAY_TAG}
    events |= _events_in_window(now, horizon_days, event_calendar)

    return CalendarContext(
        date_label=f"{now:%A}, {now.day} {now:%B %Y}",
        is_weekend=is_weekend,
        detected_events=frozenset(events),
        horizon_days=horizon_days,
    )

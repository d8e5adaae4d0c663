"""Expand hydrated events into calendar days and group them by date."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from eventcal.config import GAP_THRESHOLD_DAYS, MAX_RANGE_DAYS, NEXT_DAY_CUTOFF, TIMEZONE_NAME
from eventcal.models import HydratedEvent

logger = logging.getLogger(__name__)


def resolve_timezone(name: str | None, default: str = TIMEZONE_NAME) -> ZoneInfo:
    """ZoneInfo for *name*; unknown or empty names fall back to *default*."""
    if name:
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("Unknown timezone %r, using %s", name, default)
    return ZoneInfo(default)


def event_timezone(event: HydratedEvent, default: str = TIMEZONE_NAME) -> ZoneInfo:
    return resolve_timezone(event.venue_timezone, default)


def _cutoff_time(value: str | time) -> time:
    if isinstance(value, time):
        return value
    hours, _, minutes = value.partition(":")
    return time(int(hours), int(minutes or 0))


def is_multi_day(event: HydratedEvent, next_day_cutoff: str | time = NEXT_DAY_CUTOFF) -> bool:
    """True when the event spans more than one calendar day.

    An event ending on the following day before the next-day cutoff (a
    late-night show) counts as a single day.
    """
    if event.end_date is None or event.end_date == event.start_date:
        return False
    if (event.end_date - event.start_date).days == 1 and event.end_time is not None:
        if event.end_time < _cutoff_time(next_day_cutoff):
            return False
    return True


def date_range(start: date, end: date, max_days: int = MAX_RANGE_DAYS) -> list[date]:
    """Every day from *start* through *end* inclusive, capped at *max_days*."""
    days = []
    current = start
    while current <= end and len(days) < max_days:
        days.append(current)
        current += timedelta(days=1)
    return days


def event_days(
    event: HydratedEvent,
    *,
    show_past: bool,
    today: date,
    next_day_cutoff: str | time = NEXT_DAY_CUTOFF,
    max_range_days: int = MAX_RANGE_DAYS,
) -> list[date]:
    """The occurrence dates of *event* in ascending order.

    An explicit occurrence list wins over range expansion.  Unless past
    events are shown, expanded days before *today* are dropped.
    """
    expanded = True
    if event.occurrence_dates:
        days = sorted(set(event.occurrence_dates))
    elif is_multi_day(event, next_day_cutoff):
        days = date_range(event.start_date, event.effective_end_date, max_range_days)
    else:
        days = [event.start_date]
        expanded = False

    if not show_past and expanded:
        days = [d for d in days if d >= today]
    return days


@dataclass
class DisplayEntry:
    """One event as shown on one calendar day."""

    event: HydratedEvent
    display_date: date
    is_multi_day: bool
    is_start_day: bool
    is_end_day: bool
    is_continuation: bool
    original_start_date: date
    original_end_date: date
    day_number: int
    total_days: int

    def context(self) -> dict:
        return {
            "isMultiDay": self.is_multi_day,
            "isStartDay": self.is_start_day,
            "isEndDay": self.is_end_day,
            "isContinuation": self.is_continuation,
            "displayDate": self.display_date.isoformat(),
            "originalStartDate": self.original_start_date.isoformat(),
            "originalEndDate": self.original_end_date.isoformat(),
            "dayNumber": self.day_number,
            "totalDays": self.total_days,
        }


EntryOrder = Callable[[date, list[DisplayEntry]], list[DisplayEntry]]


def detect_time_gaps(dates: Iterable[date], threshold: int = GAP_THRESHOLD_DAYS) -> dict[date, int]:
    """Map each populated date to the gap in days before it, for gaps >= *threshold*."""
    gaps: dict[date, int] = {}
    previous = None
    for current in dates:
        if previous is not None:
            diff = abs((current - previous).days)
            if diff >= threshold:
                gaps[current] = diff
        previous = current
    return gaps


class DateGrouper:
    """Groups hydrated events into per-day buckets.

    *entry_order*, when given, receives each day's entries and returns them
    in the order they should be displayed.
    """

    def __init__(
        self,
        *,
        next_day_cutoff: str = NEXT_DAY_CUTOFF,
        max_range_days: int = MAX_RANGE_DAYS,
        entry_order: EntryOrder | None = None,
    ) -> None:
        self.next_day_cutoff = next_day_cutoff
        self.max_range_days = max_range_days
        self._entry_order = entry_order

    def days_for(self, event: HydratedEvent, *, show_past: bool, today: date) -> list[date]:
        return event_days(
            event,
            show_past=show_past,
            today=today,
            next_day_cutoff=self.next_day_cutoff,
            max_range_days=self.max_range_days,
        )

    def group(
        self,
        events: Iterable[HydratedEvent],
        show_past: bool = False,
        window: tuple[date | None, date | None] | None = None,
        *,
        today: date,
    ) -> dict[date, list[DisplayEntry]]:
        """Ordered map of date -> entries; ascending, or descending for past."""
        lower, upper = window or (None, None)
        buckets: dict[date, list[DisplayEntry]] = {}

        for event in events:
            has_occurrences = bool(event.occurrence_dates)
            multi_day = not has_occurrences and is_multi_day(event, self.next_day_cutoff)
            end_date = event.effective_end_date

            # Day numbers count from the first day of the whole span, not
            # from the first day left after filtering.
            span = self.days_for(event, show_past=True, today=today)
            positions = {d: i + 1 for i, d in enumerate(span)}
            days = self.days_for(event, show_past=show_past, today=today)
            days = [
                d for d in days
                if (lower is None or d >= lower) and (upper is None or d <= upper)
            ]

            for day in days:
                entry = DisplayEntry(
                    event=event,
                    display_date=day,
                    is_multi_day=multi_day,
                    is_start_day=has_occurrences or day == event.start_date,
                    is_end_day=has_occurrences or day == end_date,
                    is_continuation=not has_occurrences and day != event.start_date,
                    original_start_date=event.start_date,
                    original_end_date=end_date,
                    day_number=positions[day],
                    total_days=len(span),
                )
                buckets.setdefault(day, []).append(entry)

        if self._entry_order is not None:
            buckets = {day: self._entry_order(day, entries) for day, entries in buckets.items()}

        return dict(sorted(buckets.items(), reverse=show_past))

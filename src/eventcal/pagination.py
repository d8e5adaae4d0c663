"""Page boundaries over the ordered set of occurrence dates.

A page holds whole calendar days.  Walking the dates in display order, a
page closes as soon as it holds at least ``min_days`` days AND at least
``min_events`` events; the last date always closes the final page.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from eventcal.cache import CalendarCache
from eventcal.config import MIN_DAYS_PER_PAGE, MIN_EVENTS_PER_PAGE, TTL_DATES_SECONDS
from eventcal.event_store import EventStore, FilterSpec
from eventcal.grouping import DateGrouper
from eventcal.hydrator import EventHydrator

logger = logging.getLogger(__name__)


@dataclass
class DateIndex:
    """Unique occurrence dates of a filtered result set, in display order."""

    dates: list[date] = field(default_factory=list)
    total_events: int = 0
    events_per_date: dict[date, int] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "dates": [d.isoformat() for d in self.dates],
            "total_events": self.total_events,
            "events_per_date": (
                {d.isoformat(): n for d, n in self.events_per_date.items()}
                if self.events_per_date is not None else None
            ),
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> DateIndex:
        per_date = d.get("events_per_date")
        return DateIndex(
            dates=[date.fromisoformat(x) for x in d.get("dates", [])],
            total_events=int(d.get("total_events", 0)),
            events_per_date=(
                {date.fromisoformat(k): int(v) for k, v in per_date.items()}
                if per_date is not None else None
            ),
        )


@dataclass(frozen=True)
class PageWindow:
    start_date: date | None
    end_date: date | None
    page: int
    max_pages: int

    @property
    def is_empty(self) -> bool:
        return self.max_pages == 0


def compute_date_index(
    store: EventStore,
    spec: FilterSpec,
    hydrator: EventHydrator,
    grouper: DateGrouper,
    *,
    today: date,
) -> DateIndex:
    """Enumerate the full filtered result set into per-date event counts.

    Expanded days are clipped to the filter's own date window so that the
    index and the grouped page agree on which days exist.
    """
    records, _ = store.find(spec)
    per_date: dict[date, int] = {}
    total = 0
    for record in records:
        event = hydrator.hydrate(record)
        if event is None:
            continue
        total += 1
        for day in grouper.days_for(event, show_past=spec.show_past, today=today):
            if spec.date_start is not None and day < spec.date_start:
                continue
            if spec.date_end is not None and day > spec.date_end:
                continue
            per_date[day] = per_date.get(day, 0) + 1

    ordered = dict(sorted(per_date.items(), reverse=spec.show_past))
    logger.debug("Date index: %d event(s) across %d date(s)", total, len(ordered))
    return DateIndex(dates=list(ordered), total_events=total, events_per_date=ordered)


def compute_boundaries(
    index: DateIndex,
    *,
    min_days: int = MIN_DAYS_PER_PAGE,
    min_events: int = MIN_EVENTS_PER_PAGE,
) -> list[tuple[date, date]]:
    """Every page's (first date, last date), in order."""
    dates = index.dates
    if not dates:
        return []

    if 0 < index.total_events < min_events:
        return [(dates[0], dates[-1])]

    if not index.events_per_date:
        pages = math.ceil(len(dates) / min_days)
        return [
            (dates[i * min_days], dates[min(i * min_days + min_days, len(dates)) - 1])
            for i in range(pages)
        ]

    boundaries = []
    page_start = 0
    day_count = 0
    event_count = 0
    for i, day in enumerate(dates):
        day_count += 1
        event_count += index.events_per_date.get(day, 0)
        is_last = i == len(dates) - 1
        if (day_count >= min_days and event_count >= min_events) or is_last:
            boundaries.append((dates[page_start], day))
            page_start = i + 1
            day_count = 0
            event_count = 0
    return boundaries


def resolve_page(
    index: DateIndex,
    page: int,
    *,
    min_days: int = MIN_DAYS_PER_PAGE,
    min_events: int = MIN_EVENTS_PER_PAGE,
) -> PageWindow:
    """Boundary for *page*, clamped into ``[1, max_pages]``."""
    boundaries = compute_boundaries(index, min_days=min_days, min_events=min_events)
    if not boundaries:
        return PageWindow(start_date=None, end_date=None, page=1, max_pages=0)
    max_pages = len(boundaries)
    page = max(1, min(page, max_pages))
    start, end = boundaries[page - 1]
    return PageWindow(start_date=start, end_date=end, page=page, max_pages=max_pages)


def get_date_index(
    cache: CalendarCache,
    fingerprint: str,
    compute: Callable[[], DateIndex],
    *,
    ttl: float = TTL_DATES_SECONDS,
) -> DateIndex:
    """Cached ``DateIndex`` under the ``dates`` purpose."""
    raw = cache.get_or_compute(fingerprint, "dates", lambda: compute().to_dict(), ttl)
    return DateIndex.from_dict(raw)

"""CalendarEngine — turns a ``CalendarRequest`` into one display-ready page.

Request flow::

    CalendarRequest -> QueryBuilder (GeoQuery) -> FilterSpec
        -> cached DateIndex -> PageWindow for the requested page
        -> store fetch bounded to that window -> EventHydrator
        -> DateGrouper -> time gaps -> DisplayFormatter -> CalendarPage

Only the date index walks the full result set; everything after the page
is resolved is bounded by the page's own date window.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from zoneinfo import ZoneInfo

from eventcal.cache import CalendarCache
from eventcal.config import TTL_COUNTS_SECONDS, TTL_DATES_SECONDS, TTL_FILTERS_SECONDS
from eventcal.display import DisplayFormatter, DisplayVars, format_results_counter
from eventcal.event_store import EventStore, FilterSpec
from eventcal.filter_options import (
    FilterOptions,
    build_filter_options,
    count_terms,
    decode_counts,
    encode_counts,
)
from eventcal.geo import GeoQuery
from eventcal.grouping import DateGrouper, DisplayEntry, EntryOrder, detect_time_gaps
from eventcal.hydrator import EventHydrator
from eventcal.pagination import PageWindow, compute_date_index, get_date_index, resolve_page
from eventcal.query_builder import CalendarRequest, QueryBuilder, SpecTransformer
from eventcal.user_config import CalendarSettings

logger = logging.getLogger(__name__)

# Counts span the whole store, not one filter.
_COUNTS_FINGERPRINT = "all-events"


class CalendarQueryError(Exception):
    """Raised when a page cannot be produced; no partial page is returned."""


@dataclass
class PageEntry:
    event_summary: dict[str, Any]
    display_vars: DisplayVars

    def to_dict(self) -> dict[str, Any]:
        return {"eventSummary": self.event_summary, "displayVars": self.display_vars.to_dict()}


@dataclass
class DayGroup:
    date: date
    entries: list[PageEntry] = field(default_factory=list)
    gap_days: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "gapDays": self.gap_days,
            "entries": [e.to_dict() for e in self.entries],
        }


@dataclass
class CalendarPage:
    grouped_by_date: list[DayGroup]
    total_event_count: int
    current_page: int
    max_pages: int
    past_count: int
    future_count: int
    page_start_date: date | None = None
    page_end_date: date | None = None

    @property
    def event_count(self) -> int:
        """Distinct events shown on this page."""
        return len({e.event_summary["id"] for g in self.grouped_by_date for e in g.entries})

    @property
    def results_counter(self) -> str:
        return format_results_counter(
            self.page_start_date, self.page_end_date, self.event_count, self.total_event_count
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "groupedByDate": [g.to_dict() for g in self.grouped_by_date],
            "totalEventCount": self.total_event_count,
            "currentPage": self.current_page,
            "maxPages": self.max_pages,
            "pastCount": self.past_count,
            "futureCount": self.future_count,
            "pageStartDate": self.page_start_date.isoformat() if self.page_start_date else None,
            "pageEndDate": self.page_end_date.isoformat() if self.page_end_date else None,
        }


class CalendarEngine:
    """Answers calendar requests against one ``EventStore``.

    The cache subscribes to the store's mutation channel, so any write made
    through the store flushes it before the write returns.
    """

    def __init__(
        self,
        store: EventStore,
        *,
        cache: CalendarCache | None = None,
        settings: CalendarSettings | None = None,
        formatter: DisplayFormatter | None = None,
        spec_transformer: SpecTransformer | None = None,
        entry_order: EntryOrder | None = None,
    ) -> None:
        self.store = store
        self.settings = settings or CalendarSettings()
        self.cache = cache if cache is not None else CalendarCache(channel=store.channel)
        self.geo = GeoQuery(store, max_radius=self.settings.max_radius)
        self.builder = QueryBuilder(
            geo=self.geo,
            category_policy=self.settings.category_policy,
            spec_transformer=spec_transformer,
        )
        self.hydrator = EventHydrator(store)
        self.grouper = DateGrouper(
            next_day_cutoff=self.settings.next_day_cutoff,
            entry_order=entry_order,
        )
        self.formatter = formatter or DisplayFormatter(self.settings.timezone)

    def now(self) -> datetime:
        """Wall-clock time in the configured timezone, without tzinfo."""
        return datetime.now(ZoneInfo(self.settings.timezone)).replace(tzinfo=None)

    def get_page(self, request: CalendarRequest, *, now: datetime | None = None) -> CalendarPage:
        now = now or self.now()
        spec = self.builder.build(request, now=now)
        try:
            return self._build_page(request, spec, now)
        except MemoryError as exc:
            logger.error("Out of memory while building calendar page")
            raise CalendarQueryError("Not enough memory to build the calendar page.") from exc

    def _build_page(self, request: CalendarRequest, spec: FilterSpec, now: datetime) -> CalendarPage:
        today = now.date()
        index = get_date_index(
            self.cache,
            f"{spec.fingerprint()}|{today.isoformat()}",
            lambda: compute_date_index(self.store, spec, self.hydrator, self.grouper, today=today),
            ttl=TTL_DATES_SECONDS,
        )
        window = resolve_page(
            index,
            request.page,
            min_days=self.settings.min_days_per_page,
            min_events=self.settings.min_events_per_page,
        )
        groups = self._page_groups(spec, window, today)
        counts = self.cache.get_or_compute(
            _COUNTS_FINGERPRINT,
            "counts",
            lambda: self.store.count_by_period(now),
            TTL_COUNTS_SECONDS,
        )
        return CalendarPage(
            grouped_by_date=groups,
            total_event_count=index.total_events,
            current_page=window.page,
            max_pages=window.max_pages,
            past_count=counts["past"],
            future_count=counts["future"],
            page_start_date=window.start_date,
            page_end_date=window.end_date,
        )

    def _page_groups(self, spec: FilterSpec, window: PageWindow, today: date) -> list[DayGroup]:
        if window.is_empty:
            return []
        lower, upper = sorted((window.start_date, window.end_date))  # type: ignore[type-var]
        records, _ = self.store.find(spec.with_page_window(lower, upper))
        events = [e for e in (self.hydrator.hydrate(r) for r in records) if e is not None]

        grouped = self.grouper.group(events, spec.show_past, (lower, upper), today=today)
        gaps = detect_time_gaps(grouped, self.settings.gap_threshold_days)

        distances: dict[int, float] = {}
        if spec.geo is not None:
            distances = self.geo.distance_map(
                spec.geo.lat, spec.geo.lng, spec.geo.radius, spec.geo.unit
            )

        return [
            DayGroup(
                date=day,
                entries=[self._page_entry(entry, distances) for entry in entries],
                gap_days=gaps.get(day),
            )
            for day, entries in grouped.items()
        ]

    def _page_entry(self, entry: DisplayEntry, distances: dict[int, float]) -> PageEntry:
        venue_id = entry.event.venue_id
        return PageEntry(
            event_summary={**entry.event.summary(), **entry.context()},
            display_vars=self.formatter.build_display_vars(
                entry,
                distance=distances.get(venue_id) if venue_id is not None else None,
            ),
        )

    def filter_options(self, request: CalendarRequest, *, now: datetime | None = None) -> FilterOptions:
        """Category terms with event counts for the listing *request* describes.

        ``category_filter`` holds the active selections; ``page`` is ignored.
        """
        now = now or self.now()
        spec = self.builder.build(request, now=now)
        raw = self.cache.get_or_compute(
            f"{spec.fingerprint()}|{now.date().isoformat()}",
            "filters",
            lambda: encode_counts(count_terms(self.store, spec)),
            TTL_FILTERS_SECONDS,
        )
        return build_filter_options(self.store, spec, decode_counts(raw))

    def select_days(
        self,
        picks: list[tuple[date, list[str]]],
        *,
        now: datetime | None = None,
    ) -> list[DayGroup]:
        """Day groups for hand-picked events, such as an assistant's answer.

        Unknown ids, and days on which an event does not take place, are
        skipped.
        """
        today = (now or self.now()).date()
        groups = []
        for day, event_ids in picks:
            records = [r for r in (self.store.get(i) for i in event_ids) if r is not None]
            events = [e for e in (self.hydrator.hydrate(r) for r in records) if e is not None]
            entries = self.grouper.group(events, True, (day, day), today=today).get(day, [])
            if entries:
                groups.append(DayGroup(date=day, entries=[self._page_entry(e, {}) for e in entries]))
        return groups

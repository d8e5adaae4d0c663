"""Merge an event's authored attributes with its side-table data.

Precedence, lowest to highest:

1. authored attributes stored on the record;
2. side-table start/end datetimes (a sentinel end time keeps the authored one);
3. the assigned venue: name and address always, timezone only when recorded;
4. the assigned organizer: name always, url and type only when non-empty.

Hydration never writes back to the store.
"""

from __future__ import annotations

import logging
from datetime import date, time
from typing import Any

from eventcal.display import is_sentinel_end_time
from eventcal.event_store import EventStore
from eventcal.models import EventRecord, HydratedEvent

logger = logging.getLogger(__name__)


def _parse_date(value: Any) -> date | None:
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def _parse_time(value: Any) -> time | None:
    if not value:
        return None
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(str(value).strip())
    except ValueError:
        return None


def _parse_flag(value: Any, default: bool = True) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in ("0", "false", "no", "off")


def _parse_occurrences(value: Any) -> list[date]:
    if not value:
        return []
    raw = value.split(",") if isinstance(value, str) else list(value)
    parsed = {d for d in (_parse_date(item) for item in raw) if d is not None}
    return sorted(parsed)


def _text(value: Any) -> str:
    return str(value).strip() if value else ""


class EventHydrator:
    """Builds ``HydratedEvent`` projections from raw store records."""

    def __init__(self, store: EventStore) -> None:
        self._store = store

    def hydrate(self, record: EventRecord) -> HydratedEvent | None:
        attrs = record.attributes

        start_date = _parse_date(attrs.get("start_date"))
        start_time = _parse_time(attrs.get("start_time"))
        end_date = _parse_date(attrs.get("end_date"))
        end_time = _parse_time(attrs.get("end_time"))

        if record.start_datetime is not None:
            start_date = record.start_datetime.date()
            start_time = record.start_datetime.time()
        if record.end_datetime is not None:
            end_date = record.end_datetime.date()
            if not is_sentinel_end_time(record.end_datetime.time()):
                end_time = record.end_datetime.time()

        if start_date is None:
            logger.debug("Excluding event %s: no start date", record.id)
            return None
        if is_sentinel_end_time(end_time):
            end_time = None
        if end_date is not None and end_date < start_date:
            end_date = start_date

        event = HydratedEvent(
            id=record.id,
            title=_text(record.title),
            start_date=start_date,
            start_time=start_time,
            end_date=end_date,
            end_time=end_time,
            occurrence_dates=_parse_occurrences(attrs.get("occurrence_dates")),
            venue_id=record.venue_id,
            venue_name=_text(attrs.get("venue")),
            address=_text(attrs.get("address")),
            venue_timezone=_text(attrs.get("venue_timezone")) or None,
            organizer_id=record.organizer_id,
            organizer_name=_text(attrs.get("organizer")),
            organizer_url=_text(attrs.get("organizer_url")) or None,
            organizer_type=_text(attrs.get("organizer_type")) or None,
            performer=_text(attrs.get("performer")),
            description=_text(attrs.get("description")),
            ticket_url=_text(attrs.get("ticket_url")) or None,
            price=_text(attrs.get("price")) or None,
            show_price=_parse_flag(attrs.get("show_price")),
            show_ticket_link=_parse_flag(attrs.get("show_ticket_link")),
            categories={g: list(t) for g, t in record.categories.items()},
        )
        self._apply_venue(event)
        self._apply_organizer(event)
        return event

    def _apply_venue(self, event: HydratedEvent) -> None:
        if event.venue_id is None:
            return
        venue = self._store.get_venue(event.venue_id)
        if venue is None:
            logger.debug("Event %s references missing venue %s", event.id, event.venue_id)
            return
        event.venue_name = venue.name
        event.address = venue.formatted_address()
        if venue.timezone:
            event.venue_timezone = venue.timezone

    def _apply_organizer(self, event: HydratedEvent) -> None:
        if event.organizer_id is None:
            return
        organizer = self._store.get_organizer(event.organizer_id)
        if organizer is None:
            logger.debug("Event %s references missing organizer %s", event.id, event.organizer_id)
            return
        event.organizer_name = organizer.name
        if organizer.url:
            event.organizer_url = organizer.url
        if organizer.type:
            event.organizer_type = organizer.type

"""Tests for merging authored attributes with side-table data."""
from __future__ import annotations

import copy
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from eventcal.display import DisplayFormatter
from eventcal.event_store import EventStore, MemoryProvider, StoreSnapshot
from eventcal.grouping import DateGrouper, event_timezone
from eventcal.hydrator import EventHydrator
from eventcal.models import EventRecord, Organizer, Venue


def _hydrator(venues=(), organizers=()) -> EventHydrator:
    store = EventStore(MemoryProvider(StoreSnapshot(venues=list(venues), organizers=list(organizers))))
    return EventHydrator(store)


# ---------------------------------------------------------------------------
# Venue / organizer precedence
# ---------------------------------------------------------------------------

class TestVenuePrecedence:
    def test_assigned_venue_overrides_stale_copy(self):
        hydrator = _hydrator(venues=[
            Venue(id=1, name="New Name", address="1 Main St", city="Denver", state="CO",
                  timezone="America/Denver"),
        ])
        record = EventRecord(
            id="e1",
            title="Show",
            start_datetime=datetime(2026, 1, 10, 19, 0),
            venue_id=1,
            attributes={
                "venue": "Old Name",
                "address": "Old address",
                "venue_timezone": "America/Chicago",
            },
        )
        event = hydrator.hydrate(record)

        assert event.venue_name == "New Name"
        assert event.address == "1 Main St, Denver, CO"
        assert event.venue_timezone == "America/Denver"
        assert event_timezone(event) == ZoneInfo("America/Denver")

        entry = DateGrouper().group([event], today=date(2026, 1, 5))[date(2026, 1, 10)][0]
        display = DisplayFormatter().build_display_vars(entry)
        assert display.venue_name == "New Name"
        assert display.iso_start_date == "2026-01-10T19:00:00-07:00"

    def test_venue_without_timezone_keeps_authored_zone(self):
        hydrator = _hydrator(venues=[Venue(id=1, name="Hall")])
        record = EventRecord(
            id="e1",
            title="Show",
            start_datetime=datetime(2026, 1, 10, 19, 0),
            venue_id=1,
            attributes={"venue": "Old Hall", "venue_timezone": "America/Chicago"},
        )
        event = hydrator.hydrate(record)
        assert event.venue_name == "Hall"
        assert event.address == ""
        assert event.venue_timezone == "America/Chicago"

    def test_missing_venue_keeps_authored_copy(self):
        record = EventRecord(
            id="e1",
            title="Show",
            start_datetime=datetime(2026, 1, 10, 19, 0),
            venue_id=99,
            attributes={"venue": "Old Hall"},
        )
        assert _hydrator().hydrate(record).venue_name == "Old Hall"

    def test_organizer_name_always_url_only_when_set(self):
        hydrator = _hydrator(organizers=[
            Organizer(id=5, name="Org New", url="", type="person"),
        ])
        record = EventRecord(
            id="e1",
            title="Show",
            start_datetime=datetime(2026, 1, 10, 19, 0),
            organizer_id=5,
            attributes={
                "organizer": "Org Old",
                "organizer_url": "https://old.example",
                "organizer_type": "organization",
            },
        )
        event = hydrator.hydrate(record)
        assert event.organizer_name == "Org New"
        assert event.organizer_url == "https://old.example"
        assert event.organizer_type == "person"

    def test_record_is_not_modified(self):
        hydrator = _hydrator(venues=[Venue(id=1, name="New Name")])
        record = EventRecord(
            id="e1",
            title="Show",
            start_datetime=datetime(2026, 1, 10, 19, 0),
            venue_id=1,
            attributes={"venue": "Old Name"},
        )
        before = copy.deepcopy(record)
        hydrator.hydrate(record)
        assert record == before


# ---------------------------------------------------------------------------
# Dates and times
# ---------------------------------------------------------------------------

class TestDates:
    def test_side_table_overrides_authored(self):
        record = EventRecord(
            id="e1",
            title="Show",
            start_datetime=datetime(2026, 1, 11, 20, 0),
            end_datetime=datetime(2026, 1, 11, 23, 0),
            attributes={
                "start_date": "2026-01-10",
                "start_time": "19:00",
                "end_date": "2026-01-10",
                "end_time": "22:00",
            },
        )
        event = _hydrator().hydrate(record)
        assert event.start_date == date(2026, 1, 11)
        assert event.start_time == time(20, 0)
        assert event.end_date == date(2026, 1, 11)
        assert event.end_time == time(23, 0)

    def test_sentinel_side_table_end_keeps_authored_time(self):
        record = EventRecord(
            id="e1",
            title="Show",
            start_datetime=datetime(2026, 1, 10, 19, 0),
            end_datetime=datetime(2026, 1, 10, 23, 59, 59),
            attributes={"end_time": "22:00"},
        )
        event = _hydrator().hydrate(record)
        assert event.end_date == date(2026, 1, 10)
        assert event.end_time == time(22, 0)

    def test_sentinel_without_authored_time_is_no_end_time(self):
        record = EventRecord(
            id="e1",
            title="Fair",
            start_datetime=datetime(2026, 1, 10, 10, 0),
            end_datetime=datetime(2026, 1, 12, 23, 59, 0),
        )
        event = _hydrator().hydrate(record)
        assert event.end_date == date(2026, 1, 12)
        assert event.end_time is None

    def test_authored_only(self):
        record = EventRecord(
            id="e1",
            title="  Show  ",
            attributes={"start_date": "2026-01-10", "start_time": "19:30:00", "price": "$10"},
        )
        event = _hydrator().hydrate(record)
        assert event.title == "Show"
        assert event.start_date == date(2026, 1, 10)
        assert event.start_time == time(19, 30)
        assert event.end_date is None
        assert event.effective_end_date == date(2026, 1, 10)
        assert event.price == "$10"

    def test_no_start_is_excluded(self):
        record = EventRecord(id="e1", title="Undated", attributes={"start_date": "soon"})
        assert _hydrator().hydrate(record) is None

    def test_end_before_start_is_clamped(self):
        record = EventRecord(
            id="e1",
            title="Show",
            attributes={"start_date": "2026-01-10", "end_date": "2026-01-08"},
        )
        assert _hydrator().hydrate(record).end_date == date(2026, 1, 10)


# ---------------------------------------------------------------------------
# Attributes
# ---------------------------------------------------------------------------

class TestAttributes:
    def test_occurrences_from_list(self):
        record = EventRecord(
            id="e1",
            title="Series",
            start_datetime=datetime(2026, 2, 1, 19, 0),
            attributes={"occurrence_dates": ["2026-02-15", "2026-02-01", "2026-02-08", "2026-02-08"]},
        )
        event = _hydrator().hydrate(record)
        assert event.occurrence_dates == [date(2026, 2, 1), date(2026, 2, 8), date(2026, 2, 15)]

    def test_occurrences_from_comma_string(self):
        record = EventRecord(
            id="e1",
            title="Series",
            start_datetime=datetime(2026, 2, 1, 19, 0),
            attributes={"occurrence_dates": "2026-02-08, 2026-02-01,bogus"},
        )
        event = _hydrator().hydrate(record)
        assert event.occurrence_dates == [date(2026, 2, 1), date(2026, 2, 8)]

    def test_flags(self):
        record = EventRecord(
            id="e1",
            title="Show",
            start_datetime=datetime(2026, 1, 10, 19, 0),
            attributes={"show_price": "0", "show_ticket_link": "yes"},
        )
        event = _hydrator().hydrate(record)
        assert event.show_price is False
        assert event.show_ticket_link is True

    def test_summary_keys(self):
        record = EventRecord(
            id="e1",
            title="Show",
            start_datetime=datetime(2026, 1, 10, 19, 0),
            categories={"genre": [3]},
        )
        summary = _hydrator().hydrate(record).summary()
        assert summary["id"] == "e1"
        assert summary["startDate"] == "2026-01-10"
        assert summary["startTime"] == "19:00:00"
        assert summary["categories"] == {"genre": [3]}

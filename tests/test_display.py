"""Tests for time formatting, labels and the results counter."""
from __future__ import annotations

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from eventcal.display import (
    DisplayFormatter,
    decode_unicode,
    format_clock,
    format_results_counter,
    is_sentinel_end_time,
)
from eventcal.grouping import DateGrouper
from eventcal.models import HydratedEvent


LA = ZoneInfo("America/Los_Angeles")


def _start(day: date, moment: time) -> datetime:
    return datetime.combine(day, moment, tzinfo=LA)


# ---------------------------------------------------------------------------
# Time ranges
# ---------------------------------------------------------------------------

class TestFormatTimeRange:
    def setup_method(self):
        self.fmt = DisplayFormatter()
        self.day = date(2026, 1, 10)

    def test_same_period_shares_suffix(self):
        start = _start(self.day, time(19, 30))
        assert self.fmt.format_time_range(start, self.day, time(22, 0), LA) == "7:30 - 10:00 PM"

    def test_crossing_noon(self):
        start = _start(self.day, time(11, 0))
        assert self.fmt.format_time_range(start, self.day, time(14, 0), LA) == "11:00 AM - 2:00 PM"

    def test_end_on_next_day_shows_start_only(self):
        start = _start(self.day, time(22, 0))
        assert self.fmt.format_time_range(start, date(2026, 1, 11), time(1, 0), LA) == "10:00 PM"

    def test_sentinel_end_shows_start_only(self):
        start = _start(self.day, time(19, 30))
        assert self.fmt.format_time_range(start, self.day, time(23, 59, 59), LA) == "7:30 PM"

    def test_no_end(self):
        start = _start(self.day, time(9, 5))
        assert self.fmt.format_time_range(start, None, None) == "9:05 AM"

    @pytest.mark.parametrize(
        "moment, expected",
        [(time(0, 0), "12:00 AM"), (time(12, 0), "12:00 PM"), (time(13, 7), "1:07 PM")],
    )
    def test_clock(self, moment, expected):
        assert format_clock(moment) == expected


class TestSentinel:
    @pytest.mark.parametrize("value", ["23:59", "23:59:59", time(23, 59, 30)])
    def test_sentinel(self, value):
        assert is_sentinel_end_time(value)

    @pytest.mark.parametrize("value", [None, "22:59", time(23, 58)])
    def test_not_sentinel(self, value):
        assert not is_sentinel_end_time(value)


# ---------------------------------------------------------------------------
# Labels and display vars
# ---------------------------------------------------------------------------

class TestLabels:
    def test_continuation_label(self):
        label = DisplayFormatter().continuation_label(date(2026, 2, 27), date(2026, 3, 1))
        assert label == "Feb 27 – Mar 1"

    def test_multi_day_label(self):
        assert DisplayFormatter().multi_day_label(date(2026, 3, 1)) == "through Mar 1"

    def test_decode_unicode(self):
        assert decode_unicode("Caf\\u00e9 &amp; Bar") == "Café & Bar"
        assert decode_unicode("") == ""


class TestBuildDisplayVars:
    def _entries(self, event: HydratedEvent):
        grouped = DateGrouper().group([event], today=date(2026, 1, 5))
        return [entries[0] for entries in grouped.values()]

    def test_single_day(self):
        event = HydratedEvent(
            id="e1",
            title="Show",
            start_date=date(2026, 1, 10),
            start_time=time(19, 30),
            end_date=date(2026, 1, 10),
            end_time=time(22, 0),
            venue_name="The Hall",
            performer="Tom &amp; Jerry",
            show_price=False,
        )
        (entry,) = self._entries(event)
        display = DisplayFormatter().build_display_vars(entry, distance=3.2)
        assert display.formatted_time_display == "7:30 - 10:00 PM"
        assert display.performer_name == "Tom & Jerry"
        assert display.iso_start_date == "2026-01-10T19:30:00-08:00"
        assert display.multi_day_label == ""
        assert display.show_price is False
        assert display.distance == 3.2
        assert display.to_dict()["formattedTimeDisplay"] == "7:30 - 10:00 PM"

    def test_multi_day(self):
        event = HydratedEvent(
            id="e1",
            title="Fair",
            start_date=date(2026, 1, 10),
            start_time=time(10, 0),
            end_date=date(2026, 1, 12),
            end_time=time(18, 0),
        )
        first, middle, last = self._entries(event)
        fmt = DisplayFormatter()

        start_vars = fmt.build_display_vars(first)
        assert start_vars.formatted_time_display == "10:00 AM"
        assert start_vars.multi_day_label == "through Jan 12"
        assert start_vars.is_multi_day and not start_vars.is_continuation

        for entry in (middle, last):
            cont = fmt.build_display_vars(entry)
            assert cont.formatted_time_display == "Jan 10 – Jan 12"
            assert cont.multi_day_label == ""
            assert cont.is_continuation

    def test_subclass_changes_labels(self):
        class Terse(DisplayFormatter):
            def multi_day_label(self, end_date):
                return f"until {end_date:%m/%d}"

        event = HydratedEvent(id="e1", title="Fair", start_date=date(2026, 1, 10), end_date=date(2026, 1, 12))
        first = self._entries(event)[0]
        assert Terse().build_display_vars(first).multi_day_label == "until 01/12"


# ---------------------------------------------------------------------------
# Results counter
# ---------------------------------------------------------------------------

class TestResultsCounter:
    def test_partial_page(self):
        assert (
            format_results_counter(date(2026, 1, 3), date(2026, 1, 7), 47, 120)
            == "Viewing Jan 3 - Jan 7 (47 of 120 Events)"
        )

    def test_everything_on_one_day(self):
        assert format_results_counter(date(2026, 1, 3), date(2026, 1, 3), 5, 5) == "Viewing Jan 3 (5 Events)"

    def test_single_event(self):
        assert format_results_counter(date(2026, 1, 3), date(2026, 1, 3), 1, 1) == "Viewing Jan 3 (1 Event)"

    def test_descending_bounds_are_sorted(self):
        assert (
            format_results_counter(date(2026, 1, 7), date(2026, 1, 3), 4, 9)
            == "Viewing Jan 3 - Jan 7 (4 of 9 Events)"
        )

    def test_empty(self):
        assert format_results_counter(None, None, 0, 0) == ""
        assert format_results_counter(date(2026, 1, 3), date(2026, 1, 7), 0, 10) == ""

"""Display-ready variables for grouped calendar entries."""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any
from zoneinfo import ZoneInfo

from eventcal.config import SENTINEL_END_TIME, TIMEZONE_NAME
from eventcal.grouping import DisplayEntry, resolve_timezone

_UNICODE_ESCAPE = re.compile(r"\\u([0-9a-fA-F]{4})")


def format_clock(moment: datetime | time, *, with_period: bool = True) -> str:
    """12-hour clock without a leading zero: ``7:30 PM``."""
    hour = moment.hour % 12 or 12
    text = f"{hour}:{moment.minute:02d}"
    if with_period:
        text += " AM" if moment.hour < 12 else " PM"
    return text


def format_month_day(day: date) -> str:
    """``Jan 3``"""
    return f"{day.strftime('%b')} {day.day}"


def is_sentinel_end_time(value: time | str | None) -> bool:
    if value is None:
        return False
    text = value.strftime("%H:%M") if isinstance(value, time) else str(value)
    return text[:5] == SENTINEL_END_TIME


def decode_unicode(text: str) -> str:
    """Undo literal ``\\uXXXX`` escapes and HTML entities left by upstream imports."""
    if not text:
        return ""
    return html.unescape(_UNICODE_ESCAPE.sub(lambda m: chr(int(m.group(1), 16)), text))


def format_results_counter(
    page_start: date | None,
    page_end: date | None,
    event_count: int,
    total_events: int,
) -> str:
    """``Viewing Jan 3 - Jan 7 (47 of 120 Events)``; empty when nothing is shown."""
    if page_start is None or page_end is None or not event_count:
        return ""
    first, last = sorted((page_start, page_end))
    label = "Event" if total_events == 1 else "Events"
    span = format_month_day(first)
    if first != last:
        span += f" - {format_month_day(last)}"
    if event_count < total_events:
        return f"Viewing {span} ({event_count} of {total_events} {label})"
    return f"Viewing {span} ({event_count} {label})"


@dataclass
class DisplayVars:
    formatted_time_display: str = ""
    venue_name: str = ""
    performer_name: str = ""
    iso_start_date: str = ""
    show_performer: bool = False
    show_price: bool = True
    show_ticket_link: bool = True
    multi_day_label: str = ""
    is_continuation: bool = False
    is_multi_day: bool = False
    distance: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "formattedTimeDisplay": self.formatted_time_display,
            "venueName": self.venue_name,
            "performerName": self.performer_name,
            "isoStartDate": self.iso_start_date,
            "showPerformer": self.show_performer,
            "showPrice": self.show_price,
            "showTicketLink": self.show_ticket_link,
            "multiDayLabel": self.multi_day_label,
            "isContinuation": self.is_continuation,
            "isMultiDay": self.is_multi_day,
            "distance": self.distance,
        }


class DisplayFormatter:
    """Turns a ``DisplayEntry`` into ``DisplayVars``.

    Subclass and pass an instance to ``CalendarEngine`` to change how
    times and labels read.
    """

    def __init__(self, default_timezone: str = TIMEZONE_NAME) -> None:
        self.default_timezone = default_timezone

    def format_time_range(
        self,
        start: datetime,
        end_date: date | None,
        end_time: time | None,
        tz: ZoneInfo | None = None,
    ) -> str:
        """Start time alone unless the end is a real time on the same day.

        ``7:30 - 10:00 PM`` when both share a period, otherwise
        ``11:00 AM - 2:00 PM``.
        """
        start_full = format_clock(start)
        if end_date is None or end_time is None or is_sentinel_end_time(end_time):
            return start_full
        end = datetime.combine(end_date, end_time, tzinfo=tz or start.tzinfo)
        if end.date() != start.date():
            return start_full
        if (start.hour < 12) == (end.hour < 12):
            return f"{format_clock(start, with_period=False)} - {format_clock(end)}"
        return f"{start_full} - {format_clock(end)}"

    def continuation_label(self, start_date: date, end_date: date) -> str:
        return f"{format_month_day(start_date)} – {format_month_day(end_date)}"

    def multi_day_label(self, end_date: date) -> str:
        return f"through {format_month_day(end_date)}"

    def build_display_vars(self, entry: DisplayEntry, *, distance: float | None = None) -> DisplayVars:
        event = entry.event
        tz = resolve_timezone(event.venue_timezone, self.default_timezone)
        start = datetime.combine(event.start_date, event.start_time or time(0, 0), tzinfo=tz)

        time_display = ""
        multi_day_label = ""
        if entry.is_multi_day and event.end_date is not None:
            if entry.is_continuation:
                time_display = self.continuation_label(event.start_date, event.end_date)
            else:
                multi_day_label = self.multi_day_label(event.end_date)
                time_display = self.format_time_range(start, event.end_date, event.end_time, tz)
        else:
            time_display = self.format_time_range(start, event.end_date, event.end_time, tz)

        return DisplayVars(
            formatted_time_display=time_display,
            venue_name=decode_unicode(event.venue_name),
            performer_name=decode_unicode(event.performer),
            iso_start_date=start.isoformat(),
            show_price=event.show_price,
            show_ticket_link=event.show_ticket_link,
            multi_day_label=multi_day_label,
            is_continuation=entry.is_continuation,
            is_multi_day=entry.is_multi_day,
            distance=distance,
        )

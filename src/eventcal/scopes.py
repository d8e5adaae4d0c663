"""Named time scopes resolved into concrete date windows.

``None`` means "no scope": the caller keeps its default future window.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

VALID_SCOPES = ("today", "tonight", "this-weekend", "this-week")
DEFAULT_SCOPES = ("", "current", "upcoming")

TONIGHT_START = time(17, 0)
TONIGHT_END = time(3, 59, 59)


@dataclass(frozen=True)
class DateWindow:
    date_start: date
    date_end: date
    time_start: time | None = None
    time_end: time | None = None


def is_valid(scope: str | None) -> bool:
    return (scope or "") in DEFAULT_SCOPES or scope in VALID_SCOPES


def resolve(scope: str | None, now: datetime) -> DateWindow | None:
    """Resolve *scope* relative to *now* (wall-clock time in the site timezone)."""
    key = (scope or "").strip().lower()
    today = now.date()

    if key == "today":
        return DateWindow(today, today)
    if key == "tonight":
        return _tonight(now)
    if key == "this-weekend":
        return _this_weekend(today)
    if key == "this-week":
        return DateWindow(today, today + timedelta(days=6))
    return None


def _tonight(now: datetime) -> DateWindow:
    # Before 5 PM tonight starts at 5 PM; after that it starts now.
    start = TONIGHT_START if now.hour < 17 else now.time().replace(microsecond=0)
    return DateWindow(
        now.date(),
        now.date() + timedelta(days=1),
        time_start=start,
        time_end=TONIGHT_END,
    )


def _this_weekend(today: date) -> DateWindow:
    weekday = today.isoweekday()  # 1 = Monday, 7 = Sunday
    if weekday >= 5:
        return DateWindow(today, today + timedelta(days=7 - weekday))
    friday = today + timedelta(days=5 - weekday)
    return DateWindow(friday, friday + timedelta(days=2))

"""EventStore — unified abstraction for reading and mutating calendar records.

Providers handle storage mechanics (disk or memory).  Callers construct a
provider, pass it to ``EventStore``, and interact only with the store after
that.  Every mutation made through the store is published on its
``MutationChannel``.
"""

from __future__ import annotations

import json
import pathlib
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict

from eventcal.config import DEFAULT_CATEGORY_POLICY
from eventcal.models import CategoryTerm, EventRecord, Organizer, Venue
from eventcal.mutations import Mutation, MutationChannel


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class QueryValidationError(ValueError):
    """Raised when query parameters are invalid."""


class StoreError(Exception):
    """Raised when the event store is missing or corrupt."""


# ---------------------------------------------------------------------------
# Filter specification
# ---------------------------------------------------------------------------

CategoryPolicy = Literal["all_groups", "any_group", "all_terms"]


class CategoryClause(BaseModel):
    model_config = ConfigDict(frozen=True)

    group: str
    term_ids: tuple[int, ...]


class GeoFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float
    radius: float
    unit: Literal["mi", "km"]


class FilterSpec(BaseModel):
    """Store-level filter: a set of predicates plus an ordering direction.

    ``now`` and ``venue_ids`` are derived per request and are left out of the
    fingerprint; ``geo`` carries the parameters that produced ``venue_ids``.
    """

    model_config = ConfigDict(frozen=True)

    search: str | None = None
    date_start: date | None = None
    date_end: date | None = None
    time_start: time | None = None
    time_end: time | None = None
    user_date_range: bool = False
    show_past: bool = False
    categories: tuple[CategoryClause, ...] = ()
    category_policy: CategoryPolicy = DEFAULT_CATEGORY_POLICY
    archive: CategoryClause | None = None
    geo: GeoFilter | None = None
    venue_ids: frozenset[int] | None = None
    page_start: date | None = None
    page_end: date | None = None
    now: datetime | None = None

    @property
    def order(self) -> Literal["asc", "desc"]:
        return "desc" if self.show_past else "asc"

    def fingerprint(self) -> str:
        """Canonical, deterministic serialization used as a cache key."""
        payload = self.model_dump(mode="json", exclude={"now", "venue_ids"})
        payload["categories"] = sorted(
            ({"group": c["group"], "term_ids": sorted(c["term_ids"])}
             for c in payload["categories"]),
            key=lambda c: c["group"],
        )
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))

    def with_page_window(self, start: date | None, end: date | None) -> FilterSpec:
        return self.model_copy(update={"page_start": start, "page_end": end})


# ---------------------------------------------------------------------------
# Provider protocol & implementations
# ---------------------------------------------------------------------------

@dataclass
class StoreSnapshot:
    events: list[EventRecord] = field(default_factory=list)
    venues: list[Venue] = field(default_factory=list)
    organizers: list[Organizer] = field(default_factory=list)
    terms: list[CategoryTerm] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.events],
            "venues": [v.to_dict() for v in self.venues],
            "organizers": [o.to_dict() for o in self.organizers],
            "terms": [t.to_dict() for t in self.terms],
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> StoreSnapshot:
        return StoreSnapshot(
            events=[EventRecord.from_dict(e) for e in d.get("events", [])],
            venues=[Venue.from_dict(v) for v in d.get("venues", [])],
            organizers=[Organizer.from_dict(o) for o in d.get("organizers", [])],
            terms=[CategoryTerm.from_dict(t) for t in d.get("terms", [])],
        )


class EventProvider(Protocol):
    def load(self) -> StoreSnapshot: ...
    def save(self, snapshot: StoreSnapshot) -> None: ...
    def version(self) -> str: ...


class DiskProvider:
    """Reads and writes the store as a single JSON file on disk."""

    def __init__(self, path: pathlib.Path) -> None:
        self._path = path

    def load(self) -> StoreSnapshot:
        if not self._path.is_file():
            raise StoreError(f"No event store at {self._path}.")
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return StoreSnapshot.from_dict(data)
        except (json.JSONDecodeError, KeyError, OSError, ValueError) as err:
            raise StoreError(f"Cannot read store file {self._path}: {err}") from err

    def save(self, snapshot: StoreSnapshot) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w", encoding="utf-8") as f:
            json.dump(snapshot.to_dict(), f, indent=2)

    def version(self) -> str:
        """Modification time and size of the store file.

        Any process that rewrites the file changes the token, so caches
        kept on disk can tell their entries predate the write.
        """
        try:
            stat = self._path.stat()
        except FileNotFoundError:
            return "missing"
        return f"{stat.st_mtime_ns}:{stat.st_size}"


class MemoryProvider:
    """Holds the store in memory.  Used by tests and the agent tool."""

    def __init__(self, snapshot: StoreSnapshot | None = None) -> None:
        self._snapshot = snapshot or StoreSnapshot()
        self._revision = 0

    def load(self) -> StoreSnapshot:
        return self._snapshot

    def save(self, snapshot: StoreSnapshot) -> None:
        self._snapshot = snapshot
        self._revision += 1

    def version(self) -> str:
        return str(self._revision)


# ---------------------------------------------------------------------------
# EventStore
# ---------------------------------------------------------------------------

class EventStore:
    """Database-like abstraction over calendar storage.

    Provider binding is fixed after construction.  Reads go through
    ``find()`` and the ``get_*`` lookups; writes go through the ``save_*`` /
    ``delete_*`` methods, each of which publishes a ``Mutation``.
    """

    def __init__(
        self,
        provider: EventProvider,
        *,
        channel: MutationChannel | None = None,
    ) -> None:
        self._provider = provider
        self._lock = threading.Lock()
        self.channel = channel or MutationChannel()

    # -- reads ---------------------------------------------------------------

    def find(self, spec: FilterSpec) -> tuple[list[EventRecord], int]:
        snapshot = self._provider.load()
        now = spec.now or datetime.now()
        matched = [e for e in snapshot.events if _matches(e, spec, now)]
        matched.sort(
            key=lambda e: (_effective_range(e)[0], e.title.lower(), e.id),  # type: ignore[index]
            reverse=spec.order == "desc",
        )
        return matched, len(matched)

    def get(self, event_id: str) -> EventRecord | None:
        for event in self._provider.load().events:
            if event.id == event_id:
                return event
        return None

    def get_raw_attributes(self, event_id: str) -> dict[str, Any]:
        event = self.get(event_id)
        return dict(event.attributes) if event is not None else {}

    def get_venue(self, venue_id: int) -> Venue | None:
        for venue in self._provider.load().venues:
            if venue.id == venue_id:
                return venue
        return None

    def get_organizer(self, organizer_id: int) -> Organizer | None:
        for organizer in self._provider.load().organizers:
            if organizer.id == organizer_id:
                return organizer
        return None

    def venues(self) -> list[Venue]:
        return list(self._provider.load().venues)

    def terms(self, group: str | None = None) -> list[CategoryTerm]:
        terms = self._provider.load().terms
        return [t for t in terms if group is None or t.group == group]

    def version(self) -> str:
        """Token that changes whenever the underlying storage is rewritten."""
        return self._provider.version()

    def count_by_period(self, now: datetime) -> dict[str, int]:
        """Past and future event counts relative to *now*."""
        counts = {"past": 0, "future": 0}
        for event in self._provider.load().events:
            span = _effective_range(event)
            if span is None:
                continue
            counts["future" if span[1] >= now else "past"] += 1
        return counts

    # -- writes --------------------------------------------------------------

    def save_event(self, event: EventRecord) -> None:
        action = self._upsert("events", event)
        self.channel.publish(Mutation("event", action, event.id))

    def delete_event(self, event_id: str) -> None:
        if self._delete("events", event_id):
            self.channel.publish(Mutation("event", "deleted", event_id))

    def save_venue(self, venue: Venue) -> None:
        action = self._upsert("venues", venue)
        self.channel.publish(Mutation("venue", action, venue.id))

    def delete_venue(self, venue_id: int) -> None:
        if self._delete("venues", venue_id):
            self.channel.publish(Mutation("venue", "deleted", venue_id))

    def save_organizer(self, organizer: Organizer) -> None:
        action = self._upsert("organizers", organizer)
        self.channel.publish(Mutation("organizer", action, organizer.id))

    def delete_organizer(self, organizer_id: int) -> None:
        if self._delete("organizers", organizer_id):
            self.channel.publish(Mutation("organizer", "deleted", organizer_id))

    def save_term(self, term: CategoryTerm) -> None:
        action = self._upsert("terms", term)
        self.channel.publish(Mutation("category", action, term.id))

    def delete_term(self, term_id: int) -> None:
        if self._delete("terms", term_id):
            self.channel.publish(Mutation("category", "deleted", term_id))

    def _upsert(self, table: str, item: Any) -> Literal["created", "updated"]:
        with self._lock:
            snapshot = self._provider.load()
            rows = getattr(snapshot, table)
            for i, row in enumerate(rows):
                if row.id == item.id:
                    rows[i] = item
                    self._provider.save(snapshot)
                    return "updated"
            rows.append(item)
            self._provider.save(snapshot)
            return "created"

    def _delete(self, table: str, item_id: Any) -> bool:
        with self._lock:
            snapshot = self._provider.load()
            rows = getattr(snapshot, table)
            kept = [row for row in rows if row.id != item_id]
            if len(kept) == len(rows):
                return False
            setattr(snapshot, table, kept)
            self._provider.save(snapshot)
            return True


# ---------------------------------------------------------------------------
# Predicate engine (private)
# ---------------------------------------------------------------------------

_END_OF_DAY = time(23, 59, 59)
# Assumed running time of an event stored without any end.
_DEFAULT_DURATION = timedelta(hours=3)


def _authored_datetime(
    attrs: dict[str, Any],
    date_key: str,
    time_key: str,
    default_time: time = time(0, 0),
) -> datetime | None:
    raw_date = attrs.get(date_key)
    if not raw_date:
        return None
    try:
        day = date.fromisoformat(str(raw_date))
    except ValueError:
        return None
    raw_time = attrs.get(time_key)
    try:
        moment = time.fromisoformat(str(raw_time)) if raw_time else default_time
    except ValueError:
        moment = default_time
    return datetime.combine(day, moment)


def _effective_range(event: EventRecord) -> tuple[datetime, datetime] | None:
    """Side-table datetimes win; authored attributes are the fallback.

    A date-only end runs to the end of that day.  Without any end the event
    is taken to last three hours, cut off at the end of its start day.
    """
    start = event.start_datetime or _authored_datetime(
        event.attributes, "start_date", "start_time"
    )
    if start is None:
        return None
    end = event.end_datetime or _authored_datetime(
        event.attributes, "end_date", "end_time", default_time=_END_OF_DAY
    )
    if end is None:
        end = min(start + _DEFAULT_DURATION, datetime.combine(start.date(), _END_OF_DAY))
    return start, max(end, start)


def _window_matches(
    span: tuple[datetime, datetime],
    start_day: date | None,
    end_day: date | None,
    start_time: time | None = None,
    end_time: time | None = None,
) -> bool:
    start, end = span
    if start_day is not None:
        lower = datetime.combine(start_day, start_time or time(0, 0))
        # Events that began earlier but are still running are included.
        if start < lower and end < lower:
            return False
    if end_day is not None:
        upper = datetime.combine(end_day, end_time or time(23, 59, 59))
        if start > upper:
            return False
    return True


def _category_matches(event: EventRecord, spec: FilterSpec) -> bool:
    if spec.archive is not None:
        archive_terms = set(event.categories.get(spec.archive.group, []))
        if not archive_terms.intersection(spec.archive.term_ids):
            return False
    if not spec.categories:
        return True

    def _hit(clause: CategoryClause) -> bool:
        return bool(set(event.categories.get(clause.group, [])).intersection(clause.term_ids))

    if spec.category_policy == "any_group":
        return any(_hit(c) for c in spec.categories)
    if spec.category_policy == "all_terms":
        return all(
            set(c.term_ids).issubset(event.categories.get(c.group, []))
            for c in spec.categories
        )
    return all(_hit(c) for c in spec.categories)


def _matches(event: EventRecord, spec: FilterSpec, now: datetime) -> bool:
    span = _effective_range(event)
    if span is None:
        return False

    if not spec.user_date_range:
        if spec.show_past and not span[1] < now:
            return False
        if not spec.show_past and span[1] < now:
            return False

    if not _window_matches(span, spec.date_start, spec.date_end, spec.time_start, spec.time_end):
        return False
    if not _window_matches(span, spec.page_start, spec.page_end):
        return False

    if spec.venue_ids is not None and event.venue_id not in spec.venue_ids:
        return False

    if not _category_matches(event, spec):
        return False

    if spec.search:
        needle = spec.search.lower()
        haystack = " ".join(
            str(part) for part in (
                event.title,
                event.attributes.get("description", ""),
                event.attributes.get("performer", ""),
            ) if part
        ).lower()
        if needle not in haystack:
            return False

    return True

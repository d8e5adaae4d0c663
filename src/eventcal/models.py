"""Shared domain models for eventcal."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat(sep=" ") if value is not None else None


@dataclass
class Venue:
    id: int
    name: str
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    country: str | None = None
    lat: float | None = None
    lng: float | None = None
    timezone: str | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None

    def formatted_address(self) -> str:
        parts = [self.address, self.city, self.state, self.zip, self.country]
        return ", ".join(p.strip() for p in parts if p and p.strip())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "country": self.country,
            "lat": self.lat,
            "lng": self.lng,
            "timezone": self.timezone,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> Venue:
        return Venue(
            id=int(d["id"]),
            name=d["name"],
            address=d.get("address"),
            city=d.get("city"),
            state=d.get("state"),
            zip=d.get("zip"),
            country=d.get("country"),
            lat=d.get("lat"),
            lng=d.get("lng"),
            timezone=d.get("timezone"),
        )


@dataclass
class Organizer:
    id: int
    name: str
    url: str | None = None
    type: str | None = None  # "organization" | "person"

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "url": self.url, "type": self.type}

    @staticmethod
    def from_dict(d: dict[str, Any]) -> Organizer:
        return Organizer(
            id=int(d["id"]),
            name=d["name"],
            url=d.get("url"),
            type=d.get("type"),
        )


@dataclass
class EventRecord:
    """A raw event as it sits in the store.

    ``start_datetime``/``end_datetime`` are the side-table values, naive
    wall-clock time in the event's timezone.  ``attributes`` is the authored
    copy, which may be stale relative to the referenced venue/organizer.
    """

    id: str
    title: str
    start_datetime: datetime | None = None
    end_datetime: datetime | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    categories: dict[str, list[int]] = field(default_factory=dict)
    venue_id: int | None = None
    organizer_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "start_datetime": _format_datetime(self.start_datetime),
            "end_datetime": _format_datetime(self.end_datetime),
            "attributes": self.attributes,
            "categories": self.categories,
            "venue_id": self.venue_id,
            "organizer_id": self.organizer_id,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> EventRecord:
        return EventRecord(
            id=str(d["id"]),
            title=d["title"],
            start_datetime=_parse_datetime(d.get("start_datetime")),
            end_datetime=_parse_datetime(d.get("end_datetime")),
            attributes=dict(d.get("attributes") or {}),
            categories={
                group: [int(t) for t in terms]
                for group, terms in (d.get("categories") or {}).items()
            },
            venue_id=d.get("venue_id"),
            organizer_id=d.get("organizer_id"),
        )


@dataclass
class HydratedEvent:
    """Read-only projection of an EventRecord merged with its side tables."""

    id: str
    title: str
    start_date: date
    start_time: time | None = None
    end_date: date | None = None
    end_time: time | None = None
    occurrence_dates: list[date] = field(default_factory=list)
    venue_id: int | None = None
    venue_name: str = ""
    address: str = ""
    venue_timezone: str | None = None
    organizer_id: int | None = None
    organizer_name: str = ""
    organizer_url: str | None = None
    organizer_type: str | None = None
    performer: str = ""
    description: str = ""
    ticket_url: str | None = None
    price: str | None = None
    show_price: bool = True
    show_ticket_link: bool = True
    categories: dict[str, list[int]] = field(default_factory=dict)

    @property
    def effective_end_date(self) -> date:
        return self.end_date or self.start_date

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "startDate": self.start_date.isoformat(),
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "venue": self.venue_name,
            "venueId": self.venue_id,
            "address": self.address,
            "organizer": self.organizer_name,
            "organizerUrl": self.organizer_url,
            "ticketUrl": self.ticket_url,
            "price": self.price,
            "categories": self.categories,
        }


@dataclass
class CategoryTerm:
    """A term in a category group; ``parent`` is 0 for top-level terms."""

    id: int
    group: str
    name: str
    slug: str = ""
    parent: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "group": self.group,
            "name": self.name,
            "slug": self.slug,
            "parent": self.parent,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> CategoryTerm:
        return CategoryTerm(
            id=int(d["id"]),
            group=d["group"],
            name=d["name"],
            slug=d.get("slug") or "",
            parent=int(d.get("parent") or 0),
        )

"""Venue proximity search using the haversine great-circle distance."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Protocol

from eventcal.config import (
    DEFAULT_RADIUS,
    DEFAULT_RADIUS_UNIT,
    EARTH_RADIUS_KM,
    EARTH_RADIUS_MI,
    MAX_RADIUS,
)
from eventcal.models import Venue

logger = logging.getLogger(__name__)


class GeoValidationError(ValueError):
    """Raised when latitude, longitude or radius are out of range."""


@dataclass(frozen=True)
class VenueDistance:
    venue_id: int
    distance: float


class VenueSource(Protocol):
    def venues(self) -> list[Venue]: ...


def earth_radius(unit: str) -> float:
    return EARTH_RADIUS_KM if unit == "km" else EARTH_RADIUS_MI


def haversine(lat1: float, lng1: float, lat2: float, lng2: float, *, unit: str = "mi") -> float:
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)
    a = (math.sin(dlat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2))
         * math.sin(dlng / 2) ** 2)
    a = min(1.0, max(0.0, a))
    return earth_radius(unit) * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def validate_params(lat: Any, lng: Any, radius: Any = None) -> bool:
    """True when lat/lng are numeric and in range and radius (if given) is positive."""
    lat_f = _as_float(lat)
    lng_f = _as_float(lng)
    if lat_f is None or lng_f is None:
        return False
    if not -90 <= lat_f <= 90:
        return False
    if not -180 <= lng_f <= 180:
        return False
    if radius is not None:
        radius_f = _as_float(radius)
        if radius_f is None or radius_f <= 0:
            return False
    return True


def clamp_radius(radius: float, max_radius: float = MAX_RADIUS) -> float:
    return max(1.0, min(float(radius), float(max_radius)))


class GeoQuery:
    """Proximity search over the venue coordinate index of a store."""

    def __init__(self, source: VenueSource, *, max_radius: float = MAX_RADIUS) -> None:
        self._source = source
        self._max_radius = max_radius

    def find_within_radius(
        self,
        lat: float,
        lng: float,
        radius: float = DEFAULT_RADIUS,
        unit: str = DEFAULT_RADIUS_UNIT,
    ) -> list[VenueDistance]:
        """Venues within *radius* of (lat, lng), nearest first.

        Out-of-range coordinates are rejected, not clamped; the radius is
        clamped to ``[1, max_radius]``.  Distances are rounded to one
        decimal for display, inclusion uses the exact distance.
        """
        if not validate_params(lat, lng):
            raise GeoValidationError(f"Invalid coordinates: lat={lat!r}, lng={lng!r}")
        radius = clamp_radius(radius, self._max_radius)

        hits: list[tuple[float, int]] = []
        for venue in self._source.venues():
            if not venue.has_coordinates:
                continue
            distance = haversine(lat, lng, venue.lat, venue.lng, unit=unit)  # type: ignore[arg-type]
            if distance <= radius:
                hits.append((distance, venue.id))
        hits.sort()
        logger.debug(
            "Geo query (%s, %s) r=%s%s matched %d venue(s)", lat, lng, radius, unit, len(hits)
        )
        return [VenueDistance(venue_id=vid, distance=round(d, 1)) for d, vid in hits]

    def venue_ids_within_radius(
        self,
        lat: float,
        lng: float,
        radius: float = DEFAULT_RADIUS,
        unit: str = DEFAULT_RADIUS_UNIT,
    ) -> list[int]:
        return [hit.venue_id for hit in self.find_within_radius(lat, lng, radius, unit)]

    def distance_map(
        self,
        lat: float,
        lng: float,
        radius: float = DEFAULT_RADIUS,
        unit: str = DEFAULT_RADIUS_UNIT,
    ) -> dict[int, float]:
        return {hit.venue_id: hit.distance for hit in self.find_within_radius(lat, lng, radius, unit)}

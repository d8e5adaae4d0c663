"""Translate a calendar request into a store-level ``FilterSpec``."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime

from pydantic import BaseModel, Field

from eventcal import scopes
from eventcal.config import DEFAULT_CATEGORY_POLICY, DEFAULT_RADIUS, DEFAULT_RADIUS_UNIT
from eventcal.event_store import (
    CategoryClause,
    CategoryPolicy,
    FilterSpec,
    GeoFilter,
    QueryValidationError,
)
from eventcal.geo import GeoQuery, GeoValidationError, validate_params

logger = logging.getLogger(__name__)

SpecTransformer = Callable[[FilterSpec], FilterSpec]


class CalendarRequest(BaseModel):
    search: str | None = Field(None, description="Free-text search over event title and description (case-insensitive).")
    date_start: str | None = Field(None, description="Start date YYYY-MM-DD (inclusive). Overrides scope.")
    date_end: str | None = Field(None, description="End date YYYY-MM-DD (inclusive). Overrides scope.")
    scope: str | None = Field(None, description="Named window used only without date_start/date_end: today, tonight, this-weekend, this-week, upcoming.")
    category_filter: dict[str, list[int]] = Field(default_factory=dict, description="Map of category group name to selected term ids.")
    archive_category: str | None = Field(None, description="Category group of the pinned archive filter.")
    archive_term_id: int | None = Field(None, description="Term id of the pinned archive filter; always applied.")
    page: int = Field(1, description="1-based page number; clamped to the available pages.")
    past: bool = Field(False, description="Show past events, newest first.")
    geo_lat: float | str | None = Field(None, description="Latitude of the search center. Requires geo_lng.")
    geo_lng: float | str | None = Field(None, description="Longitude of the search center. Requires geo_lat.")
    geo_radius: float | str | None = Field(DEFAULT_RADIUS, description="Search radius (default 25, max 500).")
    geo_radius_unit: str = Field(DEFAULT_RADIUS_UNIT, description="Radius unit: 'mi' or 'km'.")


def _parse_iso_date(raw: str, label: str) -> date:
    try:
        return date.fromisoformat(raw.strip())
    except ValueError:
        raise QueryValidationError(
            f"Invalid {label} format: '{raw}'. Use YYYY-MM-DD."
        )


def _clean_categories(category_filter: dict[str, list[int]]) -> tuple[CategoryClause, ...]:
    clauses = []
    for group, term_ids in category_filter.items():
        group = group.strip()
        ids = sorted({int(t) for t in term_ids if int(t) > 0})
        if group and ids:
            clauses.append(CategoryClause(group=group, term_ids=tuple(ids)))
    return tuple(sorted(clauses, key=lambda c: c.group))


class QueryBuilder:
    """Builds ``FilterSpec`` objects from ``CalendarRequest`` objects.

    *geo* is consulted when the request carries valid geo parameters.
    *spec_transformer*, when given, receives the finished spec and may return
    an adjusted one (e.g. to add a site-wide constraint).
    """

    def __init__(
        self,
        *,
        geo: GeoQuery | None = None,
        category_policy: CategoryPolicy = DEFAULT_CATEGORY_POLICY,
        spec_transformer: SpecTransformer | None = None,
    ) -> None:
        self._geo = geo
        self._category_policy = category_policy
        self._spec_transformer = spec_transformer

    def build(self, request: CalendarRequest, *, now: datetime) -> FilterSpec:
        date_start, date_end = None, None
        time_start, time_end = None, None
        user_date_range = bool(request.date_start or request.date_end)

        if user_date_range:
            if request.date_start:
                date_start = _parse_iso_date(request.date_start, "date_start")
            if request.date_end:
                date_end = _parse_iso_date(request.date_end, "date_end")
            if date_start and date_end and date_end < date_start:
                raise QueryValidationError("date_end cannot be earlier than date_start.")
        else:
            window = scopes.resolve(request.scope, now)
            if window is None and request.scope and not scopes.is_valid(request.scope):
                logger.info("Ignoring unknown scope %r", request.scope)
            if window is not None:
                date_start, date_end = window.date_start, window.date_end
                time_start, time_end = window.time_start, window.time_end

        archive = None
        if request.archive_category and request.archive_term_id and request.archive_term_id > 0:
            archive = CategoryClause(
                group=request.archive_category.strip(),
                term_ids=(int(request.archive_term_id),),
            )

        geo_filter, venue_ids = self._resolve_geo(request)

        spec = FilterSpec(
            search=(request.search or "").strip() or None,
            date_start=date_start,
            date_end=date_end,
            time_start=time_start,
            time_end=time_end,
            user_date_range=user_date_range,
            show_past=request.past,
            categories=_clean_categories(request.category_filter),
            category_policy=self._category_policy,
            archive=archive,
            geo=geo_filter,
            venue_ids=venue_ids,
            now=now,
        )
        if self._spec_transformer is not None:
            spec = self._spec_transformer(spec)
        return spec

    def _resolve_geo(self, request: CalendarRequest) -> tuple[GeoFilter | None, frozenset[int] | None]:
        if request.geo_lat in (None, "") or request.geo_lng in (None, ""):
            return None, None
        radius = request.geo_radius if request.geo_radius not in (None, "") else DEFAULT_RADIUS
        if not validate_params(request.geo_lat, request.geo_lng, radius):
            logger.warning(
                "Dropping invalid geo filter lat=%r lng=%r radius=%r",
                request.geo_lat, request.geo_lng, radius,
            )
            return None, None
        if self._geo is None:
            logger.warning("Geo parameters supplied but no venue index is configured")
            return None, None

        unit = "km" if request.geo_radius_unit == "km" else "mi"
        geo_filter = GeoFilter(
            lat=float(request.geo_lat),
            lng=float(request.geo_lng),
            radius=float(radius),  # type: ignore[arg-type]
            unit=unit,
        )
        try:
            ids = self._geo.venue_ids_within_radius(
                geo_filter.lat, geo_filter.lng, geo_filter.radius, unit
            )
        except GeoValidationError as exc:
            logger.warning("Dropping geo filter: %s", exc)
            return None, None
        # An empty set is kept: nothing is within the radius.
        return geo_filter, frozenset(ids)

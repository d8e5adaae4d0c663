"""Category filter options with per-term event counts.

Counts are cross-filtered: the counts for one group ignore that group's own
selection but honor every other active filter (the other groups, the
archive pin, the date context and the geo radius).  A term's count is what
the listing would hold if that term were selected next.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from eventcal.event_store import EventStore, FilterSpec
from eventcal.models import CategoryTerm

logger = logging.getLogger(__name__)

TermCounts = dict[str, dict[int, int]]


@dataclass
class TermOption:
    term_id: int
    name: str
    slug: str
    event_count: int
    level: int = 0
    children: list[TermOption] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "termId": self.term_id,
            "name": self.name,
            "slug": self.slug,
            "eventCount": self.event_count,
            "level": self.level,
            "children": [c.to_dict() for c in self.children],
        }


@dataclass
class GroupOptions:
    group: str
    hierarchical: bool
    terms: list[TermOption]

    def flatten(self) -> list[TermOption]:
        """Terms depth-first, parents before their children."""
        flat: list[TermOption] = []
        stack = list(reversed(self.terms))
        while stack:
            term = stack.pop()
            flat.append(term)
            stack.extend(reversed(term.children))
        return flat

    def to_dict(self) -> dict[str, Any]:
        return {
            "group": self.group,
            "hierarchical": self.hierarchical,
            "terms": [t.to_dict() for t in self.terms],
        }


@dataclass
class GeoContext:
    active: bool = False
    venue_count: int = 0
    lat: float | None = None
    lng: float | None = None
    radius: float | None = None
    radius_unit: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "active": self.active,
            "venueCount": self.venue_count,
            "lat": self.lat,
            "lng": self.lng,
            "radius": self.radius,
            "radiusUnit": self.radius_unit,
        }


@dataclass
class FilterOptions:
    groups: dict[str, GroupOptions]
    geo: GeoContext
    archive: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "groups": {name: g.to_dict() for name, g in self.groups.items()},
            "archive": self.archive,
            "geo": self.geo.to_dict(),
        }


# ---------------------------------------------------------------------------
# Counting
# ---------------------------------------------------------------------------

def _without_group(spec: FilterSpec, group: str) -> FilterSpec:
    return spec.model_copy(
        update={"categories": tuple(c for c in spec.categories if c.group != group)}
    )


def count_terms(store: EventStore, spec: FilterSpec) -> TermCounts:
    """Distinct matching events per term id, for every category group."""
    groups = {t.group for t in store.terms()}
    candidates, _ = store.find(spec.model_copy(update={"categories": ()}))
    for record in candidates:
        groups.update(g for g, ids in record.categories.items() if ids)

    counts: TermCounts = {}
    for group in sorted(groups):
        records, _ = store.find(_without_group(spec, group))
        per_term: dict[int, int] = {}
        for record in records:
            for term_id in set(record.categories.get(group, [])):
                per_term[term_id] = per_term.get(term_id, 0) + 1
        if per_term:
            counts[group] = per_term
    logger.debug("Term counts for %d group(s)", len(counts))
    return counts


def encode_counts(counts: TermCounts) -> dict[str, list[list[int]]]:
    """JSON-safe form; object keys would turn the term ids into strings."""
    return {group: sorted([t, n] for t, n in terms.items()) for group, terms in counts.items()}


def decode_counts(raw: dict[str, list[list[int]]]) -> TermCounts:
    return {group: {int(t): int(n) for t, n in pairs} for group, pairs in raw.items()}


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------

def _effective_parent(term: CategoryTerm, shown: set[int], known: dict[int, CategoryTerm]) -> int:
    """Nearest ancestor that is itself shown; 0 when there is none."""
    parent = term.parent
    seen: set[int] = set()
    while parent and parent not in shown:
        if parent in seen or parent not in known:
            return 0
        seen.add(parent)
        parent = known[parent].parent
    return parent


def build_term_tree(terms: list[CategoryTerm], counts: dict[int, int]) -> list[TermOption]:
    """Terms that have events, nested under their nearest shown ancestor."""
    known = {t.id: t for t in terms}
    shown = sorted(
        (known.get(term_id) or CategoryTerm(id=term_id, group="", name=str(term_id), slug=str(term_id))
         for term_id, n in counts.items() if n > 0),
        key=lambda t: (t.name.lower(), t.id),
    )
    shown_ids = {t.id for t in shown}
    children: dict[int, list[CategoryTerm]] = {}
    for term in shown:
        children.setdefault(_effective_parent(term, shown_ids, known), []).append(term)

    def _build(parent_id: int, level: int) -> list[TermOption]:
        return [
            TermOption(
                term_id=term.id,
                name=term.name,
                slug=term.slug,
                event_count=counts[term.id],
                level=level,
                children=_build(term.id, level + 1),
            )
            for term in children.get(parent_id, [])
        ]

    return _build(0, 0)


def build_filter_options(store: EventStore, spec: FilterSpec, counts: TermCounts) -> FilterOptions:
    groups: dict[str, GroupOptions] = {}
    for group in sorted(counts):
        terms = store.terms(group)
        tree = build_term_tree(terms, counts[group])
        if tree:
            groups[group] = GroupOptions(
                group=group,
                hierarchical=any(t.parent for t in terms),
                terms=tree,
            )

    archive = None
    if spec.archive is not None:
        term_id = spec.archive.term_ids[0]
        term = next((t for t in store.terms(spec.archive.group) if t.id == term_id), None)
        archive = {
            "group": spec.archive.group,
            "termId": term_id,
            "termName": term.name if term is not None else "",
        }

    geo = GeoContext()
    if spec.geo is not None:
        geo = GeoContext(
            active=True,
            venue_count=len(spec.venue_ids or ()),
            lat=spec.geo.lat,
            lng=spec.geo.lng,
            radius=spec.geo.radius,
            radius_unit=spec.geo.unit,
        )
    return FilterOptions(groups=groups, geo=geo, archive=archive)

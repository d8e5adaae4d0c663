"""Query command – print one calendar page or route free-text through the agent."""

from __future__ import annotations

import argparse
import json
import sys

from eventcal.calendar import CalendarEngine, CalendarPage, CalendarQueryError, DayGroup
from eventcal.display import format_month_day
from eventcal.event_store import QueryValidationError, StoreError
from eventcal.query_builder import CalendarRequest

_DIM = "\033[2m" if sys.stdout.isatty() else ""
_BOLD = "\033[1m" if sys.stdout.isatty() else ""
_RESET = "\033[0m" if sys.stdout.isatty() else ""
def _parse_term_ids(raw: str, flag: str) -> tuple[str, list[int]]:
    group, sep, ids = raw.partition("=")
    if not sep or not group.strip():
        raise QueryValidationError(f"Invalid {flag} '{raw}'. Use GROUP=ID[,ID...].")
    try:
        term_ids = [int(part) for part in ids.split(",") if part.strip()]
    except ValueError:
        raise QueryValidationError(f"Invalid {flag} '{raw}'. Term ids must be integers.")
    return group.strip(), term_ids


def build_request(args: argparse.Namespace) -> CalendarRequest:
    category_filter: dict[str, list[int]] = {}
    for raw in args.category or []:
        group, term_ids = _parse_term_ids(raw, "--category")
        category_filter.setdefault(group, []).extend(term_ids)

    archive_category, archive_term_id = None, None
    if args.archive:
        archive_category, term_ids = _parse_term_ids(args.archive, "--archive")
        if len(term_ids) != 1:
            raise QueryValidationError("--archive takes exactly one term id.")
        archive_term_id = term_ids[0]

    return CalendarRequest(
        search=args.search,
        date_start=args.date_start,
        date_end=args.date_end,
        scope=args.scope,
        category_filter=category_filter,
        archive_category=archive_category,
        archive_term_id=archive_term_id,
        page=args.page,
        past=args.past,
        geo_lat=args.lat,
        geo_lng=args.lng,
        geo_radius=args.radius,
        geo_radius_unit=args.unit,
    )


def _print_groups(groups: list[DayGroup]) -> None:
    for group in groups:
        if group.gap_days:
            print(f"{_DIM}  ... {group.gap_days} days later ...{_RESET}")
        print()
        print(f"{_BOLD}{group.date.strftime('%a')} {format_month_day(group.date)}{_RESET}")
        width = max(len(e.display_vars.formatted_time_display) for e in group.entries)
        for entry in group.entries:
            dv = entry.display_vars
            parts = [dv.formatted_time_display.ljust(width), entry.event_summary["title"]]
            if dv.venue_name:
                parts.append(dv.venue_name)
            if dv.multi_day_label:
                parts.append(dv.multi_day_label)
            if dv.distance is not None:
                parts.append(f"{dv.distance} away")
            line = "  " + " | ".join(parts)
            if dv.is_continuation:
                line = f"{_DIM}{line}{_RESET}"
            print(line)


def _print_page(page: CalendarPage) -> None:
    if not page.grouped_by_date:
        print("No events found.")
        return

    print(page.results_counter)
    _print_groups(page.grouped_by_date)
    print()
    print(
        f"Page {page.current_page} of {page.max_pages} "
        f"({page.past_count} past, {page.future_count} upcoming)"
    )


def _query(args: argparse.Namespace, engine: CalendarEngine) -> int:
    try:
        request = build_request(args)
        page = engine.get_page(request)
    except StoreError as e:
        print(str(e), file=sys.stderr)
        return 1
    except QueryValidationError as e:
        print(str(e), file=sys.stderr)
        return 2
    except CalendarQueryError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json_output:
        print(json.dumps(page.to_dict(), indent=2))
        return 0
    _print_page(page)
    return 0


def _agent_query(args: argparse.Namespace, engine: CalendarEngine, api_key: str | None) -> int:
    from eventcal.agent import AgentError, Answered, CalendarAgent, PagesRead, Progress

    agent = CalendarAgent(engine, api_key=api_key)
    try:
        for item in agent.ask(args.query_text):
            if isinstance(item, Progress):
                print(f"{_DIM}{item.text}{_RESET}", file=sys.stderr)
            elif isinstance(item, PagesRead):
                pages = ", ".join(str(p) for p in item.pages)
                print(
                    f"{_DIM}Read page {pages} of {item.max_pages} "
                    f"({item.total_events} matching events){_RESET}",
                    file=sys.stderr,
                )
            elif isinstance(item, Answered):
                answer = item.answer
                groups = engine.select_days([(d.day, d.event_ids) for d in answer.days])
                page = engine.get_page(answer.request) if answer.request is not None else None
                if args.json_output:
                    print(json.dumps({
                        "text": answer.text,
                        "days": [g.to_dict() for g in groups],
                        "page": page.to_dict() if page is not None else None,
                    }, indent=2))
                    continue
                if answer.text:
                    print(answer.text)
                _print_groups(groups)
                if page is not None:
                    print()
                    _print_page(page)
    except AgentError as exc:
        print(f"Agent error: {exc}", file=sys.stderr)
        return 1
    except (StoreError, QueryValidationError, CalendarQueryError) as exc:
        print(str(exc), file=sys.stderr)
        return 1

    return 0


def run(args: argparse.Namespace, engine: CalendarEngine, *, api_key: str | None = None) -> int:
    if getattr(args, "query_text", None):
        return _agent_query(args, engine, api_key)
    return _query(args, engine)

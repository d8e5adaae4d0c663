"""Filters command – list category terms with event counts for a listing."""

from __future__ import annotations

import argparse
import json
import sys

from eventcal.calendar import CalendarEngine, CalendarQueryError
from eventcal.command_query import build_request
from eventcal.event_store import QueryValidationError, StoreError
from eventcal.filter_options import FilterOptions


def _print_options(options: FilterOptions) -> None:
    if options.archive is not None:
        name = options.archive["termName"] or f"#{options.archive['termId']}"
        print(f"Within {options.archive['group']}: {name}")
    if options.geo.active:
        print(
            f"Within {options.geo.radius:g} {options.geo.radius_unit}: "
            f"{options.geo.venue_count} venue(s)"
        )
    if not options.groups:
        print("No categories found.")
        return

    for name, group in options.groups.items():
        print()
        print(name)
        for term in group.flatten():
            indent = "  " * (term.level + 1)
            print(f"{indent}{term.name} [{term.term_id}] ({term.event_count})")


def run(args: argparse.Namespace, engine: CalendarEngine) -> int:
    try:
        options = engine.filter_options(build_request(args))
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
        print(json.dumps(options.to_dict(), indent=2))
        return 0
    _print_options(options)
    return 0

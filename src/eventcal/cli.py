#!/usr/bin/env python3
"""Browse a local event store as a paginated, day-grouped calendar."""

from __future__ import annotations

import argparse
import hashlib
import logging
import pathlib

from eventcal import command_filters, command_query, config
from eventcal.cache import CalendarCache, DiskBackend
from eventcal.calendar import CalendarEngine
from eventcal.config import CACHE_PREFIX, DEFAULT_CONFIG_PATH, DEFAULT_RADIUS
from eventcal.event_store import DiskProvider, EventStore
from eventcal.user_config import (
    CalendarSettings,
    ensure_config,
    get_api_key,
    get_settings,
    load_config,
)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _add_query_args(parser: argparse.ArgumentParser) -> None:
    """Register calendar query flags on *parser*."""
    parser.add_argument(
        "--search",
        default=None,
        help="Only show events whose title, description or performer contains this text (case-insensitive).",
    )
    parser.add_argument(
        "--from",
        dest="date_start",
        default=None,
        metavar="YYYY-MM-DD",
        help="Start date (inclusive). Overrides --scope.",
    )
    parser.add_argument(
        "--to",
        dest="date_end",
        default=None,
        metavar="YYYY-MM-DD",
        help="End date (inclusive). Overrides --scope.",
    )
    parser.add_argument(
        "--scope",
        default=None,
        help="Named window: today, tonight, this-weekend, this-week, upcoming (default). Unknown names are ignored.",
    )
    parser.add_argument(
        "--category",
        action="append",
        default=None,
        metavar="GROUP=ID[,ID...]",
        help="Category filter; repeat for several groups. Ids within a group are alternatives.",
    )
    parser.add_argument(
        "--archive",
        default=None,
        metavar="GROUP=ID",
        help="Pinned category filter that always applies.",
    )
    parser.add_argument(
        "--page",
        type=int,
        default=1,
        help="Page number, 1-based (default: 1). Out-of-range pages are clamped.",
    )
    parser.add_argument(
        "--past",
        action="store_true",
        help="Show past events, newest first.",
    )
    parser.add_argument(
        "--lat",
        default=None,
        help="Latitude of the search center. Requires --lng.",
    )
    parser.add_argument(
        "--lng",
        default=None,
        help="Longitude of the search center. Requires --lat.",
    )
    parser.add_argument(
        "--radius",
        default=DEFAULT_RADIUS,
        help=f"Search radius (default: {DEFAULT_RADIUS}, max 500).",
    )
    parser.add_argument(
        "--unit",
        choices=["mi", "km"],
        default="mi",
        help="Radius unit (default: mi).",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Browse events from a local store as a calendar.\n"
            "\n"
            "Subcommands:\n"
            "  eventcal ask TEXT   Ask a question in plain language.\n"
            "  eventcal filters    List category terms with event counts.\n"
            "  eventcal [options]  Show one calendar page (default).\n"
            "\n"
            "Store: <cache-dir>/store.json"
        ),
        epilog=(
            "Examples:\n"
            "  eventcal\n"
            "    Upcoming events, first page.\n"
            "\n"
            "  eventcal --scope this-weekend --category genre=3,7\n"
            "    This weekend's events in genre 3 or 7.\n"
            "\n"
            "  eventcal --lat 30.27 --lng -97.74 --radius 10 --page 2\n"
            "    Second page of events within 10 miles.\n"
            "\n"
            "  eventcal --scope this-weekend filters\n"
            "    Categories that have events this weekend.\n"
            "\n"
            "  eventcal ask 'any jazz tonight?'\n"
            "    Let the assistant query the calendar."
        ),
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument(
        "--cache-dir",
        default=None,
        help="Override the cache directory (default: ~/.cache/eventcal).",
    )
    parser.add_argument(
        "--store",
        default=None,
        help="Path to the event store JSON file (default: <cache-dir>/store.json).",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to the config file (default: {DEFAULT_CONFIG_PATH}).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Print the page as JSON.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.set_defaults(query_text=None)
    subparsers = parser.add_subparsers(dest="command")
    ask_parser = subparsers.add_parser(
        "ask",
        help="Ask a question about the calendar in plain language.",
    )
    ask_parser.add_argument("query_text", help="The question, e.g. 'what's on this weekend?'")
    subparsers.add_parser(
        "filters",
        help="List category terms with event counts; query options narrow the listing.",
    )
    _add_query_args(parser)
    return parser.parse_args(argv)


def _build_engine(args: argparse.Namespace, settings: CalendarSettings) -> CalendarEngine:
    store_path = pathlib.Path(args.store).expanduser() if args.store else config.get_store_file()
    store = EventStore(DiskProvider(store_path))
    # Keys are namespaced per store file.
    store_tag = hashlib.md5(str(store_path.resolve()).encode("utf-8")).hexdigest()[:8]
    cache = CalendarCache(
        DiskBackend(config.get_cache_dir() / "calendar"),
        channel=store.channel,
        prefix=f"{CACHE_PREFIX}{store_tag}_",
        version=store.version,
    )
    return CalendarEngine(store, cache=cache, settings=settings)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=LOG_FORMAT,
    )
    config.configure(cache_dir=args.cache_dir)

    config_path = pathlib.Path(args.config).expanduser() if args.config else DEFAULT_CONFIG_PATH
    ensure_config(config_path)
    user_config = load_config(config_path)
    settings = get_settings(user_config)

    engine = _build_engine(args, settings)
    if args.command == "filters":
        return command_filters.run(args, engine)
    return command_query.run(args, engine, api_key=get_api_key(user_config))


if __name__ == "__main__":
    raise SystemExit(main())

"""Shared configuration values for eventcal modules."""

from __future__ import annotations

import pathlib

_DEFAULT_CACHE_DIR = pathlib.Path.home() / ".cache" / "eventcal"
_cache_dir_override: pathlib.Path | None = None

DEFAULT_CONFIG_PATH = pathlib.Path.home() / ".eventcal" / "config.toml"

TIMEZONE_NAME = "America/Los_Angeles"

# Pagination thresholds: a page closes once it holds at least this many
# days AND this many events.
MIN_DAYS_PER_PAGE = 5
MIN_EVENTS_PER_PAGE = 20

GAP_THRESHOLD_DAYS = 2
MAX_RANGE_DAYS = 90
NEXT_DAY_CUTOFF = "05:00"

# Stored end time meaning "no end time was supplied".
SENTINEL_END_TIME = "23:59"

DEFAULT_RADIUS = 25
MAX_RADIUS = 500
DEFAULT_RADIUS_UNIT = "mi"
EARTH_RADIUS_MI = 3959
EARTH_RADIUS_KM = 6371

CACHE_PREFIX = "eventcal_"
CACHE_MAX_ENTRIES = 512
CACHE_VERSION_TTL_SECONDS = 30 * 24 * 60 * 60
TTL_DATES_SECONDS = 5 * 60
TTL_COUNTS_SECONDS = 10 * 60
TTL_FILTERS_SECONDS = 5 * 60

STORE_FILENAME = "store.json"

DEFAULT_CATEGORY_POLICY = "all_groups"

ANTHROPIC_API_KEY_ENV = "EVENTCAL_ANTHROPIC_API_KEY"
DEFAULT_AGENT_MODEL = "claude-sonnet-4-5"
DEFAULT_AGENT_MAX_TURNS = 8
AGENT_MAX_TOKENS = 2048
AGENT_LLM_TIMEOUT_SECONDS = 60
# Pages one calendar lookup may read before handing control back.
AGENT_LOOKUP_PAGES = 2
AGENT_MAX_LOOKUP_PAGES = 5


def configure(*, cache_dir: str | None = None) -> None:
    global _cache_dir_override
    if cache_dir is not None:
        _cache_dir_override = pathlib.Path(cache_dir).expanduser()


def get_cache_dir() -> pathlib.Path:
    if _cache_dir_override is not None:
        return _cache_dir_override
    return _DEFAULT_CACHE_DIR


def get_store_file() -> pathlib.Path:
    return get_cache_dir() / STORE_FILENAME


def _reset() -> None:
    """Reset runtime overrides. For testing only."""
    global _cache_dir_override
    _cache_dir_override = None

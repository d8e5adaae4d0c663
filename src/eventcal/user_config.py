"""User configuration — TOML loading, validation, and template auto-creation."""

from __future__ import annotations

import pathlib
import sys
import tomllib
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from eventcal.config import (
    DEFAULT_CATEGORY_POLICY,
    GAP_THRESHOLD_DAYS,
    MAX_RADIUS,
    MIN_DAYS_PER_PAGE,
    MIN_EVENTS_PER_PAGE,
    NEXT_DAY_CUTOFF,
    TIMEZONE_NAME,
)


CONFIG_TEMPLATE = """\
# Anthropic API key (fallback if EVENTCAL_ANTHROPIC_API_KEY env var is not set)
# api_key = "sk-ant-..."

# Calendar tuning. Every key is optional.
# [calendar]
# timezone = "America/Los_Angeles"   # used when a venue has no timezone
# min_days_per_page = 5
# min_events_per_page = 20
# gap_threshold_days = 2             # show a separator for gaps this long
# next_day_cutoff = "05:00"          # shows ending before this next morning are single-day
# category_policy = "all_groups"     # all_groups | any_group | all_terms
# max_radius = 500
"""


class CalendarSettings(BaseModel):
    """Tunable calendar behaviour, read from the ``[calendar]`` table."""

    model_config = ConfigDict(extra="forbid")

    timezone: str = Field(TIMEZONE_NAME, description="Fallback IANA timezone.")
    min_days_per_page: int = Field(MIN_DAYS_PER_PAGE, ge=1)
    min_events_per_page: int = Field(MIN_EVENTS_PER_PAGE, ge=1)
    gap_threshold_days: int = Field(GAP_THRESHOLD_DAYS, ge=1)
    next_day_cutoff: str = Field(NEXT_DAY_CUTOFF, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    category_policy: Literal["all_groups", "any_group", "all_terms"] = DEFAULT_CATEGORY_POLICY
    max_radius: float = Field(MAX_RADIUS, gt=0)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone '{value}'") from exc
        return value


def ensure_config(path: pathlib.Path) -> None:
    """Create config file with template if it does not exist."""
    if path.is_file():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(CONFIG_TEMPLATE, encoding="utf-8")


def load_config(path: pathlib.Path) -> dict:
    """Read and parse a TOML config file."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        print(f"Error: malformed config file {path}: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc


def validate_config(config: dict) -> None:
    """Validate the [calendar] table in the parsed config."""
    get_settings(config)


def get_settings(config: dict) -> CalendarSettings:
    """Return the calendar settings from config, defaults filled in."""
    table = config.get("calendar")
    if table is None:
        return CalendarSettings()
    if not isinstance(table, dict):
        print("Error: [calendar] must be a table.", file=sys.stderr)
        raise SystemExit(2)
    try:
        return CalendarSettings(**table)
    except ValidationError as exc:
        for err in exc.errors():
            field = ".".join(str(part) for part in err["loc"]) or "calendar"
            print(f"Error: [calendar] {field}: {err['msg']}", file=sys.stderr)
        raise SystemExit(2) from exc


def get_api_key(config: dict) -> str | None:
    """Return the api_key value from config, if present."""
    return config.get("api_key")

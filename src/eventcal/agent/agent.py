"""Calendar assistant: answers questions by browsing the calendar through tools.

The model gets three tools.  ``query_calendar`` reads consecutive pages of a
listing and returns them as a compact day-by-day digest, ``list_categories``
returns the category terms (with event counts) that a listing can be
narrowed by, and ``answer`` ends the conversation with a structured answer:
a text reply, the events to show grouped by day, and optionally a request
the user can run to browse the full listing.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

import anthropic
from pydantic import BaseModel, Field, ValidationError

from eventcal.calendar import CalendarEngine, CalendarPage, CalendarQueryError
from eventcal.config import (
    AGENT_LLM_TIMEOUT_SECONDS,
    AGENT_LOOKUP_PAGES,
    AGENT_MAX_LOOKUP_PAGES,
    AGENT_MAX_TOKENS,
    ANTHROPIC_API_KEY_ENV,
    DEFAULT_AGENT_MAX_TURNS,
    DEFAULT_AGENT_MODEL,
)
from eventcal.event_store import QueryValidationError, StoreError
from eventcal.query_builder import CalendarRequest

logger = logging.getLogger(__name__)


class AgentError(Exception):
    """Raised when the assistant cannot produce an answer."""


# ---------------------------------------------------------------------------
# Tool inputs
# ---------------------------------------------------------------------------

class CalendarLookup(CalendarRequest):
    max_pages: int = Field(
        AGENT_LOOKUP_PAGES,
        ge=1,
        le=AGENT_MAX_LOOKUP_PAGES,
        description="How many consecutive pages to read, starting at 'page'.",
    )


class AnswerDay(BaseModel):
    day: date = Field(description="Calendar day, YYYY-MM-DD.")
    event_ids: list[str] = Field(description="Ids of events taking place on this day, taken from calendar results.")


class CalendarAnswer(BaseModel):
    text: str = Field(description="The reply to the user, in plain language.")
    days: list[AnswerDay] = Field(default_factory=list, description="Events to show the user, grouped by day.")
    request: CalendarRequest | None = Field(None, description="A calendar listing the user can page through for more.")


# ---------------------------------------------------------------------------
# Progress reported by CalendarAgent.ask
# ---------------------------------------------------------------------------

@dataclass
class Progress:
    """Narration from the model between tool calls."""

    text: str


@dataclass
class PagesRead:
    """A calendar lookup finished."""

    pages: list[int]
    max_pages: int
    total_events: int


@dataclass
class Answered:
    answer: CalendarAnswer


AgentOutput = Progress | PagesRead | Answered


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

LOOKUP_TOOL_NAME = "query_calendar"
CATEGORIES_TOOL_NAME = "list_categories"
ANSWER_TOOL_NAME = "answer"


def _input_schema(model: type[BaseModel], *, drop: tuple[str, ...] = ()) -> dict[str, Any]:
    schema = model.model_json_schema()
    schema.pop("title", None)
    for name in drop:
        schema.get("properties", {}).pop(name, None)
    return schema


TOOLS: list[dict[str, Any]] = [
    {
        "name": LOOKUP_TOOL_NAME,
        "description": (
            "Read the event calendar. Pages hold whole days; the result lists each day "
            "with its events (id, title, time, venue) plus totalEventCount and maxPages. "
            "Continue with a higher 'page' only when the pages read so far are not enough."
        ),
        "input_schema": _input_schema(CalendarLookup),
    },
    {
        "name": CATEGORIES_TOOL_NAME,
        "description": (
            "List category groups and their terms with event counts for a listing. "
            "Use it to find the term ids that category_filter expects."
        ),
        "input_schema": _input_schema(CalendarRequest, drop=("page",)),
    },
    {
        "name": ANSWER_TOOL_NAME,
        "description": "Give the final answer. Call this exactly once, when you are done.",
        "input_schema": _input_schema(CalendarAnswer),
    },
]

SYSTEM_PROMPT = """\
You help people find events in a local event calendar.

Now: {current_datetime}
Today: {today}. Tomorrow: {tomorrow}. This Saturday: {saturday}.

Look events up with {lookup_tool} before answering; never invent events or
ids. Dates are YYYY-MM-DD. Named scopes (today, tonight, this-weekend,
this-week) are simpler than explicit dates when they fit. Category filters
take term ids; get them from {categories_tool}.

Finish by calling {answer_tool}. Put the events worth showing in "days",
each under a day it takes place on. Add "request" when the full listing is
longer than what you show.
"""


def page_digest(pages: list[CalendarPage]) -> dict[str, Any]:
    """Compact, day-grouped view of consecutive pages for the model."""
    days = []
    for page in pages:
        for group in page.grouped_by_date:
            events = []
            for entry in group.entries:
                item = {
                    "id": entry.event_summary["id"],
                    "title": entry.event_summary["title"],
                    "time": entry.display_vars.formatted_time_display,
                    "venue": entry.display_vars.venue_name,
                }
                if entry.display_vars.multi_day_label:
                    item["runs"] = entry.display_vars.multi_day_label
                if entry.display_vars.distance is not None:
                    item["distance"] = entry.display_vars.distance
                events.append(item)
            days.append({"date": group.date.isoformat(), "events": events})
    last = pages[-1]
    return {
        "days": days,
        "pagesRead": [p.current_page for p in pages],
        "maxPages": last.max_pages,
        "totalEventCount": last.total_event_count,
    }


def _tool_result(tool_use_id: str, content: str, *, is_error: bool = False) -> dict[str, Any]:
    return {
        "type": "tool_result",
        "tool_use_id": tool_use_id,
        "content": content,
        "is_error": is_error,
    }


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

class CalendarAgent:
    def __init__(
        self,
        engine: CalendarEngine,
        *,
        api_key: str | None = None,
        model: str = DEFAULT_AGENT_MODEL,
        max_turns: int = DEFAULT_AGENT_MAX_TURNS,
    ) -> None:
        self._engine = engine
        self._api_key = api_key
        self._model = model
        self._max_turns = max_turns

    def ask(self, question: str) -> Iterator[AgentOutput]:
        """Run the conversation; the last item yielded is always ``Answered``."""
        client = self._client()
        system = self._system_prompt()
        messages: list[dict[str, Any]] = [{"role": "user", "content": question}]

        for turn in range(1, self._max_turns + 1):
            response = self._complete(client, system, messages)
            messages.append({"role": "assistant", "content": response.content})
            narration = "".join(
                block.text for block in response.content if block.type == "text"
            ).strip()
            calls = [block for block in response.content if block.type == "tool_use"]
            logger.debug("Turn %d: %d tool call(s), stop reason %s", turn, len(calls), response.stop_reason)

            if not calls:
                yield Answered(CalendarAnswer(text=narration))
                return
            if narration:
                yield Progress(narration)

            results = []
            for call in calls:
                if call.name == ANSWER_TOOL_NAME:
                    try:
                        answer = CalendarAnswer.model_validate(call.input)
                    except ValidationError as exc:
                        results.append(_tool_result(call.id, f"Invalid answer: {exc}", is_error=True))
                        continue
                    yield Answered(answer)
                    return
                content, is_error, pages = self._run_tool(call.name, call.input)
                if pages:
                    yield PagesRead(
                        pages=[p.current_page for p in pages],
                        max_pages=pages[-1].max_pages,
                        total_events=pages[-1].total_event_count,
                    )
                results.append(_tool_result(call.id, content, is_error=is_error))
            messages.append({"role": "user", "content": results})

        raise AgentError(f"No answer after {self._max_turns} turns")

    def ask_once(self, question: str) -> CalendarAnswer:
        for output in self.ask(question):
            if isinstance(output, Answered):
                return output.answer
        raise AgentError("Agent produced no answer")

    # -- private ------------------------------------------------------------

    def _client(self) -> anthropic.Anthropic:
        api_key = os.environ.get(ANTHROPIC_API_KEY_ENV) or self._api_key
        if not api_key:
            raise AgentError(
                f"Environment variable {ANTHROPIC_API_KEY_ENV} is not set. "
                "Set it (or api_key in the config file) to use the assistant."
            )
        return anthropic.Anthropic(api_key=api_key, timeout=AGENT_LLM_TIMEOUT_SECONDS)

    def _system_prompt(self) -> str:
        now = self._engine.now()
        saturday = now + timedelta(days=(5 - now.weekday()) % 7)
        return SYSTEM_PROMPT.format(
            current_datetime=now.strftime("%A, %B %d, %Y, %I:%M %p"),
            today=now.date().isoformat(),
            tomorrow=(now + timedelta(days=1)).date().isoformat(),
            saturday=saturday.date().isoformat(),
            lookup_tool=LOOKUP_TOOL_NAME,
            categories_tool=CATEGORIES_TOOL_NAME,
            answer_tool=ANSWER_TOOL_NAME,
        )

    def _complete(self, client: anthropic.Anthropic, system: str, messages: list[dict[str, Any]]) -> Any:
        try:
            return client.messages.create(
                model=self._model,
                max_tokens=AGENT_MAX_TOKENS,
                system=system,
                messages=messages,
                tools=TOOLS,
            )
        except anthropic.APITimeoutError as exc:
            raise AgentError(f"LLM response timed out after {AGENT_LLM_TIMEOUT_SECONDS}s") from exc
        except anthropic.APIError as exc:
            raise AgentError(f"Anthropic API error: {exc}") from exc

    def _run_tool(self, name: str, tool_input: dict[str, Any]) -> tuple[str, bool, list[CalendarPage]]:
        """Returns (content, is_error, pages read)."""
        try:
            if name == LOOKUP_TOOL_NAME:
                pages = self._read_pages(CalendarLookup.model_validate(tool_input))
                return json.dumps(page_digest(pages)), False, pages
            if name == CATEGORIES_TOOL_NAME:
                options = self._engine.filter_options(CalendarRequest.model_validate(tool_input))
                digest = {
                    group: [
                        {"id": t.term_id, "name": t.name, "events": t.event_count}
                        for t in options.groups[group].flatten()
                    ]
                    for group in options.groups
                }
                return json.dumps(digest), False, []
        except (ValidationError, QueryValidationError, StoreError, CalendarQueryError) as exc:
            return f"Tool error: {exc}", True, []
        return f"Unknown tool: {name}", True, []

    def _read_pages(self, lookup: CalendarLookup) -> list[CalendarPage]:
        pages: list[CalendarPage] = []
        number = lookup.page
        while len(pages) < lookup.max_pages:
            page = self._engine.get_page(lookup.model_copy(update={"page": number}))
            pages.append(page)
            if page.current_page >= page.max_pages:
                break
            number = page.current_page + 1
        return pages

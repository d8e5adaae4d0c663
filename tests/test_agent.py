"""Tests for the calendar agent's tool loop with a mocked Anthropic client."""
from __future__ import annotations

import json
from datetime import date, datetime
from types import SimpleNamespace
from unittest import mock

import anthropic
import pytest

from eventcal.agent import (
    AgentError,
    Answered,
    CalendarAgent,
    CalendarAnswer,
    PagesRead,
    Progress,
)
from eventcal.agent.agent import (
    ANSWER_TOOL_NAME,
    CATEGORIES_TOOL_NAME,
    LOOKUP_TOOL_NAME,
    TOOLS,
)
from eventcal.calendar import CalendarEngine
from eventcal.config import AGENT_LLM_TIMEOUT_SECONDS, ANTHROPIC_API_KEY_ENV
from eventcal.event_store import EventStore, MemoryProvider, StoreSnapshot
from eventcal.models import CategoryTerm, EventRecord
from eventcal.user_config import CalendarSettings


NOW = datetime(2026, 1, 5, 12, 0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _engine(settings: CalendarSettings | None = None) -> CalendarEngine:
    store = EventStore(MemoryProvider(StoreSnapshot(
        events=[
            EventRecord(
                id="jazz",
                title="Jazz Night",
                start_datetime=datetime(2026, 1, 6, 19, 0),
                categories={"genre": [3]},
            ),
            EventRecord(id="folk", title="Folk Night", start_datetime=datetime(2026, 1, 7, 19, 0)),
            EventRecord(id="blues", title="Blues Night", start_datetime=datetime(2026, 1, 8, 19, 0)),
        ],
        terms=[CategoryTerm(id=3, group="genre", name="Jazz", slug="jazz")],
    )))
    engine = CalendarEngine(store, settings=settings)
    engine.now = lambda: NOW  # type: ignore[method-assign]
    return engine


def _text(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


def _tool_use(tool_id: str, tool_input: dict, name: str = LOOKUP_TOOL_NAME) -> SimpleNamespace:
    return SimpleNamespace(type="tool_use", id=tool_id, name=name, input=tool_input)


def _response(stop_reason: str, *blocks) -> SimpleNamespace:
    return SimpleNamespace(stop_reason=stop_reason, content=list(blocks))


def _answer(tool_id: str, **tool_input) -> SimpleNamespace:
    return _tool_use(tool_id, tool_input, name=ANSWER_TOOL_NAME)


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv(ANTHROPIC_API_KEY_ENV, "sk-test")
    fake = mock.Mock()
    with mock.patch("eventcal.agent.agent.anthropic.Anthropic", return_value=fake):
        yield fake


def _tool_results(client, batch: int = -1) -> list[dict]:
    """Tool results the agent sent back, one list per model turn."""
    messages = client.messages.create.call_args.kwargs["messages"]
    batches = [m["content"] for m in messages if m["role"] == "user" and isinstance(m["content"], list)]
    return batches[batch]


# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------

class TestTools:
    def _schema(self, name: str) -> dict:
        return next(t["input_schema"] for t in TOOLS if t["name"] == name)

    def test_tool_names(self):
        assert [t["name"] for t in TOOLS] == ["query_calendar", "list_categories", "answer"]

    def test_lookup_schema(self):
        schema = self._schema(LOOKUP_TOOL_NAME)
        for name in ("search", "date_start", "scope", "category_filter", "page", "past", "geo_lat", "max_pages"):
            assert name in schema["properties"]
        assert schema["properties"]["max_pages"]["maximum"] == 5
        assert "title" not in schema

    def test_categories_schema_has_no_page(self):
        properties = self._schema(CATEGORIES_TOOL_NAME)["properties"]
        assert "page" not in properties
        assert "category_filter" in properties

    def test_answer_schema(self):
        schema = self._schema(ANSWER_TOOL_NAME)
        assert set(schema["properties"]) == {"text", "days", "request"}
        assert schema["required"] == ["text"]


# ---------------------------------------------------------------------------
# Client setup
# ---------------------------------------------------------------------------

class TestClient:
    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv(ANTHROPIC_API_KEY_ENV, raising=False)
        with pytest.raises(AgentError, match=ANTHROPIC_API_KEY_ENV):
            CalendarAgent(_engine()).ask_once("hi")

    def test_config_key_and_timeout(self, monkeypatch):
        monkeypatch.delenv(ANTHROPIC_API_KEY_ENV, raising=False)
        fake = mock.Mock()
        fake.messages.create.return_value = _response("end_turn", _text("Hello."))
        with mock.patch("eventcal.agent.agent.anthropic.Anthropic", return_value=fake) as ctor:
            CalendarAgent(_engine(), api_key="sk-config").ask_once("hi")
        ctor.assert_called_once_with(api_key="sk-config", timeout=AGENT_LLM_TIMEOUT_SECONDS)

    def test_system_prompt_dates(self, client):
        client.messages.create.return_value = _response("end_turn", _text("Hello."))
        CalendarAgent(_engine()).ask_once("hi")
        kwargs = client.messages.create.call_args.kwargs
        assert "Today: 2026-01-05. Tomorrow: 2026-01-06. This Saturday: 2026-01-10." in kwargs["system"]
        assert kwargs["tools"] is TOOLS

    def test_timeout_becomes_agent_error(self, client):
        client.messages.create.side_effect = anthropic.APITimeoutError(request=mock.Mock())
        with pytest.raises(AgentError, match="timed out"):
            CalendarAgent(_engine()).ask_once("hi")


# ---------------------------------------------------------------------------
# Conversation loop
# ---------------------------------------------------------------------------

class TestAsk:
    def test_plain_reply_is_an_answer(self, client):
        client.messages.create.return_value = _response("end_turn", _text("I can only talk about events."))
        answer = CalendarAgent(_engine()).ask_once("what's the weather?")
        assert answer == CalendarAnswer(text="I can only talk about events.")

    def test_lookup_then_answer(self, client):
        client.messages.create.side_effect = [
            _response("tool_use", _text("Checking this week."), _tool_use("t1", {"scope": "this-week"})),
            _response("tool_use", _answer(
                "t2",
                text="Jazz Night is on Tuesday.",
                days=[{"day": "2026-01-06", "event_ids": ["jazz"]}],
                request={"scope": "this-week"},
            )),
        ]
        outputs = list(CalendarAgent(_engine()).ask("any jazz this week?"))

        assert outputs[0] == Progress("Checking this week.")
        assert outputs[1] == PagesRead(pages=[1], max_pages=1, total_events=3)
        answer = outputs[2].answer
        assert isinstance(outputs[2], Answered)
        assert answer.days[0].day == date(2026, 1, 6)
        assert answer.days[0].event_ids == ["jazz"]
        assert answer.request.scope == "this-week"

        result = _tool_results(client)[0]
        assert result["tool_use_id"] == "t1"
        assert result["is_error"] is False
        digest = json.loads(result["content"])
        assert [d["date"] for d in digest["days"]] == ["2026-01-06", "2026-01-07", "2026-01-08"]
        first = digest["days"][0]["events"][0]
        assert (first["id"], first["title"], first["time"]) == ("jazz", "Jazz Night", "7:00 PM")
        assert (digest["pagesRead"], digest["maxPages"], digest["totalEventCount"]) == ([1], 1, 3)

    def test_lookup_reads_consecutive_pages(self, client):
        settings = CalendarSettings(min_days_per_page=1, min_events_per_page=1)
        client.messages.create.side_effect = [
            _response("tool_use", _tool_use("t1", {"max_pages": 2})),
            _response("tool_use", _tool_use("t2", {"page": 3, "max_pages": 2})),
            _response("end_turn", _text("Three nights of music.")),
        ]
        outputs = list(CalendarAgent(_engine(settings)).ask("what's on?"))

        reads = [o for o in outputs if isinstance(o, PagesRead)]
        assert reads == [
            PagesRead(pages=[1, 2], max_pages=3, total_events=3),
            PagesRead(pages=[3], max_pages=3, total_events=3),
        ]
        first = json.loads(_tool_results(client, 0)[0]["content"])
        assert [d["date"] for d in first["days"]] == ["2026-01-06", "2026-01-07"]

    def test_invalid_answer_is_sent_back(self, client):
        client.messages.create.side_effect = [
            _response("tool_use", _answer("t1", days="soon")),
            _response("end_turn", _text("Nothing matched.")),
        ]
        answer = CalendarAgent(_engine()).ask_once("anything?")
        assert answer.text == "Nothing matched."
        result = _tool_results(client)[0]
        assert result["is_error"] is True
        assert result["content"].startswith("Invalid answer:")

    @pytest.mark.parametrize(
        "tool_input",
        [{"date_start": "01/02/2026"}, {"max_pages": 99}, {"page": "first"}],
    )
    def test_bad_lookup_is_a_tool_error(self, client, tool_input):
        client.messages.create.side_effect = [
            _response("tool_use", _tool_use("t1", tool_input)),
            _response("end_turn", _text("Sorry.")),
        ]
        outputs = list(CalendarAgent(_engine()).ask("anything?"))
        assert not any(isinstance(o, PagesRead) for o in outputs)
        result = _tool_results(client)[0]
        assert result["is_error"] is True
        assert result["content"].startswith("Tool error:")

    def test_unknown_tool(self, client):
        client.messages.create.side_effect = [
            _response("tool_use", _tool_use("t1", {}, name="search_web")),
            _response("end_turn", _text("Sorry.")),
        ]
        CalendarAgent(_engine()).ask_once("anything?")
        assert _tool_results(client)[0]["content"] == "Unknown tool: search_web"

    def test_list_categories(self, client):
        client.messages.create.side_effect = [
            _response("tool_use", _tool_use("t1", {"scope": "this-week"}, name=CATEGORIES_TOOL_NAME)),
            _response("end_turn", _text("There is jazz.")),
        ]
        CalendarAgent(_engine()).ask_once("which genres?")
        content = json.loads(_tool_results(client)[0]["content"])
        assert content == {"genre": [{"id": 3, "name": "Jazz", "events": 1}]}

    def test_gives_up_after_max_turns(self, client):
        client.messages.create.return_value = _response("tool_use", _tool_use("t1", {}))
        agent = CalendarAgent(_engine(), max_turns=2)
        with pytest.raises(AgentError, match="No answer after 2 turns"):
            list(agent.ask("keep going"))
        assert client.messages.create.call_count == 2

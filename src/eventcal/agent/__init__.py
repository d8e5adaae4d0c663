"""Natural-language front end for the calendar."""

from eventcal.agent.agent import (
    AgentError,
    AgentOutput,
    AnswerDay,
    Answered,
    CalendarAgent,
    CalendarAnswer,
    PagesRead,
    Progress,
)

__all__ = [
    "AgentError",
    "AgentOutput",
    "AnswerDay",
    "Answered",
    "CalendarAgent",
    "CalendarAnswer",
    "PagesRead",
    "Progress",
]

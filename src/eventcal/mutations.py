"""Mutation notifications published by the store.

The import/editing pipeline mutates events, venues, organizers and category
terms through the store; every mutation is published on a
``MutationChannel`` so that subscribers (the calendar cache) can react.
Publishing is synchronous: when ``publish()`` returns, every subscriber has
already handled the mutation.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

MutationKind = Literal["event", "venue", "organizer", "category"]
MutationAction = Literal["created", "updated", "deleted"]


@dataclass(frozen=True)
class Mutation:
    kind: MutationKind
    action: MutationAction
    object_id: str | int | None = None


Subscriber = Callable[[Mutation], None]


class MutationChannel:
    """In-process fan-out of store mutations to subscribers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, mutation: Mutation) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        logger.debug(
            "Publishing %s %s %s to %d subscriber(s)",
            mutation.kind, mutation.action, mutation.object_id, len(subscribers),
        )
        for callback in subscribers:
            callback(mutation)

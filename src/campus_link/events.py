"""Fire-and-forget event fan-out for status and reconnect notifications."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque

STATUS_CHANGED = "status_changed"
RECONNECT_PROGRESS = "reconnect_progress"
ALL_RECONNECTS_FAILED = "all_reconnects_failed"
RECONNECT_STARTED = "reconnect_started"
RECONNECT_ATTEMPT = "reconnect_attempt"
RECONNECT_SUCCEEDED = "reconnect_succeeded"
RECONNECT_FAILED = "reconnect_failed"

EVENT_TYPES = frozenset(
    {
        STATUS_CHANGED,
        RECONNECT_PROGRESS,
        ALL_RECONNECTS_FAILED,
        RECONNECT_STARTED,
        RECONNECT_ATTEMPT,
        RECONNECT_SUCCEEDED,
        RECONNECT_FAILED,
    }
)

Subscriber = Callable[[Any], Awaitable[None] | None]


@dataclass(slots=True)
class PublishedEvent:
    """An event as it was handed to subscribers."""

    timestamp: float
    name: str
    payload: Any

    def to_dict(self) -> dict[str, object | None]:
        payload = self.payload
        if hasattr(payload, "to_dict"):
            payload = payload.to_dict()
        elif isinstance(payload, BaseException):
            payload = {"error": str(payload)}
        return {"timestamp": self.timestamp, "name": self.name, "payload": payload}


class EventBus:
    """Deliver named events to every subscriber of that name.

    Publishing never fails: subscriber errors are logged and dropped so a
    broken listener cannot interrupt a reconnect flow.
    """

    def __init__(self, *, history: int = 100, logger: logging.Logger | None = None) -> None:
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._history: Deque[PublishedEvent] = deque(maxlen=max(1, history))
        self._logger = logger or logging.getLogger(__name__)

    def subscribe(self, name: str, handler: Subscriber) -> Callable[[], None]:
        """Register ``handler`` for ``name`` and return an unsubscribe callable."""

        if name not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {name!r}")
        handlers = self._subscribers.setdefault(name, [])
        handlers.append(handler)

        def _unsubscribe() -> None:
            try:
                handlers.remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def subscriber_count(self, name: str) -> int:
        return len(self._subscribers.get(name, ()))

    async def publish(self, name: str, payload: Any = None) -> None:
        if name not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {name!r}")
        self._history.append(PublishedEvent(time.time(), name, payload))
        for handler in list(self._subscribers.get(name, ())):
            try:
                result = handler(payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                self._logger.debug("Subscriber for %s failed", name, exc_info=True)

    def recent(self, limit: int | None = None, *, name: str | None = None) -> list[PublishedEvent]:
        """Return recently published events, newest first."""

        events = list(self._history)
        if name:
            events = [event for event in events if event.name == name]
        events.reverse()
        if limit is not None:
            events = events[: max(1, int(limit))]
        return events


__all__ = [
    "ALL_RECONNECTS_FAILED",
    "EVENT_TYPES",
    "EventBus",
    "PublishedEvent",
    "RECONNECT_ATTEMPT",
    "RECONNECT_FAILED",
    "RECONNECT_PROGRESS",
    "RECONNECT_STARTED",
    "RECONNECT_SUCCEEDED",
    "STATUS_CHANGED",
]

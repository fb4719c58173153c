"""Event bus carrying live session state to observers."""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from visionclaw.common.logging import get_logger

# Session topics
SESSION_STATE = "session.state"
SESSION_ERROR = "session.error"
USER_TRANSCRIPT = "session.transcript.user"
AI_TRANSCRIPT = "session.transcript.ai"
TOOL_STATUS = "session.tool_status"
VIDEO_REQUEST = "session.video"
CHIME = "session.chime"


@dataclass
class Event:
    """Event message."""

    topic: str
    data: dict[str, Any]
    source: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)


EventHandler = Callable[[Event], Awaitable[None]]


class EventBus:
    """In-process pub/sub bus.

    Topics are dot separated. Subscriptions may use ``*`` for one segment
    and ``**`` for any number of trailing segments.
    """

    def __init__(self, history_limit: int = 500) -> None:
        self._subscribers: dict[str, list[EventHandler]] = {}
        self._wildcard_subscribers: list[tuple[str, EventHandler]] = []
        self._history: list[Event] = []
        self._history_limit = history_limit
        self.logger = get_logger("event_bus")

    async def publish(self, event: Event) -> None:
        """Publish an event to all matching subscribers."""
        self.logger.debug("publishing_event", topic=event.topic, source=event.source)

        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit :]

        handlers = list(self._subscribers.get(event.topic, []))
        for pattern, handler in self._wildcard_subscribers:
            if topic_matches(event.topic, pattern):
                handlers.append(handler)

        if handlers:
            await asyncio.gather(*[self._safe_dispatch(h, event) for h in handlers])

    async def emit(self, topic: str, source: str, **data: Any) -> None:
        """Shortcut for publishing an event built from keyword data."""
        await self.publish(Event(topic=topic, data=data, source=source))

    async def _safe_dispatch(self, handler: EventHandler, event: Event) -> None:
        try:
            await handler(event)
        except Exception as e:
            self.logger.exception(
                "event_handler_error",
                topic=event.topic,
                event_id=event.event_id,
                error=str(e),
            )

    def subscribe(self, topic: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to a topic.

        Returns:
            Function removing the subscription.
        """
        if "*" in topic:
            entry = (topic, handler)
            self._wildcard_subscribers.append(entry)

            def unsubscribe() -> None:
                if entry in self._wildcard_subscribers:
                    self._wildcard_subscribers.remove(entry)

        else:
            self._subscribers.setdefault(topic, []).append(handler)

            def unsubscribe() -> None:
                handlers = self._subscribers.get(topic, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def on(self, topic: str) -> Callable[[EventHandler], EventHandler]:
        """Decorator form of :meth:`subscribe`."""

        def decorator(fn: EventHandler) -> EventHandler:
            self.subscribe(topic, fn)
            return fn

        return decorator

    def history(self, topic: str | None = None, limit: int = 100) -> list[Event]:
        """Recent events, oldest first."""
        events = self._history
        if topic:
            events = [e for e in events if topic_matches(e.topic, topic)]
        return list(events[-limit:])

    def clear_history(self) -> None:
        self._history.clear()


def topic_matches(topic: str, pattern: str) -> bool:
    """Check a dotted topic against a subscription pattern."""
    topic_parts = topic.split(".")
    pattern_parts = pattern.split(".")

    for i, part in enumerate(pattern_parts):
        if part == "**":
            return i == len(pattern_parts) - 1 or any(
                topic_matches(".".join(topic_parts[j:]), ".".join(pattern_parts[i + 1 :]))
                for j in range(i, len(topic_parts))
            )
        if i >= len(topic_parts):
            return False
        if part != "*" and part != topic_parts[i]:
            return False

    return len(topic_parts) == len(pattern_parts)

"""In-memory history of loom events.

Polls, webhook deliveries, dispatches and debounced writes all end up here
so the ``/__loom/stats`` endpoint and tests can look back at what happened.
Only the newest ``max_events`` are kept.

Writers are the detector task, the webhook handler and the persistence
timers; a lock keeps them from interleaving with readers.
"""

import threading
from collections import Counter, deque
from collections.abc import Callable, Iterable
from typing import Any

from loom.observability.events import (
    HandlerFailed,
    HashFallback,
    PollFailed,
    StackEvent,
    WebhookReceived,
    WriteFlushed,
)

type EventFilter = Callable[[StackEvent], bool]


def is_failure(event: StackEvent) -> bool:
    """True for events that report something going wrong.

    Failed polls, handlers that raised, hash fallbacks, rejected webhook
    deliveries (status >= 400) and writes the repository refused.

    """
    if isinstance(event, PollFailed | HandlerFailed | HashFallback):
        return True
    if isinstance(event, WebhookReceived):
        return event.status >= 400
    if isinstance(event, WriteFlushed):
        return not event.ok
    return False


def _filters(
    event_type: type | None, since_ns: int, item_id: str | None
) -> list[EventFilter]:
    checks: list[EventFilter] = []
    if event_type is not None:
        checks.append(lambda event: isinstance(event, event_type))
    if since_ns:
        checks.append(lambda event: getattr(event, "timestamp_ns", 0) >= since_ns)
    if item_id is not None:
        checks.append(lambda event: getattr(event, "item_id", None) == item_id)
    return checks


class EventLog:
    """Bounded, lock-protected list of ``StackEvent`` records.

    Args:
        max_events: How many events to keep; older ones fall off the front.

    """

    def __init__(self, max_events: int = 10_000) -> None:
        self.max_events = max_events
        self._events: deque[StackEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def append(self, event: StackEvent) -> None:
        with self._lock:
            self._events.append(event)

    def extend(self, events: Iterable[StackEvent]) -> None:
        with self._lock:
            self._events.extend(events)

    def _snapshot(self) -> list[StackEvent]:
        with self._lock:
            return list(self._events)

    def query(
        self,
        *,
        event_type: type | None = None,
        since_ns: int = 0,
        item_id: str | None = None,
        limit: int = 100,
    ) -> list[StackEvent]:
        """Newest-first events matching every given filter.

        ``item_id`` matches write, dispatch, webhook and hash events about
        that content item; events without an item never match it.

        """
        checks = _filters(event_type, since_ns, item_id)
        matched: list[StackEvent] = []
        for event in reversed(self._snapshot()):
            if len(matched) >= limit:
                break
            if all(check(event) for check in checks):
                matched.append(event)
        return matched

    def failures(self, limit: int = 100) -> list[StackEvent]:
        """Newest-first events for which ``is_failure`` holds."""
        return [event for event in reversed(self._snapshot()) if is_failure(event)][:limit]

    def recent(self, n: int = 20) -> list[StackEvent]:
        """The last *n* events, oldest first."""
        return self._snapshot()[-n:]

    def clear(self) -> int:
        """Drop every event; returns how many there were."""
        with self._lock:
            dropped = len(self._events)
            self._events.clear()
        return dropped

    def stats(self) -> dict[str, Any]:
        events = self._snapshot()
        return {
            "total": len(events),
            "max_events": self.max_events,
            "failures": sum(1 for event in events if is_failure(event)),
            "by_type": dict(Counter(type(event).__name__ for event in events)),
        }

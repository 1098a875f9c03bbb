"""Event dispatch — ordered delivery of change events to handlers.

``EventDispatcher`` keeps an ordered handler list and awaits each handler in
turn, so a consumer always sees events in the order they were classified.
A handler that raises is logged and skipped; the rest still run.

After the handler list, every event is also emitted on an ``EventBus`` for
secondary listeners that attach independently of the handler list.
"""

from __future__ import annotations

import inspect
import sys
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from loom._types import EventHandler
    from loom.observability.collector import StackCollector
    from loom.webhook.payload import WebhookPayload

type Listener = Callable[[WebhookPayload], Awaitable[Any] | Any]

# Bus channel that receives every event.
ALL_EVENTS = "*"


def _handler_name(handler: Callable[..., Any]) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


async def _call(handler: Callable[[WebhookPayload], Any], event: WebhookPayload) -> None:
    result = handler(event)
    if inspect.isawaitable(result):
        await result


class EventBus:
    """Named-channel listener registry.

    Listeners are called in registration order; one raising does not stop
    the others.

    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, name: str, listener: Listener) -> Callable[[], None]:
        """Attach *listener* to *name* (``"*"`` for every event).

        Returns a callable that detaches it again.

        """
        self._listeners[name].append(listener)
        return lambda: self.off(name, listener)

    def off(self, name: str, listener: Listener) -> None:
        listeners = self._listeners.get(name)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return
        if not listeners:
            del self._listeners[name]

    def listener_count(self, name: str | None = None) -> int:
        if name is None:
            return sum(len(ls) for ls in self._listeners.values())
        return len(self._listeners.get(name, ()))

    async def emit(self, name: str, event: WebhookPayload) -> int:
        """Call the listeners of *name*.  Returns how many completed."""
        delivered = 0
        for listener in list(self._listeners.get(name, ())):
            try:
                await _call(listener, event)
            except Exception as exc:
                print(
                    f"  [loom] Bus listener {_handler_name(listener)} failed on {name}: {exc}",
                    file=sys.stderr,
                )
                continue
            delivered += 1
        return delivered


class EventDispatcher:
    """Fans change events out to registered handlers, in order.

    Args:
        bus: Secondary listener bus (a private one is created when omitted).
        collector: Optional observability collector.

    """

    def __init__(
        self,
        *,
        bus: EventBus | None = None,
        collector: StackCollector | None = None,
    ) -> None:
        self._handlers: list[EventHandler] = []
        self._bus = bus if bus is not None else EventBus()
        self._collector = collector

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def register(self, handler: EventHandler) -> Callable[[], None]:
        """Append *handler*; returns a callable that unregisters it."""
        self._handlers.append(handler)
        return lambda: self.unregister(handler)

    def unregister(self, handler: EventHandler) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            return

    async def dispatch(self, event: WebhookPayload) -> int:
        """Deliver *event* to every handler, then to the bus.

        Returns the number of handlers that completed without raising.
        Never raises for handler errors.

        """
        delivered = 0
        for handler in list(self._handlers):
            try:
                await _call(handler, event)
            except Exception as exc:
                name = _handler_name(handler)
                print(
                    f"  [loom] Handler {name} failed on {event.event} "
                    f"for {event.path}: {exc}",
                    file=sys.stderr,
                )
                if self._collector is not None:
                    self._collector.record_handler_failure(
                        name, event.event, item_id=event.item_id, error=str(exc)
                    )
                continue
            delivered += 1

        await self._bus.emit(event.event, event)
        await self._bus.emit(ALL_EVENTS, event)

        if self._collector is not None:
            self._collector.record_dispatch(
                event.event,
                collection=event.collection,
                item_id=event.item_id,
                slug=event.slug,
                handlers=delivered,
            )
        return delivered

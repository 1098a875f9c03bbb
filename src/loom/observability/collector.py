"""Stack collector — one recording surface for every loom component.

Components never touch the ``EventLog`` directly; they call the typed
``record_*`` methods here so the event schema lives in one place.  The
generic ``record()`` method also lets the collector act as a chirp
lifecycle collector in ``serve`` mode.

Thread Safety:
    The collector delegates to ``EventLog`` which is internally locked.

"""

from __future__ import annotations

from typing import Any, Literal

from loom.observability.events import (
    ChangeDispatched,
    DetectorStateChanged,
    HandlerFailed,
    HashFallback,
    PollCompleted,
    PollFailed,
    WebhookReceived,
    WriteFlushed,
    now_ns,
)
from loom.observability.log import EventLog


class StackCollector:
    """Unified event collector.

    Args:
        log: The EventLog to store events in.

    """

    __slots__ = ("_log",)

    def __init__(self, log: EventLog | None = None) -> None:
        self._log = log if log is not None else EventLog()

    @property
    def log(self) -> EventLog:
        """The underlying event log."""
        return self._log

    def record(self, event: Any) -> None:
        """Record an arbitrary frozen event (server lifecycle events)."""
        self._log.append(event)

    # ----- Change detector -----

    def record_poll(
        self,
        *,
        items_seen: int = 0,
        events_emitted: int = 0,
        seeded: bool = False,
        duration_ms: float = 0.0,
    ) -> None:
        """Record a completed poll cycle."""
        self._log.append(
            PollCompleted(
                items_seen=items_seen,
                events_emitted=events_emitted,
                seeded=seeded,
                duration_ms=duration_ms,
                timestamp_ns=now_ns(),
            )
        )

    def record_poll_failure(self, consecutive_failures: int, error: str) -> None:
        """Record a failed poll cycle."""
        self._log.append(
            PollFailed(
                consecutive_failures=consecutive_failures,
                error=error,
                timestamp_ns=now_ns(),
            )
        )

    def record_state_change(self, old_state: str, new_state: str) -> None:
        """Record a detector lifecycle transition."""
        self._log.append(
            DetectorStateChanged(old_state=old_state, new_state=new_state, timestamp_ns=now_ns())
        )

    def record_hash_fallback(self, item_id: str, error: str) -> None:
        """Record a snapshot that fell back to the identity fingerprint."""
        self._log.append(HashFallback(item_id=item_id, error=error, timestamp_ns=now_ns()))

    # ----- Dispatch -----

    def record_dispatch(
        self,
        event: str,
        *,
        collection: str,
        item_id: str,
        slug: str | None = None,
        handlers: int = 0,
    ) -> None:
        """Record an event delivered to the handler list."""
        self._log.append(
            ChangeDispatched(
                event=event,
                collection=collection,
                item_id=item_id,
                slug=slug,
                handlers=handlers,
                timestamp_ns=now_ns(),
            )
        )

    def record_handler_failure(
        self, handler: str, event: str, *, item_id: str, error: str
    ) -> None:
        """Record a handler that raised during dispatch."""
        self._log.append(
            HandlerFailed(
                handler=handler,
                event=event,
                item_id=item_id,
                error=error,
                timestamp_ns=now_ns(),
            )
        )

    def record_webhook(
        self,
        status: int,
        *,
        event: str | None = None,
        item_id: str | None = None,
        delivery_id: str | None = None,
        duration_ms: float = 0.0,
    ) -> None:
        """Record an answered inbound webhook request."""
        self._log.append(
            WebhookReceived(
                status=status,
                event=event,
                item_id=item_id,
                delivery_id=delivery_id,
                duration_ms=duration_ms,
                timestamp_ns=now_ns(),
            )
        )

    # ----- Editing -----

    def record_write(
        self,
        channel: Literal["draft", "live"],
        item_id: str,
        *,
        fields: int = 0,
        ok: bool = True,
    ) -> None:
        """Record a debounced write attempt."""
        self._log.append(
            WriteFlushed(
                channel=channel,
                item_id=item_id,
                fields=fields,
                ok=ok,
                timestamp_ns=now_ns(),
            )
        )

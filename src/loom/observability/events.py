"""Unified event model for loom observability.

Defines event types for the notification path (polling, dispatch, inbound
webhooks) and the editing path (debounced writes).

All events are frozen dataclasses with:
- ``timestamp_ns``: Monotonic nanosecond timestamp
- Descriptive fields for the specific event type

"""

import time
from dataclasses import dataclass
from typing import Literal


# ---------------------------------------------------------------------------
# Change detector events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class PollCompleted:
    """A poll cycle fetched a snapshot and classified it.

    Attributes:
        items_seen: Number of items in the snapshot.
        events_emitted: Number of change events dispatched this cycle.
        seeded: True for the first synchronization pass (no classification).
        duration_ms: Time spent on the cycle in milliseconds.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    items_seen: int
    events_emitted: int
    seeded: bool
    duration_ms: float
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class PollFailed:
    """A poll cycle could not fetch a snapshot.

    Attributes:
        consecutive_failures: Failure count including this one.
        error: Short description of the failure.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    consecutive_failures: int
    error: str
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class DetectorStateChanged:
    """The change detector moved between lifecycle states."""

    old_state: str
    new_state: str
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class HashFallback:
    """A snapshot could not be serialized; the identity fingerprint was used."""

    item_id: str
    error: str
    timestamp_ns: int


# ---------------------------------------------------------------------------
# Dispatch events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ChangeDispatched:
    """A change event was delivered to registered handlers.

    Attributes:
        event: Event type (``content.updated`` etc.).
        collection: Collection slug.
        item_id: Item identifier.
        slug: Item slug carried by the event, if any.
        handlers: Number of handlers that completed without raising.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    event: str
    collection: str
    item_id: str
    slug: str | None
    handlers: int
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class HandlerFailed:
    """A registered handler raised while receiving an event."""

    handler: str
    event: str
    item_id: str
    error: str
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class WebhookReceived:
    """An inbound webhook request was answered.

    Attributes:
        status: HTTP status returned.
        event: Event type, when the payload parsed.
        item_id: Item identifier, when the payload parsed.
        delivery_id: ``x-loom-delivery`` header value.
        duration_ms: Processing time in milliseconds.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    status: int
    event: str | None
    item_id: str | None
    delivery_id: str | None
    duration_ms: float
    timestamp_ns: int


# ---------------------------------------------------------------------------
# Editing events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class WriteFlushed:
    """A debounced write reached the repository (or failed to).

    Attributes:
        channel: ``draft`` or ``live``.
        item_id: Item identifier.
        fields: Number of fields carried by the write.
        ok: False when the repository rejected the write.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    channel: Literal["draft", "live"]
    item_id: str
    fields: int
    ok: bool
    timestamp_ns: int


# ---------------------------------------------------------------------------
# Union type
# ---------------------------------------------------------------------------

type StackEvent = (
    PollCompleted
    | PollFailed
    | DetectorStateChanged
    | HashFallback
    | ChangeDispatched
    | HandlerFailed
    | WebhookReceived
    | WriteFlushed
)


def now_ns() -> int:
    """Return the current monotonic clock value in nanoseconds."""
    return time.monotonic_ns()

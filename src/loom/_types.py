"""Shared type definitions for loom."""

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from loom.webhook.payload import WebhookPayload

# Publication state of a content item
type Status = Literal["draft", "published"]

# Change notification kinds, as sent on the wire
type EventType = Literal[
    "content.created",
    "content.updated",
    "content.published",
    "content.deleted",
]

# Opaque content item identifier
type ItemID = str

# Name of a system or custom field
type FieldName = str

# Debounced write channel
type Channel = Literal["draft", "live"]

# Dispatcher handler: receives one event, may return an awaitable
type EventHandler = Callable[[WebhookPayload], Awaitable[Any] | Any]

EVENT_TYPES: frozenset[str] = frozenset({
    "content.created",
    "content.updated",
    "content.published",
    "content.deleted",
})

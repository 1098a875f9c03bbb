"""Change notification payload — the one event shape loom emits and accepts.

The same frozen dataclass is produced by the change detector for polled
changes and parsed from the body of inbound webhook requests.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from loom._errors import PayloadError
from loom._types import EVENT_TYPES, EventType

_REQUIRED = ("event", "site_id", "collection", "item_id", "timestamp")


@dataclass(frozen=True, slots=True)
class WebhookPayload:
    """A content change notification.

    Attributes:
        event: ``content.created``, ``content.updated``, ``content.published``
            or ``content.deleted``.
        site_id: Site the item belongs to.
        collection: Collection slug.
        item_id: Item identifier.
        timestamp: ISO-8601 time the change was observed.
        slug: Item slug; for rename notifications this is the old slug.

    """

    event: EventType
    site_id: str
    collection: str
    item_id: str
    timestamp: str
    slug: str | None = None

    @classmethod
    def create(
        cls,
        event: EventType,
        *,
        site_id: str,
        collection: str,
        item_id: str,
        slug: str | None = None,
    ) -> WebhookPayload:
        """Build a payload stamped with the current UTC time."""
        return cls(
            event=event,
            site_id=site_id,
            collection=collection,
            item_id=item_id,
            timestamp=datetime.now(UTC).isoformat(),
            slug=slug,
        )

    @property
    def path(self) -> str:
        """``collection/slug`` (or just the collection) for log lines."""
        return f"{self.collection}/{self.slug}" if self.slug else self.collection

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event": self.event,
            "site_id": self.site_id,
            "collection": self.collection,
            "item_id": self.item_id,
            "timestamp": self.timestamp,
        }
        if self.slug is not None:
            payload["slug"] = self.slug
        return payload

    def to_bytes(self) -> bytes:
        """Compact JSON body as sent over the wire."""
        return json.dumps(self.to_json(), separators=(",", ":")).encode()


def parse_payload(body: bytes | str | Mapping[str, Any]) -> WebhookPayload:
    """Validate a webhook body and return the payload.

    Raises:
        PayloadError: If the body is not JSON, not an object, misses a
            required field, or names an unknown event.

    """
    if isinstance(body, Mapping):
        raw: Any = body
    else:
        try:
            raw = json.loads(body)
        except (ValueError, UnicodeDecodeError) as exc:
            msg = f"Body is not valid JSON: {exc}"
            raise PayloadError(msg) from exc

    if not isinstance(raw, Mapping):
        msg = "Payload must be a JSON object"
        raise PayloadError(msg)

    for name in _REQUIRED:
        value = raw.get(name)
        if not isinstance(value, str) or not value:
            msg = f"Missing or invalid field {name!r}"
            raise PayloadError(msg, field=name)

    if raw["event"] not in EVENT_TYPES:
        msg = f"Unknown event {raw['event']!r}"
        raise PayloadError(msg, field="event")

    slug = raw.get("slug")
    if slug is not None and not isinstance(slug, str):
        msg = "Field 'slug' must be a string"
        raise PayloadError(msg, field="slug")

    return WebhookPayload(
        event=raw["event"],
        site_id=raw["site_id"],
        collection=raw["collection"],
        item_id=raw["item_id"],
        timestamp=raw["timestamp"],
        slug=slug,
    )

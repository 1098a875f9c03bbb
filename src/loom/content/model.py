"""Content model — items, field classification, and the Patch shape.

A content item is a fixed set of system fields plus a free-form ``data``
mapping of custom fields.  ``Patch`` carries a partial set of both and is
used for draft overlays, pending changes, and save payloads alike.

Wire JSON may use camelCase keys (``publishedAt``); everything in memory is
snake_case.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from loom._errors import ContentError

# System fields an editor may write.
EDITABLE_SYSTEM_FIELDS: frozenset[str] = frozenset({
    "title",
    "slug",
    "status",
    "seo_title",
    "seo_description",
    "og_image",
})

# System fields owned by the repository.
READONLY_SYSTEM_FIELDS: frozenset[str] = frozenset({
    "id",
    "collection",
    "created_at",
    "updated_at",
    "published_at",
})

SYSTEM_FIELDS: frozenset[str] = EDITABLE_SYSTEM_FIELDS | READONLY_SYSTEM_FIELDS

_MISSING = object()

_ALIASES: dict[str, str] = {
    "publishedAt": "published_at",
    "updatedAt": "updated_at",
    "createdAt": "created_at",
    "seoTitle": "seo_title",
    "seoDescription": "seo_description",
    "ogImage": "og_image",
}


def normalize_key(name: str) -> str:
    """Map a camelCase wire key to its snake_case field name."""
    return _ALIASES.get(name, name)


def is_system_field(name: str) -> bool:
    """True for top-level item fields, False for custom ``data`` fields."""
    return normalize_key(name) in SYSTEM_FIELDS


@dataclass(frozen=True, slots=True)
class Patch:
    """A partial set of field values.

    Attributes:
        system: System field name -> value.
        data: Custom field name -> value.

    """

    system: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Own the mappings so callers can't mutate a patch after the fact.
        object.__setattr__(self, "system", dict(self.system))
        object.__setattr__(self, "data", dict(self.data))

    @classmethod
    def for_field(cls, name: str, value: Any) -> Patch:
        """A patch setting a single system or custom field."""
        key = normalize_key(name)
        if key in SYSTEM_FIELDS:
            return cls(system={key: value})
        return cls(data={name: value})

    @classmethod
    def from_json(cls, payload: Mapping[str, Any] | None) -> Patch:
        """Split a ``{field: value, data: {...}}`` payload into a Patch."""
        if not payload:
            return cls()
        system: dict[str, Any] = {}
        data: dict[str, Any] = {}
        for key, value in payload.items():
            if key == "data":
                if isinstance(value, Mapping):
                    data.update(value)
                continue
            system[normalize_key(key)] = value
        return cls(system=system, data=data)

    @property
    def is_empty(self) -> bool:
        return not self.system and not self.data

    @property
    def field_count(self) -> int:
        """Number of fields carried (system plus custom)."""
        return len(self.system) + len(self.data)

    def has_field(self, name: str) -> bool:
        key = normalize_key(name)
        if key in SYSTEM_FIELDS:
            return key in self.system
        return name in self.data

    def merge(self, other: Patch) -> Patch:
        """Combine two patches; fields in *other* win."""
        return Patch(
            system={**self.system, **other.system},
            data={**self.data, **other.data},
        )

    def without(self, other: Patch) -> Patch:
        """Fields of this patch that *other* does not carry with the same value."""
        return Patch(
            system={k: v for k, v in self.system.items() if other.system.get(k, _MISSING) != v},
            data={k: v for k, v in self.data.items() if other.data.get(k, _MISSING) != v},
        )

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.system)
        if self.data:
            payload["data"] = dict(self.data)
        return payload


@dataclass(slots=True)
class ContentItem:
    """A content item as held by an editing session.

    Attributes:
        id: Opaque stable identifier.
        system: System field values (``slug``, ``title``, ``status`` ...).
        data: Custom field values.
        draft: Unpublished overlay; only ever set on published items.

    """

    id: str
    system: dict[str, Any] = field(default_factory=dict)
    data: dict[str, Any] = field(default_factory=dict)
    draft: Patch | None = None

    @property
    def status(self) -> str:
        return self.system.get("status") or "draft"

    @property
    def is_published(self) -> bool:
        return self.status == "published"

    @property
    def slug(self) -> str | None:
        return self.system.get("slug")

    @property
    def title(self) -> str | None:
        return self.system.get("title")

    @property
    def collection(self) -> str:
        return self.system.get("collection") or ""

    @property
    def published_at(self) -> str | None:
        return self.system.get("published_at")

    @property
    def updated_at(self) -> str | None:
        return self.system.get("updated_at")

    def get(self, name: str) -> Any:
        """Current value of a system or custom field (None when absent)."""
        key = normalize_key(name)
        if key == "status":
            return self.status
        if key in SYSTEM_FIELDS:
            return self.system.get(key)
        return self.data.get(name)

    def copy(self) -> ContentItem:
        """Independent copy; nested field values are copied too."""
        return ContentItem(
            id=self.id,
            system=copy.deepcopy(self.system),
            data=copy.deepcopy(self.data),
            draft=self.draft,
        )

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> ContentItem:
        """Build an item from repository JSON.

        A ``draft`` on an item that is not published is dropped: unpublished
        items are edited in place and never carry an overlay.

        Raises:
            ContentError: If the payload has no ``id``.

        """
        item_id = payload.get("id")
        if item_id is None or item_id == "":
            msg = "Content item payload has no 'id'"
            raise ContentError(msg)

        system: dict[str, Any] = {}
        data: dict[str, Any] = {}
        raw_draft: Mapping[str, Any] | None = None
        for key, value in payload.items():
            if key == "id":
                continue
            if key == "data":
                if isinstance(value, Mapping):
                    data.update(value)
                continue
            if key == "draft":
                raw_draft = value if isinstance(value, Mapping) else None
                continue
            if key == "collection" and isinstance(value, Mapping):
                value = value.get("slug")
            system[normalize_key(key)] = value

        item = cls(id=str(item_id), system=system, data=data)
        if item.is_published and raw_draft:
            overlay = Patch.from_json(raw_draft)
            item.draft = None if overlay.is_empty else overlay
        return item

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, **self.system, "data": dict(self.data)}
        payload["draft"] = self.draft.to_json() if self.draft is not None else None
        return payload

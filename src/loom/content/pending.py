"""Pending changes — unpublished edits to published items.

One ``PendingChange`` per item accumulates every field written since the
last publish.  The tracker is the source for the "N unsaved changes"
counter and for the payload sent on republish.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loom.content.merge import apply_canonical, draft_diff
from loom.content.model import ContentItem, Patch

if TYPE_CHECKING:
    from loom.content.repository import ContentRepository


@dataclass(frozen=True, slots=True)
class PendingChange:
    """Accumulated edits for one item.

    Attributes:
        item_id: Item identifier.
        changes: System and custom fields written since the last publish.

    """

    item_id: str
    changes: Patch


class PendingChangeTracker:
    """Field-level record of edits awaiting republish.

    Args:
        repository: Receives the publish call on ``republish``.
        collection: Collection slug of the tracked items.

    """

    def __init__(self, repository: ContentRepository, collection: str) -> None:
        self._repository = repository
        self._collection = collection
        self._entries: dict[str, PendingChange] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._entries

    def __iter__(self) -> Iterator[PendingChange]:
        return iter(list(self._entries.values()))

    def get(self, item_id: str) -> PendingChange | None:
        return self._entries.get(item_id)

    def record_change(self, item_id: str, field_name: str, value: Any) -> PendingChange:
        """Record one field write, keeping fields recorded earlier."""
        return self.record(item_id, Patch.for_field(field_name, value))

    def record(self, item_id: str, patch: Patch) -> PendingChange:
        """Merge a multi-field patch into the item's entry."""
        existing = self._entries.get(item_id)
        changes = patch if existing is None else existing.changes.merge(patch)
        entry = PendingChange(item_id=item_id, changes=changes)
        self._entries[item_id] = entry
        return entry

    def clear(self, item_id: str) -> PendingChange | None:
        """Forget the item's pending edits (after republish or discard)."""
        return self._entries.pop(item_id, None)

    def has_changes(self, item_id: str) -> bool:
        return item_id in self._entries

    def has_change_for_field(self, item_id: str, field_name: str) -> bool:
        entry = self._entries.get(item_id)
        return entry is not None and entry.changes.has_field(field_name)

    def count_changed_fields(self) -> int:
        """Changed system fields plus changed custom fields, across all items."""
        return sum(entry.changes.field_count for entry in self._entries.values())

    def seed(self, items: Iterable[ContentItem]) -> int:
        """Create entries for items loaded with an existing draft overlay.

        Only overlay fields that differ from the base count as pending.
        Returns the number of entries created.

        """
        created = 0
        for item in items:
            diff = draft_diff(item)
            if diff.is_empty:
                continue
            self._entries[item.id] = PendingChange(item_id=item.id, changes=diff)
            created += 1
        return created

    async def republish(self, item_id: str, base: ContentItem) -> ContentItem:
        """Publish the accumulated changes and fold the result into *base*.

        The entry is cleared only after the repository accepts the publish;
        on ``RepositoryError`` it is left intact and the error propagates.
        Fields recorded while the publish was in flight were not sent: they
        stay pending and become the item's draft overlay.

        """
        entry = self._entries.get(item_id)
        sent = entry.changes if entry is not None else None
        canonical = await self._repository.publish(self._collection, item_id, sent)
        leftover = self._settle(item_id, sent or Patch())
        apply_canonical(base, canonical)
        if leftover is not None:
            base.draft = (
                leftover.changes if base.draft is None else base.draft.merge(leftover.changes)
            )
        return base

    def _settle(self, item_id: str, published: Patch) -> PendingChange | None:
        """Drop the published fields from the entry; return what is left."""
        current = self._entries.get(item_id)
        if current is None:
            return None
        remaining = current.changes.without(published)
        if remaining.is_empty:
            del self._entries[item_id]
            return None
        entry = PendingChange(item_id=item_id, changes=remaining)
        self._entries[item_id] = entry
        return entry

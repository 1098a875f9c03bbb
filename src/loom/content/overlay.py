"""Draft overlay store — the editing session's working copy.

Published items are never overwritten by ordinary edits.  Each write lands
in two places: the in-memory base (so the editor sees it at once) and the
item's draft overlay (so merged reads stay consistent).  The overlay is
saved to the repository's draft sub-resource and only replaces the live
version on ``republish``.

Unpublished items have nothing to protect, so they are edited in place and
written straight to the live record.

Write paths:
    unpublished item   -> base mutated        -> debounced live write
    published item     -> base + overlay      -> pending change + debounced draft write
    status -> draft    -> unpublish: overlay and pending change dropped,
                          base reverted to the last published copy,
                          direct write ``status=draft, published_at=None``
"""

from __future__ import annotations

import sys
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from loom._errors import ContentError, RepositoryError
from loom.content.merge import apply_canonical, read_view
from loom.content.model import READONLY_SYSTEM_FIELDS, ContentItem, Patch, normalize_key
from loom.content.pending import PendingChangeTracker
from loom.content.scheduler import PersistenceScheduler

if TYPE_CHECKING:
    from loom._types import Channel
    from loom.config import LoomConfig
    from loom.content.repository import ContentRepository
    from loom.content.scheduler import Clock
    from loom.observability.collector import StackCollector

_STATUSES = frozenset({"draft", "published"})


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _published_copy(item: ContentItem) -> ContentItem:
    snapshot = item.copy()
    snapshot.draft = None
    return snapshot


class DraftOverlayStore:
    """Editable items of one collection, layered over their published base.

    Args:
        items: Items as loaded from the repository (drafts included).
        repository: Persistence collaborator.
        collection: Collection slug.
        tracker: Pending change tracker (created when omitted).
        scheduler: Debounced writer (created when omitted).
        delay: Debounce quiet period for a created scheduler.
        clock: Time source for a created scheduler.
        collector: Optional observability collector.

    """

    def __init__(
        self,
        items: Iterable[ContentItem],
        *,
        repository: ContentRepository,
        collection: str,
        tracker: PendingChangeTracker | None = None,
        scheduler: PersistenceScheduler | None = None,
        delay: float = 1.0,
        clock: Clock | None = None,
        collector: StackCollector | None = None,
    ) -> None:
        self._repository = repository
        self._collection = collection
        self._items: dict[str, ContentItem] = {item.id: item for item in items}
        self._tracker = tracker or PendingChangeTracker(repository, collection)
        self._scheduler = scheduler or PersistenceScheduler(
            repository, collection, delay=delay, clock=clock, collector=collector
        )
        self._scheduler.on_live_saved(self._live_saved)

        # Last known published version of each published item; unpublish
        # reverts to it.
        self._published: dict[str, ContentItem] = {
            item.id: _published_copy(item)
            for item in self._items.values()
            if item.is_published
        }
        self._tracker.seed(self._items.values())

    @classmethod
    def from_config(
        cls,
        config: LoomConfig,
        items: Iterable[ContentItem],
        *,
        repository: ContentRepository,
        collection: str,
        clock: Clock | None = None,
        collector: StackCollector | None = None,
    ) -> DraftOverlayStore:
        """Store whose writes wait ``config.debounce_delay`` seconds."""
        return cls(
            items,
            repository=repository,
            collection=collection,
            delay=config.debounce_delay,
            clock=clock,
            collector=collector,
        )

    # ----- Reads -----

    @property
    def tracker(self) -> PendingChangeTracker:
        return self._tracker

    @property
    def scheduler(self) -> PersistenceScheduler:
        return self._scheduler

    @property
    def items(self) -> list[ContentItem]:
        """Merged views of every item, in load order."""
        return [read_view(item) for item in self._items.values()]

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def read(self, item_id: str) -> ContentItem:
        """Merged view of one item (overlay over base)."""
        return read_view(self._require(item_id))

    def base(self, item_id: str) -> ContentItem:
        """Copy of the item's base record, overlay not applied."""
        return self._require(item_id).copy()

    @property
    def pending_changes_count(self) -> int:
        return self._tracker.count_changed_fields()

    def has_pending_changes(self, item_id: str) -> bool:
        return self._tracker.has_changes(item_id)

    def has_unsaved(self, item_id: str) -> bool:
        """A debounced write is queued or the last write for the item failed."""
        return self._scheduler.has_unsaved(item_id)

    # ----- Writes -----

    async def write(self, item_id: str, field_name: str, value: Any) -> bool:
        """Set one field.  Returns False when the value is unchanged.

        Raises:
            ContentError: For unknown items, read-only fields, or an
                invalid ``status`` value.

        """
        item = self._require(item_id)
        key = normalize_key(field_name)
        if key in READONLY_SYSTEM_FIELDS:
            msg = f"Field {field_name!r} is managed by the repository and cannot be written"
            raise ContentError(msg)
        if key == "status" and value not in _STATUSES:
            msg = f"Invalid status {value!r}; expected 'draft' or 'published'"
            raise ContentError(msg)

        # Unchanged values come back from re-rendered inputs; ignore them.
        if read_view(item).get(field_name) == value:
            return False

        if item.is_published and key == "status":
            await self.unpublish(item_id)
            return True

        patch = Patch.for_field(field_name, value)
        if key == "status":
            # Only reachable for unpublished items going live.
            patch = patch.merge(Patch(system={"published_at": item.published_at or _now_iso()}))

        if item.is_published:
            _apply(item, patch)
            item.draft = patch if item.draft is None else item.draft.merge(patch)
            pending = self._tracker.record(item_id, patch)
            self._scheduler.schedule("draft", item_id, pending.changes)
        else:
            _apply(item, patch)
            self._scheduler.schedule("live", item_id, patch)
            if item.is_published:
                self._published[item_id] = _published_copy(item)
        return True

    async def unpublish(self, item_id: str) -> ContentItem:
        """Take a published item offline, discarding its overlay.

        The in-memory revert happens first; a failed server write is logged
        and kept as an unsaved live write.

        """
        item = self._require(item_id)
        self._scheduler.cancel(item_id)
        self._tracker.clear(item_id)

        reverted = _published_copy(self._published.pop(item_id, item))
        reverted.system["status"] = "draft"
        reverted.system["published_at"] = None
        self._items[item_id] = reverted

        patch = Patch(system={"status": "draft", "published_at": None})
        try:
            await self._repository.delete_draft(self._collection, item_id)
            canonical = await self._repository.update(self._collection, item_id, patch)
        except RepositoryError as exc:
            print(
                f"  [loom] Failed to unpublish {self._collection}/{item_id}: {exc}",
                file=sys.stderr,
            )
            self._scheduler.mark_unsaved("live", item_id, patch)
            return self.read(item_id)

        apply_canonical(reverted, canonical)
        return self.read(item_id)

    async def publish(self, item_id: str) -> ContentItem:
        """Publish an unpublished item with a direct live write.

        Raises:
            RepositoryError: If the repository rejects the write.

        """
        item = self._require(item_id)
        if item.is_published:
            return self.read(item_id)

        await self._scheduler.flush(item_id, channel="live")
        patch = Patch(system={"status": "published", "published_at": _now_iso()})
        canonical = await self._repository.update(self._collection, item_id, patch)
        apply_canonical(item, canonical)
        if item.is_published:
            self._published[item_id] = _published_copy(item)
        return self.read(item_id)

    async def republish(self, item_id: str) -> ContentItem:
        """Publish the item's pending changes over its live version.

        Any draft save still waiting on the debounce timer is sent first.
        Edits made while the publish is in flight stay on the overlay and
        get a fresh draft save.

        Raises:
            RepositoryError: If the publish fails; pending changes are kept.

        """
        item = self._require(item_id)
        await self._scheduler.flush(item_id, channel="draft")
        await self._tracker.republish(item_id, item)
        # Queued and failed draft saves carry fields the publish already sent.
        self._scheduler.cancel(item_id, channel="draft")
        self._published[item_id] = _published_copy(item)
        leftover = self._tracker.get(item_id)
        if leftover is not None:
            self._scheduler.schedule("draft", item_id, leftover.changes)
        return self.read(item_id)

    async def discard(self, item_id: str) -> ContentItem:
        """Throw away pending changes and reload the live version.

        Raises:
            RepositoryError: If the draft cannot be deleted or the live item
                cannot be reloaded.  The local revert has already happened.

        """
        self._require(item_id)
        self._scheduler.cancel(item_id, channel="draft")
        self._tracker.clear(item_id)
        published = self._published.get(item_id)
        if published is not None:
            self._items[item_id] = _published_copy(published)

        await self._repository.delete_draft(self._collection, item_id)
        live = await self._repository.get(self._collection, item_id)
        self._items[item_id] = live
        if live.is_published:
            self._published[item_id] = _published_copy(live)
        return self.read(item_id)

    async def delete(self, item_id: str) -> None:
        """Remove an item, restoring it if the repository refuses.

        Raises:
            RepositoryError: If the delete fails (the item is restored).

        """
        self._require(item_id)
        order = list(self._items.items())
        removed = self._items.pop(item_id)
        published = self._published.pop(item_id, None)
        pending = self._tracker.clear(item_id)
        queued: dict[Channel, Patch | None] = {
            "draft": self._scheduler.draft.payload(item_id),
            "live": self._scheduler.live.payload(item_id),
        }
        failed: dict[Channel, Patch | None] = {
            channel: self._scheduler.unsaved(channel, item_id) for channel in queued
        }
        self._scheduler.cancel(item_id)

        try:
            await self._repository.delete(self._collection, item_id)
        except RepositoryError:
            print(
                f"  [loom] Failed to delete {self._collection}/{item_id}; restoring",
                file=sys.stderr,
            )
            self._items = dict(order)
            self._items[item_id] = removed
            if published is not None:
                self._published[item_id] = published
            if pending is not None:
                self._tracker.record(item_id, pending.changes)
            for channel, patch in failed.items():
                if patch is not None:
                    self._scheduler.mark_unsaved(channel, item_id, patch)
            for channel, patch in queued.items():
                if patch is not None:
                    self._scheduler.schedule(channel, item_id, patch)
            raise

    async def aclose(self) -> None:
        """Send every queued write and stop the timers."""
        await self._scheduler.flush()
        await self._scheduler.aclose()

    # ----- Internals -----

    def _require(self, item_id: str) -> ContentItem:
        item = self._items.get(item_id)
        if item is None:
            msg = f"Unknown item {item_id!r} in collection {self._collection!r}"
            raise ContentError(msg)
        return item

    def _live_saved(self, item_id: str, canonical: ContentItem) -> None:
        item = self._items.get(item_id)
        if item is None:
            return
        apply_canonical(item, canonical)
        if item.is_published:
            self._published[item_id] = _published_copy(item)


def _apply(item: ContentItem, patch: Patch) -> None:
    item.system.update(patch.system)
    item.data.update(patch.data)

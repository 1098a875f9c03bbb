"""Shared test fixtures for loom."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from loom._errors import RepositoryError
from loom.content.model import ContentItem, Patch
from loom.content.repository import SnapshotItem, parse_snapshot


class ManualClock:
    """Virtual time for schedulers and the detector.

    ``sleep`` only yields to the event loop; time moves when a test calls
    ``advance``.  Due work is then run with ``run_due()`` / ``flush()``.
    """

    def __init__(self, start: float = 100.0) -> None:
        self.time = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.time

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.time += seconds


class FakeRepository:
    """In-memory ContentRepository that records every call.

    Methods named in ``fail`` raise ``RepositoryError``.  ``snapshot`` is
    the body returned by the polling endpoint.
    """

    def __init__(self, items: list[ContentItem] | None = None) -> None:
        self.items: dict[str, ContentItem] = {item.id: item.copy() for item in items or []}
        self.drafts: dict[str, Patch] = {}
        self.snapshot: dict[str, Any] = {"items": []}
        self.calls: list[tuple[Any, ...]] = []
        self.fail: set[str] = set()
        self._clock = 0

    def calls_to(self, method: str) -> list[tuple[Any, ...]]:
        return [call for call in self.calls if call[0] == method]

    def _check(self, method: str) -> None:
        if method in self.fail:
            msg = f"{method} failed"
            raise RepositoryError(msg, status=500)

    def _stamp(self) -> str:
        self._clock += 1
        return f"2024-01-01T00:00:{self._clock:02d}Z"

    def _out(self, item_id: str) -> ContentItem:
        item = self.items[item_id].copy()
        item.draft = self.drafts.get(item_id) if item.is_published else None
        return item

    async def fetch_snapshot(self) -> tuple[SnapshotItem, ...]:
        self.calls.append(("fetch_snapshot",))
        self._check("fetch_snapshot")
        return parse_snapshot(self.snapshot)

    async def get(self, collection: str, item_id: str) -> ContentItem:
        self.calls.append(("get", collection, item_id))
        self._check("get")
        return self._out(item_id)

    async def update(self, collection: str, item_id: str, patch: Patch) -> ContentItem:
        self.calls.append(("update", collection, item_id, patch))
        self._check("update")
        item = self.items.setdefault(item_id, ContentItem(id=item_id))
        item.system.update(patch.system)
        item.data.update(patch.data)
        item.system["updated_at"] = self._stamp()
        return self._out(item_id)

    async def delete(self, collection: str, item_id: str) -> None:
        self.calls.append(("delete", collection, item_id))
        self._check("delete")
        self.items.pop(item_id, None)
        self.drafts.pop(item_id, None)

    async def save_draft(self, collection: str, item_id: str, patch: Patch) -> None:
        self.calls.append(("save_draft", collection, item_id, patch))
        self._check("save_draft")
        self.drafts[item_id] = patch

    async def delete_draft(self, collection: str, item_id: str) -> None:
        self.calls.append(("delete_draft", collection, item_id))
        self._check("delete_draft")
        self.drafts.pop(item_id, None)

    async def publish(self, collection: str, item_id: str, draft: Patch | None) -> ContentItem:
        self.calls.append(("publish", collection, item_id, draft))
        self._check("publish")
        item = self.items[item_id]
        if draft is not None:
            item.system.update(draft.system)
            item.data.update(draft.data)
        item.system["status"] = "published"
        item.system.setdefault("published_at", self._stamp())
        item.system["updated_at"] = self._stamp()
        self.drafts.pop(item_id, None)
        return self._out(item_id)


class GatedRepository(FakeRepository):
    """FakeRepository whose ``publish`` holds until ``release`` is set."""

    def __init__(self, items: list[ContentItem] | None = None) -> None:
        super().__init__(items)
        self.publishing = asyncio.Event()
        self.release = asyncio.Event()

    async def publish(self, collection: str, item_id: str, draft: Patch | None) -> ContentItem:
        self.publishing.set()
        await self.release.wait()
        return await super().publish(collection, item_id, draft)


def make_item(
    item_id: str = "1",
    *,
    status: str = "draft",
    title: str = "Hello",
    slug: str = "hello",
    data: dict[str, Any] | None = None,
    draft: Patch | None = None,
    collection: str = "blog",
) -> ContentItem:
    """Build a ContentItem the way the repository would return it."""
    system: dict[str, Any] = {
        "title": title,
        "slug": slug,
        "status": status,
        "collection": collection,
        "updated_at": "2024-01-01T00:00:00Z",
        "published_at": "2024-01-01T00:00:00Z" if status == "published" else None,
    }
    return ContentItem(
        id=item_id,
        system=system,
        data=dict(data or {}),
        draft=draft if status == "published" else None,
    )


def snapshot_entry(
    item_id: str = "1",
    *,
    collection: str = "blog",
    slug: str | None = "hello",
    status: str = "draft",
    title: str | None = "Hello",
    updated_at: str = "t1",
) -> dict[str, Any]:
    """One item of a polling endpoint response."""
    return {
        "id": item_id,
        "collection": collection,
        "slug": slug,
        "status": status,
        "title": title,
        "updated_at": updated_at,
    }


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def repo() -> FakeRepository:
    return FakeRepository()

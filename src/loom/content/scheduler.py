"""Debounced persistence.

``DebounceScheduler`` coalesces repeated ``schedule(key, payload)`` calls
inside a delay window into one callback carrying the accumulated payload.
Timers are asyncio tasks kept in a single key -> task map; ``flush`` fires a
key immediately and ``cancel`` discards it.  Time comes from an injectable
``Clock`` so tests can drive the scheduler with a virtual clock.

``PersistenceScheduler`` layers the two write channels of an editing
session on top:

- **draft**: saves the overlay of a published item (``POST .../draft``)
- **live**: writes straight into an unpublished item (``PUT``)

A failed write is kept as *unsaved* and folded into the next write for the
same item and channel, so an edit is never dropped silently.
"""

from __future__ import annotations

import asyncio
import sys
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from loom._errors import RepositoryError
from loom.content.model import ContentItem, Patch

if TYPE_CHECKING:
    from loom._types import Channel
    from loom.content.repository import ContentRepository
    from loom.observability.collector import StackCollector


class Clock(Protocol):
    """Time source for timers."""

    def now(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class MonotonicClock:
    """Wall-clock implementation backed by ``time.monotonic`` and ``asyncio.sleep``."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


@dataclass(slots=True)
class _Scheduled[P]:
    payload: P
    due: float


class DebounceScheduler[K, P]:
    """Per-key debounce with explicit flush and cancel.

    Args:
        callback: Awaited with ``(key, payload)`` when a key fires.
        delay: Default quiet period in seconds.
        merge: Combines a pending payload with a newer one.  Without it the
            newer payload replaces the pending one.
        clock: Time source (defaults to ``MonotonicClock``).

    When no event loop is running, ``schedule`` only records the entry;
    the caller drives it with ``run_due()`` or ``flush()``.

    """

    def __init__(
        self,
        callback: Callable[[K, P], Awaitable[None]],
        *,
        delay: float,
        merge: Callable[[P, P], P] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._callback = callback
        self._delay = delay
        self._merge = merge
        self._clock: Clock = clock or MonotonicClock()
        self._entries: dict[K, _Scheduled[P]] = {}
        self._timers: dict[K, asyncio.Task[None]] = {}
        self._firing: dict[K, asyncio.Task[None]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def pending(self, key: K) -> bool:
        """Whether a write is scheduled for *key*."""
        return key in self._entries

    def payload(self, key: K) -> P | None:
        """The accumulated payload waiting for *key*."""
        entry = self._entries.get(key)
        return entry.payload if entry is not None else None

    def schedule(self, key: K, payload: P, delay: float | None = None) -> None:
        """Schedule *payload* for *key*, restarting the key's quiet period."""
        wait = self._delay if delay is None else delay
        existing = self._entries.get(key)
        if existing is not None and self._merge is not None:
            payload = self._merge(existing.payload, payload)
        self._entries[key] = _Scheduled(payload=payload, due=self._clock.now() + wait)
        self._arm(key, wait)

    async def flush(self, key: K | None = None) -> int:
        """Fire *key* (or every key) now.  Returns the number of callbacks run."""
        await self._settle(key)
        keys = [key] if key is not None else list(self._entries)
        fired = 0
        for k in keys:
            self._disarm(k)
            if await self._fire(k):
                fired += 1
        return fired

    def cancel(self, key: K | None = None) -> int:
        """Discard *key* (or every key) without firing.  Returns entries dropped."""
        keys = [key] if key is not None else list(self._entries)
        dropped = 0
        for k in keys:
            self._disarm(k)
            if self._entries.pop(k, None) is not None:
                dropped += 1
        return dropped

    async def run_due(self) -> int:
        """Fire every key whose quiet period has elapsed."""
        now = self._clock.now()
        due = [k for k, entry in self._entries.items() if entry.due <= now]
        fired = 0
        for k in due:
            self._disarm(k)
            if await self._fire(k):
                fired += 1
        return fired

    async def aclose(self) -> None:
        """Cancel all timers; scheduled entries stay available to ``flush``."""
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)

    def _arm(self, key: K, wait: float) -> None:
        self._disarm(key)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timers[key] = loop.create_task(self._timer(key, wait))

    def _disarm(self, key: K) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()

    async def _timer(self, key: K, wait: float) -> None:
        await self._clock.sleep(wait)
        # Detach before firing so a reschedule can't cancel an in-flight write.
        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]
        entry = self._entries.get(key)
        if entry is None:
            return
        early = entry.due - self._clock.now()
        if early > 0:
            self._arm(key, early)
            return
        task = asyncio.current_task()
        if task is not None:
            self._firing[key] = task
        try:
            await self._fire(key)
        except Exception as exc:
            print(f"  [loom] Debounced write error ({key}): {exc}", file=sys.stderr)
        finally:
            if self._firing.get(key) is task:
                del self._firing[key]

    async def _settle(self, key: K | None) -> None:
        """Wait for timer-started writes that are already in flight."""
        current = asyncio.current_task()
        running = [
            task
            for k, task in self._firing.items()
            if (key is None or k == key) and task is not current
        ]
        if running:
            await asyncio.wait(running)

    async def _fire(self, key: K) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        await self._callback(key, entry.payload)
        return True


class PersistenceScheduler:
    """Debounced draft and live writes for one collection.

    Args:
        repository: Where writes go.
        collection: Collection slug of the items being edited.
        delay: Debounce quiet period in seconds.
        clock: Time source shared by both channels.
        collector: Optional observability collector.

    """

    def __init__(
        self,
        repository: ContentRepository,
        collection: str,
        *,
        delay: float = 1.0,
        clock: Clock | None = None,
        collector: StackCollector | None = None,
    ) -> None:
        self._repository = repository
        self._collection = collection
        self._collector = collector
        self._draft: DebounceScheduler[str, Patch] = DebounceScheduler(
            self._save_draft, delay=delay, merge=Patch.merge, clock=clock
        )
        self._live: DebounceScheduler[str, Patch] = DebounceScheduler(
            self._save_live, delay=delay, merge=Patch.merge, clock=clock
        )
        self._unsaved: dict[tuple[Channel, str], Patch] = {}
        self._on_live_saved: Callable[[str, ContentItem], None] | None = None

    @property
    def draft(self) -> DebounceScheduler[str, Patch]:
        """The draft-save channel."""
        return self._draft

    @property
    def live(self) -> DebounceScheduler[str, Patch]:
        """The live-save channel."""
        return self._live

    def on_live_saved(self, callback: Callable[[str, ContentItem], None] | None) -> None:
        """Receive the server's item after each successful live write."""
        self._on_live_saved = callback

    def schedule(self, channel: Channel, item_id: str, patch: Patch) -> None:
        """Queue *patch* on *channel*, folding in any earlier failed write."""
        failed = self._unsaved.pop((channel, item_id), None)
        if failed is not None:
            patch = failed.merge(patch)
        self._channel(channel).schedule(item_id, patch)

    async def flush(self, item_id: str | None = None, *, channel: Channel | None = None) -> int:
        """Write scheduled changes now instead of waiting for the timer."""
        fired = 0
        for name in _channels(channel):
            fired += await self._channel(name).flush(item_id)
        return fired

    def cancel(self, item_id: str | None = None, *, channel: Channel | None = None) -> int:
        """Drop scheduled and failed writes without sending them."""
        dropped = 0
        for name in _channels(channel):
            dropped += self._channel(name).cancel(item_id)
            for key in [k for k in self._unsaved if k[0] == name]:
                if item_id is None or key[1] == item_id:
                    del self._unsaved[key]
        return dropped

    def mark_unsaved(self, channel: Channel, item_id: str, patch: Patch) -> None:
        """Remember a write that failed outside the debounce path."""
        key = (channel, item_id)
        existing = self._unsaved.get(key)
        self._unsaved[key] = patch if existing is None else existing.merge(patch)

    def has_unsaved(self, item_id: str, *, channel: Channel | None = None) -> bool:
        """True while a write is scheduled for the item or its last write failed."""
        return any(
            self._channel(name).pending(item_id) or (name, item_id) in self._unsaved
            for name in _channels(channel)
        )

    def unsaved(self, channel: Channel, item_id: str) -> Patch | None:
        """The failed write kept for retry, if any."""
        return self._unsaved.get((channel, item_id))

    async def retry_unsaved(self) -> int:
        """Re-send every failed write immediately."""
        keys = list(self._unsaved)
        for channel, item_id in keys:
            self.schedule(channel, item_id, Patch())
        fired = 0
        for channel, item_id in keys:
            fired += await self._channel(channel).flush(item_id)
        return fired

    async def aclose(self) -> None:
        await self._draft.aclose()
        await self._live.aclose()

    def _channel(self, channel: Channel) -> DebounceScheduler[str, Patch]:
        return self._draft if channel == "draft" else self._live

    async def _save_draft(self, item_id: str, patch: Patch) -> None:
        try:
            await self._repository.save_draft(self._collection, item_id, patch)
        except RepositoryError as exc:
            self._failed("draft", item_id, patch, exc)
            return
        self._record("draft", item_id, patch, ok=True)

    async def _save_live(self, item_id: str, patch: Patch) -> None:
        try:
            item = await self._repository.update(self._collection, item_id, patch)
        except RepositoryError as exc:
            self._failed("live", item_id, patch, exc)
            return
        self._record("live", item_id, patch, ok=True)
        # A newer edit is already queued; the server copy would roll it back.
        if self._on_live_saved is not None and not self._live.pending(item_id):
            self._on_live_saved(item_id, item)

    def _failed(self, channel: Channel, item_id: str, patch: Patch, exc: Exception) -> None:
        print(
            f"  [loom] Failed to save {channel} for {self._collection}/{item_id}: {exc}",
            file=sys.stderr,
        )
        self.mark_unsaved(channel, item_id, patch)
        self._record(channel, item_id, patch, ok=False)

    def _record(self, channel: Channel, item_id: str, patch: Patch, *, ok: bool) -> None:
        if self._collector is not None:
            self._collector.record_write(channel, item_id, fields=patch.field_count, ok=ok)


def _channels(channel: Channel | None) -> tuple[Channel, ...]:
    if channel is None:
        return ("draft", "live")
    return (channel,)

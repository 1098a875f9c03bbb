"""Change detector — polls the repository snapshot and emits change events.

State machine::

    idle --start()/tick()--> syncing --first pass--> steady-state
      ^                         |                        |
      |                         +---- max failures ------+--> stopped
      +------------------------------ start() ---------------------+

``tick()`` runs exactly one poll cycle and is what tests drive directly.
``start()`` wraps it in a loop task that sleeps ``interval`` seconds between
cycles.  The interval is fixed: success never backs off, and only
``max_failures`` consecutive failed fetches stop the loop.

The first successful cycle only seeds the snapshot records, so a restart of
the process does not replay ``content.created`` for every existing item.
Records survive ``stop()``/``start()`` within one detector.
"""

from __future__ import annotations

import asyncio
import sys
import time
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Literal

from loom._errors import RepositoryError
from loom.content.scheduler import MonotonicClock
from loom.sync.classifier import Classified, SnapshotRecord, classify, classify_removed
from loom.sync.hasher import content_hash
from loom.webhook.payload import WebhookPayload

if TYPE_CHECKING:
    from loom.content.repository import ContentRepository, SnapshotItem
    from loom.content.scheduler import Clock
    from loom.observability.collector import StackCollector
    from loom.sync.dispatcher import EventDispatcher

type DetectorState = Literal["idle", "syncing", "steady-state", "stopped"]


class ChangeDetector:
    """Polling change detector.

    Args:
        repository: Source of snapshots.
        dispatcher: Receives every classified event, in order.
        site_id: Stamped on emitted payloads.
        interval: Seconds between poll cycles.
        timeout: Seconds before a snapshot fetch counts as failed.
        max_failures: Consecutive failures that stop the detector.
        clock: Time source for the inter-cycle sleep.
        collector: Optional observability collector.

    """

    def __init__(
        self,
        repository: ContentRepository,
        dispatcher: EventDispatcher,
        *,
        site_id: str,
        interval: float = 2.0,
        timeout: float = 10.0,
        max_failures: int = 3,
        clock: Clock | None = None,
        collector: StackCollector | None = None,
    ) -> None:
        self._repository = repository
        self._dispatcher = dispatcher
        self._site_id = site_id
        self._interval = interval
        self._timeout = timeout
        self._max_failures = max_failures
        self._clock: Clock = clock or MonotonicClock()
        self._collector = collector

        self._state: DetectorState = "idle"
        self._records: dict[str, SnapshotRecord] = {}
        self._seeded = False
        self._failures = 0

        # Loop bookkeeping.  ``_active`` is cleared only by the loop task
        # itself on exit, so a set flag with a finished task is stale.
        self._active = False
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._in_cycle = False

    # ----- Introspection -----

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def failures(self) -> int:
        """Consecutive failed cycles since the last success."""
        return self._failures

    @property
    def records(self) -> Mapping[str, SnapshotRecord]:
        """Read-only view of the snapshot records, keyed ``collection::item_id``."""
        return MappingProxyType(self._records)

    @property
    def is_running(self) -> bool:
        """Whether a poll loop task is alive."""
        return self._task is not None and not self._task.done()

    def stats(self) -> dict[str, Any]:
        return {
            "state": self._state,
            "running": self.is_running,
            "failures": self._failures,
            "max_failures": self._max_failures,
            "tracked_items": len(self._records),
            "seeded": self._seeded,
            "interval": self._interval,
        }

    # ----- Lifecycle -----

    def start(self) -> bool:
        """Start the poll loop.  Returns False when it is already running.

        Must be called with an event loop running.  A restart after
        ``stopped`` resets the failure counter and keeps the records.

        """
        if self._active:
            if self.is_running:
                return False
            print("  [loom] Clearing stale polling flag (no live poll task)", file=sys.stderr)
            self._active = False
            self._task = None

        loop = asyncio.get_running_loop()
        self._failures = 0
        self._stopping = False
        self._set_state("steady-state" if self._seeded else "syncing")
        self._active = True
        self._task = loop.create_task(self._run(), name="loom-change-detector")
        print(
            f"  [loom] Polling for content changes every {self._interval:g}s",
            file=sys.stderr,
        )
        return True

    async def stop(self) -> None:
        """Stop polling.

        A cycle that is mid-fetch is allowed to finish; it is just not
        rescheduled.  A loop sleeping between cycles is cancelled.

        """
        self._stopping = True
        task = self._task
        if self._state != "stopped":
            self._set_state("stopped")
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Called from a handler inside the cycle; the loop exits after it.
            return
        if not self._in_cycle:
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        # A task cancelled before its first step never reaches _run's finally.
        if self._task is task:
            self._task = None
        self._active = False
        print("  [loom] Polling stopped", file=sys.stderr)

    async def _run(self) -> None:
        try:
            while not self._stopping and self._state != "stopped":
                await self.tick()
                if self._stopping or self._state == "stopped":
                    break
                await self._clock.sleep(self._interval)
        finally:
            self._active = False
            if self._task is asyncio.current_task():
                self._task = None

    # ----- Poll cycle -----

    async def tick(self) -> int:
        """Run one poll cycle.  Returns the number of events dispatched.

        Fetch failures are counted, never raised.  A stopped detector does
        nothing until ``start()``.

        """
        if self._state == "stopped" or self._in_cycle:
            return 0
        if self._state == "idle":
            self._set_state("syncing")

        self._in_cycle = True
        started = time.perf_counter()
        try:
            try:
                snapshot = await asyncio.wait_for(
                    self._repository.fetch_snapshot(), timeout=self._timeout
                )
            except TimeoutError:
                self._fail(f"snapshot fetch timed out after {self._timeout:g}s")
                return 0
            except RepositoryError as exc:
                self._fail(str(exc))
                return 0

            self._failures = 0
            first_pass = not self._seeded
            emitted = await self._reconcile(snapshot, first_pass=first_pass)
            self._seeded = True
            if self._state == "syncing":
                self._set_state("steady-state")

            if self._collector is not None:
                self._collector.record_poll(
                    items_seen=len(snapshot),
                    events_emitted=emitted,
                    seeded=first_pass,
                    duration_ms=(time.perf_counter() - started) * 1000,
                )
            return emitted
        finally:
            self._in_cycle = False

    async def _reconcile(self, snapshot: tuple[SnapshotItem, ...], *, first_pass: bool) -> int:
        emitted = 0
        seen: set[str] = set()
        for item in snapshot:
            key = item.key
            if key in seen:
                continue
            seen.add(key)
            current = SnapshotRecord(
                hash=content_hash(item.raw, collector=self._collector),
                slug=item.slug,
                status=item.status,
                title=item.title,
                updated_at=item.updated_at,
            )
            for change in classify(self._records.get(key), current, first_pass=first_pass):
                await self._emit(change, item.collection, item.item_id)
                emitted += 1
            self._records[key] = current

        for key, change in classify_removed(self._records, seen, first_pass=first_pass):
            collection, _, item_id = key.partition("::")
            await self._emit(change, collection, item_id)
            emitted += 1
            del self._records[key]
        return emitted

    async def _emit(self, change: Classified, collection: str, item_id: str) -> None:
        payload = WebhookPayload.create(
            change.event,
            site_id=self._site_id,
            collection=collection,
            item_id=item_id,
            slug=change.slug,
        )
        print(f"  [loom] {change.event} {payload.path}", file=sys.stderr)
        await self._dispatcher.dispatch(payload)

    def _fail(self, error: str) -> None:
        self._failures += 1
        print(
            f"  [loom] Poll failed ({self._failures}/{self._max_failures}): {error}",
            file=sys.stderr,
        )
        if self._collector is not None:
            self._collector.record_poll_failure(self._failures, error)
        if self._failures >= self._max_failures:
            print(
                f"  [loom] Polling stopped after {self._failures} consecutive failures; "
                "restart to resume",
                file=sys.stderr,
            )
            self._set_state("stopped")

    def _set_state(self, new: DetectorState) -> None:
        old = self._state
        if old == new:
            return
        self._state = new
        if self._collector is not None:
            self._collector.record_state_change(old, new)

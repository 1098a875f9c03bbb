"""Tests for loom.sync.detector — poll cycles and the lifecycle state machine."""

from __future__ import annotations

import asyncio

import pytest

from loom.content.repository import SnapshotItem
from loom.observability import (
    DetectorStateChanged,
    EventLog,
    PollCompleted,
    PollFailed,
    StackCollector,
)
from loom.sync.detector import ChangeDetector
from loom.sync.dispatcher import EventDispatcher
from loom.webhook.payload import WebhookPayload
from tests.conftest import FakeRepository, ManualClock, snapshot_entry


def _detector(
    repo: FakeRepository,
    clock: ManualClock,
    received: list[WebhookPayload],
    *,
    collector: StackCollector | None = None,
    timeout: float = 10.0,
) -> ChangeDetector:
    dispatcher = EventDispatcher(collector=collector)
    dispatcher.register(received.append)
    return ChangeDetector(
        repo,
        dispatcher,
        site_id="site-1",
        interval=2.0,
        timeout=timeout,
        max_failures=3,
        clock=clock,
        collector=collector,
    )


async def _wait_until(condition, attempts: int = 500) -> None:
    for _ in range(attempts):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


# ---------------------------------------------------------------------------
# Classification scenarios across successive polls
# ---------------------------------------------------------------------------


class TestClassificationScenarios:
    @pytest.mark.asyncio
    async def test_four_poll_lifecycle(self, repo: FakeRepository, clock: ManualClock) -> None:
        received: list[WebhookPayload] = []
        detector = _detector(repo, clock, received)

        # First poll seeds only.
        repo.snapshot = {"items": [snapshot_entry("1", slug="old-slug", status="draft")]}
        assert await detector.tick() == 0
        assert received == []
        assert "blog::1" in detector.records

        # Draft -> published.
        repo.snapshot = {
            "items": [snapshot_entry("1", slug="old-slug", status="published", updated_at="t2")]
        }
        await detector.tick()
        assert [(e.event, e.slug) for e in received] == [("content.published", "old-slug")]
        received.clear()

        # Slug renamed, same status.
        repo.snapshot = {
            "items": [snapshot_entry("1", slug="new-slug", status="published", updated_at="t2")]
        }
        await detector.tick()
        assert [(e.event, e.slug) for e in received] == [
            ("content.updated", "new-slug"),
            ("content.updated", "old-slug"),
        ]
        received.clear()

        # Item gone.
        repo.snapshot = {"items": []}
        await detector.tick()
        assert [(e.event, e.slug) for e in received] == [("content.deleted", "new-slug")]
        assert received[0].item_id == "1"
        assert received[0].collection == "blog"
        assert received[0].site_id == "site-1"
        assert detector.records == {}

    @pytest.mark.asyncio
    async def test_created_after_seed(self, repo: FakeRepository, clock: ManualClock) -> None:
        received: list[WebhookPayload] = []
        detector = _detector(repo, clock, received)
        repo.snapshot = {"items": [snapshot_entry("1")]}
        await detector.tick()

        repo.snapshot = {"items": [snapshot_entry("1"), snapshot_entry("2", slug="two")]}
        await detector.tick()

        assert [(e.event, e.item_id) for e in received] == [("content.created", "2")]

    @pytest.mark.asyncio
    async def test_identical_refetch_is_silent(
        self, repo: FakeRepository, clock: ManualClock
    ) -> None:
        received: list[WebhookPayload] = []
        detector = _detector(repo, clock, received)
        repo.snapshot = {"items": [snapshot_entry("1")]}
        await detector.tick()
        await detector.tick()
        await detector.tick()
        assert received == []

    @pytest.mark.asyncio
    async def test_same_id_in_two_collections(
        self, repo: FakeRepository, clock: ManualClock
    ) -> None:
        received: list[WebhookPayload] = []
        detector = _detector(repo, clock, received)
        repo.snapshot = {"items": [snapshot_entry("1", collection="blog")]}
        await detector.tick()
        repo.snapshot = {
            "items": [snapshot_entry("1", collection="blog"), snapshot_entry("1", collection="docs")]
        }
        await detector.tick()
        assert [(e.event, e.collection) for e in received] == [("content.created", "docs")]


# ---------------------------------------------------------------------------
# Failures and lifecycle
# ---------------------------------------------------------------------------


class TestFailures:
    @pytest.mark.asyncio
    async def test_three_failures_stop_and_start_resumes(
        self, repo: FakeRepository, clock: ManualClock
    ) -> None:
        detector = _detector(repo, clock, [])
        repo.fail.add("fetch_snapshot")

        for expected in (1, 2, 3):
            assert await detector.tick() == 0
            assert detector.failures == expected
        assert detector.state == "stopped"

        # Stopped: further ticks do not fetch.
        fetches = len(repo.calls_to("fetch_snapshot"))
        await detector.tick()
        assert len(repo.calls_to("fetch_snapshot")) == fetches

        repo.fail.clear()
        assert detector.start() is True
        assert detector.failures == 0
        assert detector.state in {"syncing", "steady-state"}
        await _wait_until(lambda: detector.state == "steady-state")
        await detector.stop()
        assert detector.state == "stopped"
        assert not detector.is_running

    @pytest.mark.asyncio
    async def test_success_resets_counter(self, repo: FakeRepository, clock: ManualClock) -> None:
        detector = _detector(repo, clock, [])
        repo.fail.add("fetch_snapshot")
        await detector.tick()
        await detector.tick()
        repo.fail.clear()
        await detector.tick()
        assert detector.failures == 0
        assert detector.state == "steady-state"

    @pytest.mark.asyncio
    async def test_failure_skips_classification(
        self, repo: FakeRepository, clock: ManualClock
    ) -> None:
        received: list[WebhookPayload] = []
        detector = _detector(repo, clock, received)
        repo.snapshot = {"items": [snapshot_entry("1")]}
        await detector.tick()

        repo.fail.add("fetch_snapshot")
        await detector.tick()

        assert received == []
        assert "blog::1" in detector.records

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, clock: ManualClock) -> None:
        class SlowRepository(FakeRepository):
            async def fetch_snapshot(self) -> tuple[SnapshotItem, ...]:
                await asyncio.sleep(1.0)
                return ()

        collector = StackCollector(EventLog())
        detector = _detector(SlowRepository(), clock, [], collector=collector, timeout=0.01)

        assert await detector.tick() == 0

        assert detector.failures == 1
        failures = collector.log.query(event_type=PollFailed)
        assert "timed out" in failures[0].error

    @pytest.mark.asyncio
    async def test_loop_stops_itself(self, repo: FakeRepository, clock: ManualClock) -> None:
        detector = _detector(repo, clock, [])
        repo.fail.add("fetch_snapshot")

        detector.start()
        await _wait_until(lambda: not detector.is_running)

        assert detector.state == "stopped"
        assert len(repo.calls_to("fetch_snapshot")) == 3
        assert clock.sleeps == [2.0, 2.0]


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, repo: FakeRepository, clock: ManualClock) -> None:
        detector = _detector(repo, clock, [])
        assert detector.start() is True
        assert detector.start() is False
        await detector.stop()

    @pytest.mark.asyncio
    async def test_stale_flag_is_cleared(self, repo: FakeRepository, clock: ManualClock) -> None:
        detector = _detector(repo, clock, [])
        # Active flag left set with no poll task behind it.
        detector._active = True

        assert detector.start() is True
        assert detector.is_running
        await detector.stop()

    @pytest.mark.asyncio
    async def test_restart_keeps_records(self, repo: FakeRepository, clock: ManualClock) -> None:
        received: list[WebhookPayload] = []
        detector = _detector(repo, clock, received)
        repo.snapshot = {"items": [snapshot_entry("1")]}
        await detector.tick()
        await detector.stop()

        repo.snapshot = {"items": [snapshot_entry("1"), snapshot_entry("2", slug="two")]}
        detector.start()
        await _wait_until(lambda: len(received) == 1)
        await detector.stop()

        assert received[0].event == "content.created"
        assert received[0].item_id == "2"

    @pytest.mark.asyncio
    async def test_stop_lets_inflight_cycle_finish(self, clock: ManualClock) -> None:
        release = asyncio.Event()

        class GatedRepository(FakeRepository):
            async def fetch_snapshot(self) -> tuple[SnapshotItem, ...]:
                self.calls.append(("fetch_snapshot",))
                await release.wait()
                return ()

        repo = GatedRepository()
        collector = StackCollector(EventLog())
        detector = _detector(repo, clock, [], collector=collector)
        detector.start()
        await _wait_until(lambda: len(repo.calls) == 1)

        stopping = asyncio.create_task(detector.stop())
        await asyncio.sleep(0)
        assert not stopping.done()
        release.set()
        await stopping

        assert len(collector.log.query(event_type=PollCompleted)) == 1
        assert len(repo.calls) == 1
        assert not detector.is_running

    @pytest.mark.asyncio
    async def test_state_changes_recorded(
        self, repo: FakeRepository, clock: ManualClock
    ) -> None:
        collector = StackCollector(EventLog())
        detector = _detector(repo, clock, [], collector=collector)
        await detector.tick()
        await detector.stop()

        changes = [
            (e.old_state, e.new_state)
            for e in reversed(collector.log.query(event_type=DetectorStateChanged))
        ]
        assert changes == [
            ("idle", "syncing"),
            ("syncing", "steady-state"),
            ("steady-state", "stopped"),
        ]

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_loop(
        self, repo: FakeRepository, clock: ManualClock
    ) -> None:
        dispatcher = EventDispatcher()
        received: list[str] = []

        def broken(event: WebhookPayload) -> None:
            raise RuntimeError("boom")

        dispatcher.register(broken)
        dispatcher.register(lambda event: received.append(event.item_id))
        detector = ChangeDetector(repo, dispatcher, site_id="s", clock=clock)

        repo.snapshot = {"items": []}
        await detector.tick()
        repo.snapshot = {"items": [snapshot_entry("1")]}
        await detector.tick()

        assert received == ["1"]
        assert detector.state == "steady-state"
        assert detector.failures == 0

    def test_stats(self, repo: FakeRepository, clock: ManualClock) -> None:
        stats = _detector(repo, clock, []).stats()
        assert stats["state"] == "idle"
        assert stats["running"] is False
        assert stats["max_failures"] == 3

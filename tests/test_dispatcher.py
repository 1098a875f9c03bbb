"""Tests for loom.sync.dispatcher — ordered handler delivery and the event bus."""

from __future__ import annotations

import pytest

from loom.observability import ChangeDispatched, EventLog, HandlerFailed, StackCollector
from loom.sync.dispatcher import ALL_EVENTS, EventBus, EventDispatcher
from loom.webhook.payload import WebhookPayload


def _event(event: str = "content.updated", item_id: str = "1") -> WebhookPayload:
    return WebhookPayload.create(
        event,  # type: ignore[arg-type]
        site_id="site-1",
        collection="blog",
        item_id=item_id,
        slug="hello",
    )


# ---------------------------------------------------------------------------
# EventDispatcher
# ---------------------------------------------------------------------------


class TestEventDispatcher:
    @pytest.mark.asyncio
    async def test_handlers_run_in_registration_order(self) -> None:
        dispatcher = EventDispatcher()
        calls: list[str] = []

        async def first(event: WebhookPayload) -> None:
            calls.append("first")

        dispatcher.register(first)
        dispatcher.register(lambda event: calls.append("second"))

        assert await dispatcher.dispatch(_event()) == 2
        assert calls == ["first", "second"]

    @pytest.mark.asyncio
    async def test_events_keep_order(self) -> None:
        dispatcher = EventDispatcher()
        seen: list[str] = []
        dispatcher.register(lambda event: seen.append(event.item_id))

        for item_id in ("a", "b", "c"):
            await dispatcher.dispatch(_event(item_id=item_id))

        assert seen == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_failing_handler_is_skipped_and_recorded(self) -> None:
        collector = StackCollector(EventLog())
        dispatcher = EventDispatcher(collector=collector)
        seen: list[str] = []

        def broken(event: WebhookPayload) -> None:
            raise ValueError("nope")

        dispatcher.register(broken)
        dispatcher.register(lambda event: seen.append(event.event))

        delivered = await dispatcher.dispatch(_event())

        assert delivered == 1
        assert seen == ["content.updated"]
        failure = collector.log.query(event_type=HandlerFailed)[0]
        assert "broken" in failure.handler
        assert failure.error == "nope"
        dispatched = collector.log.query(event_type=ChangeDispatched)[0]
        assert dispatched.handlers == 1
        assert dispatched.slug == "hello"

    @pytest.mark.asyncio
    async def test_unregister(self) -> None:
        dispatcher = EventDispatcher()
        seen: list[str] = []
        unregister = dispatcher.register(lambda event: seen.append("x"))
        assert dispatcher.handler_count == 1

        unregister()
        unregister()

        assert dispatcher.handler_count == 0
        assert await dispatcher.dispatch(_event()) == 0
        assert seen == []

    @pytest.mark.asyncio
    async def test_bus_receives_after_handlers(self) -> None:
        dispatcher = EventDispatcher()
        order: list[str] = []
        dispatcher.register(lambda event: order.append("handler"))
        dispatcher.bus.on("content.deleted", lambda event: order.append("named"))
        dispatcher.bus.on(ALL_EVENTS, lambda event: order.append("all"))

        await dispatcher.dispatch(_event("content.deleted"))

        assert order == ["handler", "named", "all"]


# ---------------------------------------------------------------------------
# EventBus
# ---------------------------------------------------------------------------


class TestEventBus:
    @pytest.mark.asyncio
    async def test_only_matching_channel(self) -> None:
        bus = EventBus()
        seen: list[str] = []
        bus.on("content.created", lambda event: seen.append(event.event))

        assert await bus.emit("content.updated", _event()) == 0
        assert await bus.emit("content.created", _event("content.created")) == 1
        assert seen == ["content.created"]

    @pytest.mark.asyncio
    async def test_listener_error_isolated(self) -> None:
        bus = EventBus()
        seen: list[int] = []

        async def broken(event: WebhookPayload) -> None:
            raise RuntimeError("listener down")

        bus.on("*", broken)
        bus.on("*", lambda event: seen.append(1))

        assert await bus.emit("*", _event()) == 1
        assert seen == [1]

    def test_off_and_counts(self) -> None:
        bus = EventBus()

        def listener(event: WebhookPayload) -> None:
            return None

        detach = bus.on("content.updated", listener)
        bus.on("*", listener)
        assert bus.listener_count() == 2
        assert bus.listener_count("content.updated") == 1

        detach()
        bus.off("content.updated", listener)
        bus.off("missing", listener)

        assert bus.listener_count("content.updated") == 0
        assert bus.listener_count() == 1

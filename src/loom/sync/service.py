"""LiveUpdates — the process-wide owner of change notification state.

One instance per process holds what would otherwise be module globals: the
handler registry, the change detector with its snapshot records, and the
repository client used for polling.  Tests build a fresh instance each.

Registering the first webhook callback starts the detector when polling is
enabled; registering more callbacks never starts a second loop.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from loom.content.repository import HttpContentRepository
from loom.observability.collector import StackCollector
from loom.sync.detector import ChangeDetector
from loom.sync.dispatcher import EventBus, EventDispatcher
from loom.webhook.handler import WebhookHeaders

if TYPE_CHECKING:
    from loom.config import LoomConfig
    from loom.content.repository import ContentRepository
    from loom.content.scheduler import Clock
    from loom.webhook.handler import OnWebhook
    from loom.webhook.payload import WebhookPayload


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class LiveUpdates:
    """Change notification service.

    Args:
        config: Loom configuration (credentials, polling settings).
        repository: Snapshot source; an ``HttpContentRepository`` is built
            from *config* when omitted.
        collector: Observability collector shared by every component.
        clock: Time source for the detector's poll interval.

    """

    def __init__(
        self,
        config: LoomConfig,
        *,
        repository: ContentRepository | None = None,
        collector: StackCollector | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._collector = collector if collector is not None else StackCollector()
        self._owns_repository = repository is None
        self._repository = repository
        self._clock = clock
        self._dispatcher = EventDispatcher(bus=EventBus(), collector=self._collector)
        self._detector: ChangeDetector | None = None
        self._start_pending = False

    @property
    def config(self) -> LoomConfig:
        return self._config

    @property
    def collector(self) -> StackCollector:
        return self._collector

    @property
    def dispatcher(self) -> EventDispatcher:
        return self._dispatcher

    @property
    def bus(self) -> EventBus:
        return self._dispatcher.bus

    @property
    def detector(self) -> ChangeDetector:
        """The change detector, created on first access."""
        if self._detector is None:
            if self._repository is None:
                self._repository = HttpContentRepository.from_config(self._config)
            self._detector = ChangeDetector(
                self._repository,
                self._dispatcher,
                site_id=self._config.site_id or "",
                interval=self._config.poll_interval,
                timeout=self._config.fetch_timeout,
                max_failures=self._config.max_failures,
                clock=self._clock,
                collector=self._collector,
            )
        return self._detector

    def register(self, on_webhook: OnWebhook, *, start: bool = True) -> Callable[[], None]:
        """Deliver polled events to *on_webhook* with synthetic headers.

        Starts the detector when polling is enabled.  Outside a running
        event loop the start is deferred to the next ``start()`` call.
        Returns a callable that unregisters the callback.

        """

        async def deliver(event: WebhookPayload) -> Any:
            result = on_webhook(event, WebhookHeaders.synthetic(event.event))
            if inspect.isawaitable(result):
                return await result
            return result

        deliver.__qualname__ = getattr(on_webhook, "__qualname__", "on_webhook")
        unregister = self._dispatcher.register(deliver)

        if start and self._config.polling_enabled:
            if _loop_running():
                self.start()
            else:
                self._start_pending = True
        return unregister

    def start(self) -> bool:
        """Start polling.  Returns False if disabled or already running."""
        if not self._config.polling_enabled:
            return False
        self._start_pending = False
        return self.detector.start()

    @property
    def start_pending(self) -> bool:
        """A registration asked to start polling before a loop was running."""
        return self._start_pending

    async def stop(self) -> None:
        if self._detector is not None:
            await self._detector.stop()

    async def aclose(self) -> None:
        """Stop polling and close the repository client loom created."""
        await self.stop()
        if self._owns_repository and isinstance(self._repository, HttpContentRepository):
            await self._repository.aclose()

    def stats(self) -> dict[str, Any]:
        """Detector state plus event log stats, for the stats endpoint."""
        return {
            "detector": self._detector.stats() if self._detector is not None else None,
            "handlers": self._dispatcher.handler_count,
            "polling_enabled": self._config.polling_enabled,
            "log": self._collector.log.stats(),
        }

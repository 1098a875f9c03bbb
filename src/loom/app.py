"""Loom application — the public entry points.

``watch`` runs the change detector in the foreground and prints every
event with the paths a consuming site should revalidate.  ``serve`` runs a
chirp app that receives webhooks and, when polling is enabled, feeds
polled changes to the same callback.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from loom._errors import ConfigError
from loom.config import LoomConfig
from loom.config_loader import load_config
from loom.sync.revalidate import revalidation_paths

if TYPE_CHECKING:
    from chirp import App

    from loom.sync.service import LiveUpdates
    from loom.webhook.handler import WebhookHeaders
    from loom.webhook.payload import WebhookPayload


def print_event(event: WebhookPayload, headers: WebhookHeaders) -> None:
    """Default callback: one line per event plus its stale paths."""
    paths = ", ".join(revalidation_paths(event))
    print(
        f"  [loom] [{headers.delivery_id}] {event.event} {event.path} -> revalidate {paths}",
        file=sys.stderr,
    )


def _warnings(config: LoomConfig) -> list[str]:
    warnings: list[str] = []
    if config.poll and not config.polling_enabled:
        warnings.append("Polling needs api_key and site_id (LOOM_API_KEY, LOOM_SITE_ID)")
    return warnings


def create_app(config: LoomConfig, live: LiveUpdates) -> App:
    """Build the chirp app: webhook endpoint, stats endpoint, polling hooks."""
    from chirp import App, AppConfig

    from loom.webhook.endpoints import register_stats_endpoint, register_webhook_endpoint
    from loom.webhook.handler import create_webhook_handler

    app = App(config=AppConfig(debug=False, host=config.host, port=config.port))

    handler = create_webhook_handler(
        print_event,
        secret=config.webhook_secret,
        require_signature=config.require_signature,
        live=live,
    )
    register_webhook_endpoint(app, handler, config.webhook_path)
    register_stats_endpoint(app, live.collector, live)

    @app.on_startup
    async def _start_polling() -> None:
        live.start()

    @app.on_shutdown
    async def _stop_polling() -> None:
        await live.aclose()

    return app


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def watch(root: str | Path = ".", **kwargs: object) -> None:
    """Poll the repository and print change events until interrupted.

    Args:
        root: Project directory holding ``loom.yaml`` / ``loom.toml``.
        **kwargs: Override LoomConfig fields.

    Raises:
        ConfigError: If credentials are missing or polling is disabled.

    """
    from loom.banner import print_banner

    config = load_config(Path(root), **kwargs)
    if not config.polling_enabled:
        msg = "watch needs poll enabled plus api_key and site_id"
        raise ConfigError(msg)

    print_banner(config, "watch")
    try:
        asyncio.run(_watch(config))
    except KeyboardInterrupt:
        print("  [loom] Interrupted", file=sys.stderr)


async def _watch(config: LoomConfig) -> None:
    from loom.sync.service import LiveUpdates

    live = LiveUpdates(config)
    live.register(print_event)
    try:
        detector = live.detector
        while detector.is_running:
            await asyncio.sleep(config.poll_interval)
        if detector.state == "stopped":
            print("  [loom] Change detector stopped", file=sys.stderr)
    finally:
        await live.aclose()


def serve(root: str | Path = ".", **kwargs: object) -> None:
    """Run the webhook receiver.

    Args:
        root: Project directory holding ``loom.yaml`` / ``loom.toml``.
        **kwargs: Override LoomConfig fields.

    """
    from loom.banner import print_banner
    from loom.sync.service import LiveUpdates

    config = load_config(Path(root), **kwargs)
    live = LiveUpdates(config)
    app = create_app(config, live)

    print_banner(config, "serve", warnings=_warnings(config))

    # The collector doubles as chirp's lifecycle collector, so server
    # events land in the same EventLog as detector events.
    app.run(host=config.host, port=config.port, lifecycle_collector=live.collector)

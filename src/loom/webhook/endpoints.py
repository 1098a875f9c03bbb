"""Chirp routes for the webhook receiver and the stats page.

Both functions register routes on an unfrozen chirp ``App``; call them
before the first request.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from chirp import App, Request

    from loom.observability.collector import StackCollector
    from loom.sync.service import LiveUpdates
    from loom.webhook.handler import WebhookHandler, WebhookResponse

STATS_ENDPOINT = "/__loom/stats"


def to_chirp_response(result: WebhookResponse) -> Any:
    """Convert a framework-neutral response into a chirp ``Response``."""
    from chirp.http.response import Response

    return Response(
        body=result.body,
        status=result.status,
        content_type=result.content_type,
        headers=tuple(result.headers.items()),
    )


def register_webhook_endpoint(
    app: App,
    handler: WebhookHandler,
    path: str = "/api/webhooks/loom",
) -> None:
    """Mount *handler* as ``POST path``.

    The raw body is passed through untouched so the signature is checked
    over the exact bytes the sender signed.

    """

    async def webhook_endpoint(request: Request) -> Any:
        body = await request.body()
        result = await handler.handle(body, request.headers)
        return to_chirp_response(result)

    webhook_endpoint.__name__ = "loom_webhook"
    webhook_endpoint.__qualname__ = "loom_webhook"

    app.route(path, methods=["POST"], name="loom:webhook")(webhook_endpoint)


def register_stats_endpoint(
    app: App,
    collector: StackCollector,
    live: LiveUpdates | None = None,
) -> None:
    """Register the ``/__loom/stats`` JSON endpoint.

    Returns the event log summary, the most recent events, and, given a
    ``LiveUpdates`` service, the detector state.

    """

    async def stats_handler(request: Request) -> Any:
        from chirp.http.response import Response

        payload: dict[str, Any] = {
            "event_log": collector.log.stats(),
            "recent": [
                {"type": type(event).__name__, **_event_fields(event)}
                for event in collector.log.recent(20)
            ],
        }
        if live is not None:
            payload["live_updates"] = live.stats()

        return Response(
            body=json.dumps(payload, indent=2, default=str),
            status=200,
            content_type="application/json",
        )

    stats_handler.__name__ = "loom_stats"
    stats_handler.__qualname__ = "loom_stats"

    app.route(STATS_ENDPOINT, name="loom:stats")(stats_handler)


def _event_fields(event: object) -> dict[str, Any]:
    slots = getattr(type(event), "__slots__", ())
    return {name: getattr(event, name) for name in slots}

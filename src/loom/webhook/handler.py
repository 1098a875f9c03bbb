"""Inbound webhook handling, independent of any web framework.

``WebhookHandler.handle(body, headers)`` takes the raw request body and
headers and returns a ``WebhookResponse``.  The chirp adapter in
``loom.webhook.endpoints`` is a thin wrapper around it.

Request flow:
    signature check (401)  ->  payload validation (400)
    ->  on_webhook(payload, headers)  ->  200, or 500 if it raised

The signature is checked against the raw bytes before anything is parsed.
"""

from __future__ import annotations

import inspect
import json
import sys
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from loom._errors import PayloadError, SignatureError
from loom.webhook.payload import WebhookPayload, parse_payload
from loom.webhook.signature import check_signature

if TYPE_CHECKING:
    from loom.observability.collector import StackCollector
    from loom.sync.service import LiveUpdates

SIGNATURE_HEADER = "x-loom-signature-256"
DELIVERY_HEADER = "x-loom-delivery"
EVENT_HEADER = "x-loom-event"
USER_AGENT_HEADER = "user-agent"

POLLING_USER_AGENT = "Loom-Dev-Polling/1.0"

type HeaderSource = Mapping[Any, Any] | Iterable[tuple[Any, Any]]


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("latin-1")
    return str(value)


@dataclass(frozen=True, slots=True)
class WebhookHeaders:
    """The delivery headers a handler receives.

    Attributes:
        delivery_id: Unique delivery identifier (``dev-<ms>`` for polled events).
        event: Event type announced by the sender.
        user_agent: Sender user agent.
        signature: ``sha256=<hex>`` signature, when the request was signed.

    """

    delivery_id: str = "unknown"
    event: str | None = None
    user_agent: str | None = None
    signature: str | None = None

    @classmethod
    def from_mapping(cls, headers: HeaderSource) -> WebhookHeaders:
        """Read loom headers from a mapping or ``(name, value)`` pairs.

        Names match case-insensitively; bytes names and values are decoded.

        """
        pairs = headers.items() if hasattr(headers, "items") else headers
        found: dict[str, str] = {}
        for name, value in pairs:
            found.setdefault(_text(name).lower(), _text(value))
        return cls(
            delivery_id=found.get(DELIVERY_HEADER) or "unknown",
            event=found.get(EVENT_HEADER),
            user_agent=found.get(USER_AGENT_HEADER),
            signature=found.get(SIGNATURE_HEADER),
        )

    @classmethod
    def synthetic(cls, event: str) -> WebhookHeaders:
        """Headers for an event produced by the polling detector."""
        return cls(
            delivery_id=f"dev-{time.time_ns() // 1_000_000}",
            event=event,
            user_agent=POLLING_USER_AGENT,
        )


@dataclass(frozen=True, slots=True)
class WebhookResponse:
    """What the HTTP layer should send back."""

    status: int
    body: str
    headers: dict[str, str] = field(default_factory=dict)
    content_type: str = "text/plain; charset=utf-8"


type OnWebhook = Callable[[WebhookPayload, WebhookHeaders], Awaitable[Any] | Any]
type OnError = Callable[
    [Exception, bytes, WebhookHeaders], Awaitable[WebhookResponse] | WebhookResponse
]


class WebhookHandler:
    """Verifies, parses and delivers inbound webhook requests.

    Args:
        on_webhook: Called with the parsed payload and its headers.
        secret: Shared signing secret.  Signed requests are verified only
            when a secret is set.
        require_signature: With a secret set, also reject unsigned requests.
        on_error: Builds the response when ``on_webhook`` raises.  Without
            it a generic 500 is returned.
        collector: Optional observability collector.

    """

    def __init__(
        self,
        on_webhook: OnWebhook,
        *,
        secret: str | None = None,
        require_signature: bool = False,
        on_error: OnError | None = None,
        collector: StackCollector | None = None,
    ) -> None:
        self._on_webhook = on_webhook
        self._secret = secret
        self._require_signature = require_signature
        self._on_error = on_error
        self._collector = collector

    async def handle(self, body: bytes | str, headers: HeaderSource) -> WebhookResponse:
        started = time.perf_counter()
        raw = body.encode() if isinstance(body, str) else body
        meta = WebhookHeaders.from_mapping(headers)
        delivery = meta.delivery_id

        if self._secret and (meta.signature or self._require_signature):
            try:
                check_signature(raw, meta.signature, self._secret)
            except SignatureError as exc:
                print(f"  [loom] [{delivery}] Invalid webhook signature: {exc}", file=sys.stderr)
                return self._finish(
                    WebhookResponse(status=401, body="Unauthorized"), meta, None, started
                )

        try:
            payload = parse_payload(raw)
        except PayloadError as exc:
            print(f"  [loom] [{delivery}] Invalid webhook payload: {exc}", file=sys.stderr)
            error = {"error": "Invalid payload", "detail": str(exc), "field": exc.field}
            response = WebhookResponse(
                status=400,
                body=json.dumps(error),
                content_type="application/json",
            )
            return self._finish(response, meta, None, started)

        print(
            f"  [loom] [{delivery}] Processing webhook: {payload.event} for {payload.path}",
            file=sys.stderr,
        )
        try:
            result = self._on_webhook(payload, meta)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            elapsed = _elapsed_ms(started)
            print(
                f"  [loom] [{delivery}] Webhook error after {elapsed}ms: {exc}",
                file=sys.stderr,
            )
            response = await self._error_response(exc, raw, meta, elapsed)
            return self._finish(response, meta, payload, started)

        elapsed = _elapsed_ms(started)
        response = WebhookResponse(
            status=200,
            body="OK",
            headers={"X-Loom-Processed": "true", "X-Processing-Time": f"{elapsed}ms"},
        )
        return self._finish(response, meta, payload, started)

    async def _error_response(
        self, exc: Exception, raw: bytes, meta: WebhookHeaders, elapsed: int
    ) -> WebhookResponse:
        if self._on_error is not None:
            result = self._on_error(exc, raw, meta)
            if inspect.isawaitable(result):
                result = await result
            return result
        return WebhookResponse(
            status=500,
            body="Error processing webhook",
            headers={"X-Loom-Error": "true", "X-Processing-Time": f"{elapsed}ms"},
        )

    def _finish(
        self,
        response: WebhookResponse,
        meta: WebhookHeaders,
        payload: WebhookPayload | None,
        started: float,
    ) -> WebhookResponse:
        if self._collector is not None:
            self._collector.record_webhook(
                response.status,
                event=payload.event if payload is not None else meta.event,
                item_id=payload.item_id if payload is not None else None,
                delivery_id=meta.delivery_id,
                duration_ms=(time.perf_counter() - started) * 1000,
            )
        return response


def _elapsed_ms(started: float) -> int:
    return round((time.perf_counter() - started) * 1000)


def create_webhook_handler(
    on_webhook: OnWebhook,
    *,
    secret: str | None = None,
    require_signature: bool = False,
    on_error: OnError | None = None,
    live: LiveUpdates | None = None,
    collector: StackCollector | None = None,
) -> WebhookHandler:
    """Build a handler and, given *live*, register *on_webhook* for polled events.

    With a ``LiveUpdates`` service the same callback receives both real
    deliveries and events synthesized by the polling detector.

    """
    if live is not None:
        live.register(on_webhook)
        if collector is None:
            collector = live.collector
    return WebhookHandler(
        on_webhook,
        secret=secret,
        require_signature=require_signature,
        on_error=on_error,
        collector=collector,
    )

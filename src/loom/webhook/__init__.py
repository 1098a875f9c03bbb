"""Webhook payloads, signatures, and the inbound request handler.

The chirp routes live in ``loom.webhook.endpoints`` and are imported only
by ``serve``.
"""

from loom.webhook.handler import (
    WebhookHandler,
    WebhookHeaders,
    WebhookResponse,
    create_webhook_handler,
)
from loom.webhook.payload import WebhookPayload, parse_payload
from loom.webhook.signature import check_signature, sign_payload, verify_signature

__all__ = [
    "WebhookHandler",
    "WebhookHeaders",
    "WebhookPayload",
    "WebhookResponse",
    "check_signature",
    "create_webhook_handler",
    "parse_payload",
    "sign_payload",
    "verify_signature",
]

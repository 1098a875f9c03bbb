"""HMAC-SHA256 request signing.

The signature header value is ``sha256=<hex>`` where ``<hex>`` is the
HMAC-SHA256 of the raw request body keyed with the shared secret.
"""

from __future__ import annotations

import hashlib
import hmac

from loom._errors import SignatureError

PREFIX = "sha256="


def _as_bytes(value: bytes | str) -> bytes:
    return value.encode() if isinstance(value, str) else value


def sign_payload(body: bytes | str, secret: str) -> str:
    """Return the signature header value for *body*."""
    digest = hmac.new(_as_bytes(secret), _as_bytes(body), hashlib.sha256).hexdigest()
    return PREFIX + digest


def verify_signature(body: bytes | str, signature: str | None, secret: str | None) -> bool:
    """Check *signature* against the HMAC of the exact *body* bytes.

    Returns False when either the secret or the signature is missing.
    The comparison is constant-time.

    """
    if not secret or not signature:
        return False
    expected = sign_payload(body, secret)
    return hmac.compare_digest(_as_bytes(signature.strip()), expected.encode())


def check_signature(body: bytes | str, signature: str | None, secret: str | None) -> None:
    """Like ``verify_signature`` but raises instead of returning False.

    Raises:
        SignatureError: If the signature is missing or does not match.

    """
    if not signature:
        msg = "Request is not signed"
        raise SignatureError(msg)
    if not verify_signature(body, signature, secret):
        msg = "Signature does not match the request body"
        raise SignatureError(msg)

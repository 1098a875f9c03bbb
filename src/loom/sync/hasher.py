"""Content hashing for polled snapshots.

``content_hash`` serializes a snapshot with sorted keys at every depth, so
two structurally identical snapshots hash alike whatever their key order.
A snapshot that cannot be serialized falls back to an identity fingerprint
built from ``id``, ``updated_at`` and ``status``; hashing never raises.
"""

from __future__ import annotations

import hashlib
import json
import sys
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from loom.observability.collector import StackCollector

# Hex digits kept from the SHA-256 digest.
HASH_LENGTH = 16


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8", "surrogatepass")).hexdigest()[:HASH_LENGTH]


def canonical_json(snapshot: Any) -> str:
    """Key-sorted, whitespace-free JSON for *snapshot*.

    Raises:
        TypeError: A value is not JSON-serializable.
        ValueError: The structure is circular.
        RecursionError: The structure is nested too deeply.

    """
    return json.dumps(snapshot, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def identity_fingerprint(snapshot: Mapping[str, Any]) -> str:
    """Fingerprint from identity, modification time and status only."""
    item_id = snapshot.get("id", snapshot.get("item_id"))
    updated_at = snapshot.get("updated_at", snapshot.get("updatedAt"))
    status = snapshot.get("status")
    return _digest(f"{item_id}:{updated_at}:{status}")


def content_hash(
    snapshot: Mapping[str, Any],
    *,
    collector: StackCollector | None = None,
) -> str:
    """Stable fingerprint of one item snapshot."""
    try:
        return _digest(canonical_json(snapshot))
    except (TypeError, ValueError, RecursionError) as exc:
        item_id = str(snapshot.get("id", snapshot.get("item_id", "?")))
        print(
            f"  [loom] Warning: could not hash snapshot of {item_id} ({exc}); "
            "using identity fingerprint",
            file=sys.stderr,
        )
        if collector is not None:
            collector.record_hash_fallback(item_id, str(exc))
        return identity_fingerprint(snapshot)

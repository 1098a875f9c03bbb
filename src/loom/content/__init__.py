"""Editing layer — draft overlays, pending changes, debounced persistence."""

from loom.content.merge import apply_canonical, draft_diff, merge_view, read_view
from loom.content.model import ContentItem, Patch
from loom.content.overlay import DraftOverlayStore
from loom.content.pending import PendingChange, PendingChangeTracker
from loom.content.repository import (
    ContentRepository,
    HttpContentRepository,
    SnapshotItem,
    parse_snapshot,
)
from loom.content.scheduler import DebounceScheduler, MonotonicClock, PersistenceScheduler

__all__ = [
    "ContentItem",
    "ContentRepository",
    "DebounceScheduler",
    "DraftOverlayStore",
    "HttpContentRepository",
    "MonotonicClock",
    "Patch",
    "PendingChange",
    "PendingChangeTracker",
    "PersistenceScheduler",
    "SnapshotItem",
    "apply_canonical",
    "draft_diff",
    "merge_view",
    "parse_snapshot",
    "read_view",
]

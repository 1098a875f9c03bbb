"""Change notification — polling, hashing, classification, dispatch."""

from loom.sync.classifier import Classified, SnapshotRecord, classify, classify_removed
from loom.sync.detector import ChangeDetector
from loom.sync.dispatcher import EventBus, EventDispatcher
from loom.sync.hasher import content_hash
from loom.sync.revalidate import make_revalidation_handler, revalidation_paths
from loom.sync.service import LiveUpdates

__all__ = [
    "ChangeDetector",
    "Classified",
    "EventBus",
    "EventDispatcher",
    "LiveUpdates",
    "SnapshotRecord",
    "classify",
    "classify_removed",
    "content_hash",
    "make_revalidation_handler",
    "revalidation_paths",
]

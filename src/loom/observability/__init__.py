"""Observability — structured events for the notification and editing paths.

Quick Start:
    >>> from loom.observability import StackCollector, EventLog
    >>> log = EventLog()
    >>> collector = StackCollector(log)
    >>> collector.record_poll(items_seen=3)
    >>> len(log)
    1

"""

from loom.observability.collector import StackCollector
from loom.observability.events import (
    ChangeDispatched,
    DetectorStateChanged,
    HandlerFailed,
    HashFallback,
    PollCompleted,
    PollFailed,
    StackEvent,
    WebhookReceived,
    WriteFlushed,
    now_ns,
)
from loom.observability.log import EventLog, is_failure

__all__ = [
    "ChangeDispatched",
    "DetectorStateChanged",
    "EventLog",
    "HandlerFailed",
    "HashFallback",
    "PollCompleted",
    "PollFailed",
    "StackCollector",
    "StackEvent",
    "WebhookReceived",
    "WriteFlushed",
    "is_failure",
    "now_ns",
]

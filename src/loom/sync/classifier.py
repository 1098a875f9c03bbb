"""Change classification — typed events from observed state transitions.

Snapshots carry no explicit deltas.  The classifier compares what the
detector remembers about an item (a ``SnapshotRecord``) with what the
latest poll shows and decides which events to emit:

1. No record, not the first pass             -> ``content.created``
2. Hash or ``updated_at`` changed:
   status moved to ``published``             -> ``content.published``
   anything else                             -> ``content.updated``
3. Slug changed                              -> extra ``content.updated``
                                                carrying the old slug
4. Record with no item in the poll           -> ``content.deleted``
                                                with the last-known slug

The first pass of a process only seeds records and classifies nothing.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from loom._types import EventType


@dataclass(frozen=True, slots=True)
class SnapshotRecord:
    """What the detector remembers about one item between polls.

    Attributes:
        hash: Content hash of the last observed snapshot.
        slug: Last observed slug.
        status: Last observed status.
        title: Last observed title.
        updated_at: Last observed modification timestamp.

    """

    hash: str
    slug: str | None
    status: str
    title: str | None
    updated_at: str | None

    @property
    def is_published(self) -> bool:
        return self.status == "published"


@dataclass(frozen=True, slots=True)
class Classified:
    """One event decided by the classifier.

    Attributes:
        event: Event type to emit.
        slug: Slug the event is about (the old one for renames).

    """

    event: EventType
    slug: str | None


def classify(
    previous: SnapshotRecord | None,
    current: SnapshotRecord,
    *,
    first_pass: bool = False,
) -> tuple[Classified, ...]:
    """Events for one item present in the current poll."""
    if first_pass:
        return ()
    if previous is None:
        return (Classified("content.created", current.slug),)

    events: list[Classified] = []
    changed = previous.hash != current.hash or previous.updated_at != current.updated_at
    if changed:
        if not previous.is_published and current.is_published:
            events.append(Classified("content.published", current.slug))
        else:
            events.append(Classified("content.updated", current.slug))

    if previous.slug != current.slug:
        # Follows the update so consumers never see the old path cleared first.
        events.append(Classified("content.updated", previous.slug))
    return tuple(events)


def classify_removed(
    previous: Mapping[str, SnapshotRecord],
    seen: Iterable[str],
    *,
    first_pass: bool = False,
) -> tuple[tuple[str, Classified], ...]:
    """``content.deleted`` for every remembered key missing from *seen*."""
    if first_pass:
        return ()
    present = set(seen)
    return tuple(
        (key, Classified("content.deleted", record.slug))
        for key, record in previous.items()
        if key not in present
    )

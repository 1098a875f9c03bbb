"""Draft/base reconciliation.

``merge_view`` is the single precedence rule: overlay fields win, fields the
overlay lacks fall through to the base, and custom ``data`` fields merge one
level deep rather than being replaced wholesale.
"""

from __future__ import annotations

from loom.content.model import ContentItem, Patch


def merge_view(base: ContentItem, overlay: Patch | None) -> ContentItem:
    """Return the merged read view of *base* with *overlay* applied.

    Never mutates *base*.  ``merge_view(b, None) == b`` and applying the same
    overlay twice equals applying it once.

    """
    merged = base.copy()
    if overlay is None or overlay.is_empty:
        return merged
    merged.system.update(overlay.system)
    merged.data.update(overlay.data)
    return merged


def read_view(item: ContentItem) -> ContentItem:
    """Merged view of an item with its own draft (published items only)."""
    if not item.is_published:
        return merge_view(item, None)
    return merge_view(item, item.draft)


def draft_diff(item: ContentItem) -> Patch:
    """Fields of the item's draft whose value differs from the base."""
    if item.draft is None or not item.is_published:
        return Patch()
    system = {k: v for k, v in item.draft.system.items() if item.system.get(k) != v}
    data = {k: v for k, v in item.draft.data.items() if item.data.get(k) != v}
    return Patch(system=system, data=data)


def apply_canonical(base: ContentItem, canonical: ContentItem) -> ContentItem:
    """Fold a server-confirmed item into *base* in place and return it.

    System fields and the draft come from *canonical*; custom fields merge so
    that keys the server omitted survive.

    """
    base.system.update(canonical.system)
    base.data.update(canonical.data)
    base.draft = canonical.draft if canonical.is_published else None
    return base

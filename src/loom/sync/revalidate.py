"""Revalidation triggers for consuming sites.

A change to ``blog/hello`` invalidates the item page, the collection index,
and the home page.  ``make_revalidation_handler`` turns a per-path callback
(a cache purge, a framework's revalidate call) into a dispatcher handler.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from loom.webhook.payload import WebhookPayload


def revalidation_paths(event: WebhookPayload) -> tuple[str, ...]:
    """Paths whose cached pages are stale after *event*, most specific first."""
    collection = event.collection.strip("/")
    paths: list[str] = []
    if event.slug:
        paths.append(f"/{collection}/{event.slug.strip('/')}")
    paths.append(f"/{collection}")
    paths.append("/")
    return tuple(paths)


def make_revalidation_handler(
    revalidate: Callable[[str], Awaitable[Any] | Any],
) -> Callable[[WebhookPayload], Awaitable[None]]:
    """Build a handler that calls *revalidate* once per stale path."""

    async def handler(event: WebhookPayload) -> None:
        for path in revalidation_paths(event):
            result = revalidate(path)
            if inspect.isawaitable(result):
                await result

    handler.__qualname__ = f"revalidate[{getattr(revalidate, '__qualname__', 'callback')}]"
    return handler

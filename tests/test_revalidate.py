"""Tests for loom.sync.revalidate."""

from __future__ import annotations

import pytest

from loom.sync.revalidate import make_revalidation_handler, revalidation_paths
from loom.webhook.payload import WebhookPayload


def _event(slug: str | None) -> WebhookPayload:
    return WebhookPayload(
        event="content.updated",
        site_id="s",
        collection="blog",
        item_id="1",
        timestamp="2024-01-01T00:00:00+00:00",
        slug=slug,
    )


class TestRevalidationPaths:
    def test_item_collection_and_home(self) -> None:
        assert revalidation_paths(_event("hello")) == ("/blog/hello", "/blog", "/")

    def test_without_slug(self) -> None:
        assert revalidation_paths(_event(None)) == ("/blog", "/")


class TestRevalidationHandler:
    @pytest.mark.asyncio
    async def test_sync_callback(self) -> None:
        purged: list[str] = []
        handler = make_revalidation_handler(purged.append)

        await handler(_event("hello"))

        assert purged == ["/blog/hello", "/blog", "/"]

    @pytest.mark.asyncio
    async def test_async_callback(self) -> None:
        purged: list[str] = []

        async def purge(path: str) -> None:
            purged.append(path)

        handler = make_revalidation_handler(purge)
        await handler(_event(None))

        assert purged == ["/blog", "/"]
        assert "purge" in handler.__qualname__

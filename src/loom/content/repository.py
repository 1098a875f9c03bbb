"""Content repository — the persistence collaborator.

``ContentRepository`` is the contract the editing and notification layers
depend on.  ``HttpContentRepository`` implements it over the CMS HTTP API
with httpx:

    GET    /api/sites/{site}/content-updates          snapshot for polling
    GET    /api/admin/content/{collection}/{id}       live item
    PUT    /api/admin/content/{collection}/{id}       live update
    DELETE /api/admin/content/{collection}/{id}       delete item
    POST   /api/admin/content/{collection}/{id}/draft    save draft overlay
    DELETE /api/admin/content/{collection}/{id}/draft    drop draft overlay
    POST   /api/admin/content/{collection}/{id}/publish  publish (optional draft)

Every request carries the bearer token.  Transport errors, timeouts, and
non-2xx answers surface as ``RepositoryError``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from loom._errors import ContentError, RepositoryError
from loom.content.model import ContentItem, Patch

if TYPE_CHECKING:
    from loom.config import LoomConfig


@dataclass(frozen=True, slots=True)
class SnapshotItem:
    """One item as reported by the polling endpoint.

    Attributes:
        item_id: Item identifier.
        collection: Collection slug the item belongs to.
        slug: Current slug, if any.
        status: ``draft`` or ``published``.
        title: Current title, if any.
        updated_at: Repository modification timestamp.
        raw: The item exactly as received; this is what gets hashed.

    """

    item_id: str
    collection: str
    slug: str | None
    status: str
    title: str | None
    updated_at: str | None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def key(self) -> str:
        """Snapshot key, unique across collections."""
        return f"{self.collection}::{self.item_id}"


def parse_snapshot(payload: Mapping[str, Any]) -> tuple[SnapshotItem, ...]:
    """Parse ``{items: [...], collection?: {slug}}`` into snapshot items.

    Items may name their collection themselves (string or ``{slug}``) or
    inherit the top-level one.  Entries without an id are skipped.

    """
    default_collection = ""
    top = payload.get("collection")
    if isinstance(top, Mapping):
        default_collection = str(top.get("slug") or "")
    elif isinstance(top, str):
        default_collection = top

    items: list[SnapshotItem] = []
    for raw in payload.get("items") or ():
        if not isinstance(raw, Mapping):
            continue
        item_id = raw.get("id", raw.get("item_id"))
        if item_id is None:
            continue
        collection = raw.get("collection", default_collection)
        if isinstance(collection, Mapping):
            collection = collection.get("slug")
        items.append(
            SnapshotItem(
                item_id=str(item_id),
                collection=str(collection or default_collection),
                slug=raw.get("slug"),
                status=str(raw.get("status") or "draft"),
                title=raw.get("title"),
                updated_at=raw.get("updated_at", raw.get("updatedAt")),
                raw=raw,
            )
        )
    return tuple(items)


class ContentRepository(Protocol):
    """Persistence operations used by loom."""

    async def fetch_snapshot(self) -> tuple[SnapshotItem, ...]: ...

    async def get(self, collection: str, item_id: str) -> ContentItem: ...

    async def update(self, collection: str, item_id: str, patch: Patch) -> ContentItem: ...

    async def delete(self, collection: str, item_id: str) -> None: ...

    async def save_draft(self, collection: str, item_id: str, patch: Patch) -> None: ...

    async def delete_draft(self, collection: str, item_id: str) -> None: ...

    async def publish(
        self, collection: str, item_id: str, draft: Patch | None
    ) -> ContentItem: ...


class HttpContentRepository:
    """ContentRepository over the CMS HTTP API.

    Args:
        base_url: API origin, e.g. ``https://cms.example.com``.
        api_key: Bearer token.
        site_id: Site whose snapshot is polled.
        timeout: Per-request timeout in seconds.
        client: Pre-built ``httpx.AsyncClient`` (tests pass one with a
            ``MockTransport``).  Owned clients are closed by ``aclose()``.

    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str,
        site_id: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._site_id = site_id
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url.rstrip("/"))
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        self._timeout = timeout

    @classmethod
    def from_config(cls, config: LoomConfig) -> HttpContentRepository:
        return cls(
            config.api_base,
            api_key=config.api_key or "",
            site_id=config.site_id or "",
            timeout=config.fetch_timeout,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_snapshot(self) -> tuple[SnapshotItem, ...]:
        body = await self._request("GET", f"/api/sites/{self._site_id}/content-updates")
        if not isinstance(body, Mapping):
            msg = "Snapshot response is not a JSON object"
            raise RepositoryError(msg)
        return parse_snapshot(body)

    async def get(self, collection: str, item_id: str) -> ContentItem:
        body = await self._request("GET", _item_path(collection, item_id))
        return _item_from(body)

    async def update(self, collection: str, item_id: str, patch: Patch) -> ContentItem:
        body = await self._request("PUT", _item_path(collection, item_id), json=patch.to_json())
        return _item_from(body)

    async def delete(self, collection: str, item_id: str) -> None:
        await self._request("DELETE", _item_path(collection, item_id))

    async def save_draft(self, collection: str, item_id: str, patch: Patch) -> None:
        await self._request(
            "POST", _item_path(collection, item_id) + "/draft", json=patch.to_json()
        )

    async def delete_draft(self, collection: str, item_id: str) -> None:
        await self._request("DELETE", _item_path(collection, item_id) + "/draft")

    async def publish(
        self, collection: str, item_id: str, draft: Patch | None
    ) -> ContentItem:
        payload = {"draft": draft.to_json() if draft is not None else None}
        body = await self._request(
            "POST", _item_path(collection, item_id) + "/publish", json=payload
        )
        return _item_from(body)

    async def _request(self, method: str, path: str, *, json: Any = None) -> Any:
        try:
            response = await self._client.request(
                method, path, json=json, headers=self._headers, timeout=self._timeout
            )
        except httpx.TimeoutException as exc:
            msg = f"{method} {path} timed out after {self._timeout}s"
            raise RepositoryError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"{method} {path} failed: {exc}"
            raise RepositoryError(msg) from exc

        if not response.is_success:
            msg = f"{method} {path} returned {response.status_code} {response.reason_phrase}"
            raise RepositoryError(msg, status=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            msg = f"{method} {path} returned invalid JSON"
            raise RepositoryError(msg, status=response.status_code) from exc


def _item_path(collection: str, item_id: str) -> str:
    return f"/api/admin/content/{collection}/{item_id}"


def _item_from(body: Any) -> ContentItem:
    if not isinstance(body, Mapping):
        msg = "Item response is not a JSON object"
        raise RepositoryError(msg)
    try:
        return ContentItem.from_json(body)
    except ContentError as exc:
        raise RepositoryError(str(exc)) from exc

"""Tests for loom.content.model and loom.content.merge."""

from __future__ import annotations

import pytest

from loom._errors import ContentError
from loom.content.merge import apply_canonical, draft_diff, merge_view, read_view
from loom.content.model import ContentItem, Patch, is_system_field, normalize_key
from tests.conftest import make_item

# ---------------------------------------------------------------------------
# Field classification
# ---------------------------------------------------------------------------


class TestFieldNames:
    def test_camel_case_aliases(self) -> None:
        assert normalize_key("publishedAt") == "published_at"
        assert normalize_key("seoTitle") == "seo_title"
        assert normalize_key("body") == "body"

    def test_system_fields(self) -> None:
        assert is_system_field("title")
        assert is_system_field("ogImage")
        assert not is_system_field("body")


# ---------------------------------------------------------------------------
# Patch
# ---------------------------------------------------------------------------


class TestPatch:
    def test_for_field_routes_system_and_custom(self) -> None:
        assert Patch.for_field("title", "x").system == {"title": "x"}
        assert Patch.for_field("seoTitle", "x").system == {"seo_title": "x"}
        assert Patch.for_field("body", "x").data == {"body": "x"}

    def test_merge_other_wins_and_keeps_untouched(self) -> None:
        a = Patch(system={"title": "a", "slug": "s"}, data={"x": 1, "y": 2})
        b = Patch(system={"title": "b"}, data={"y": 3})
        merged = a.merge(b)
        assert merged.system == {"title": "b", "slug": "s"}
        assert merged.data == {"x": 1, "y": 3}

    def test_merge_does_not_mutate_inputs(self) -> None:
        a = Patch(system={"title": "a"})
        a.merge(Patch(system={"title": "b"}))
        assert a.system == {"title": "a"}

    def test_field_count(self) -> None:
        assert Patch(system={"a": 1, "b": 2}, data={"c": 3}).field_count == 3
        assert Patch().is_empty

    def test_json_round_shape(self) -> None:
        patch = Patch.from_json({"title": "t", "seoTitle": "s", "data": {"body": "b"}})
        assert patch.system == {"title": "t", "seo_title": "s"}
        assert patch.data == {"body": "b"}
        assert Patch(system={"title": "t"}).to_json() == {"title": "t"}

    def test_has_field(self) -> None:
        patch = Patch(system={"title": "t"}, data={"body": "b"})
        assert patch.has_field("title")
        assert patch.has_field("body")
        assert not patch.has_field("slug")

    def test_without_drops_only_equal_fields(self) -> None:
        current = Patch(system={"title": "b", "slug": "s"}, data={"x": 1, "y": None})
        sent = Patch(system={"title": "a", "slug": "s"}, data={"x": 1})
        assert current.without(sent) == Patch(system={"title": "b"}, data={"y": None})
        assert current.without(current).is_empty


# ---------------------------------------------------------------------------
# ContentItem
# ---------------------------------------------------------------------------


class TestContentItem:
    def test_from_json_normalizes_keys(self) -> None:
        item = ContentItem.from_json({
            "id": 7,
            "title": "T",
            "status": "published",
            "publishedAt": "2024",
            "collection": {"slug": "blog"},
            "data": {"body": "b"},
        })
        assert item.id == "7"
        assert item.published_at == "2024"
        assert item.collection == "blog"
        assert item.data == {"body": "b"}

    def test_from_json_drops_draft_on_unpublished(self) -> None:
        item = ContentItem.from_json({"id": "1", "status": "draft", "draft": {"title": "x"}})
        assert item.draft is None

    def test_from_json_keeps_draft_on_published(self) -> None:
        item = ContentItem.from_json({
            "id": "1",
            "status": "published",
            "draft": {"title": "x", "data": {"body": "new"}},
        })
        assert item.draft == Patch(system={"title": "x"}, data={"body": "new"})

    def test_from_json_requires_id(self) -> None:
        with pytest.raises(ContentError, match="no 'id'"):
            ContentItem.from_json({"title": "x"})

    def test_status_defaults_to_draft(self) -> None:
        assert ContentItem(id="1").status == "draft"
        assert not ContentItem(id="1").is_published

    def test_copy_is_independent(self) -> None:
        item = make_item(data={"tags": ["a"]})
        clone = item.copy()
        clone.data["tags"].append("b")
        clone.system["title"] = "changed"
        assert item.data["tags"] == ["a"]
        assert item.title == "Hello"


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


class TestMergeView:
    def test_null_overlay_is_identity(self) -> None:
        base = make_item(status="published", data={"body": "b"})
        assert merge_view(base, None) == base

    def test_overlay_wins_and_absent_fields_fall_through(self) -> None:
        base = make_item(status="published", title="Old", data={"body": "b", "intro": "i"})
        overlay = Patch(system={"title": "New"}, data={"body": "b2"})
        merged = merge_view(base, overlay)
        assert merged.title == "New"
        assert merged.slug == "hello"
        assert merged.data == {"body": "b2", "intro": "i"}

    def test_applying_twice_equals_once(self) -> None:
        base = make_item(status="published", data={"body": "b"})
        overlay = Patch(system={"title": "New"}, data={"body": "b2"})
        once = merge_view(base, overlay)
        assert merge_view(once, overlay) == once

    def test_never_mutates_base(self) -> None:
        base = make_item(status="published")
        merge_view(base, Patch(system={"title": "New"}))
        assert base.title == "Hello"

    def test_read_view_ignores_draft_on_unpublished(self) -> None:
        item = make_item()
        item.draft = Patch(system={"title": "ghost"})
        assert read_view(item).title == "Hello"


class TestDraftDiff:
    def test_only_differing_fields(self) -> None:
        item = make_item(
            status="published",
            data={"body": "same"},
            draft=Patch(system={"title": "New", "slug": "hello"}, data={"body": "same", "x": 1}),
        )
        diff = draft_diff(item)
        assert diff.system == {"title": "New"}
        assert diff.data == {"x": 1}

    def test_no_draft(self) -> None:
        assert draft_diff(make_item(status="published")).is_empty


class TestApplyCanonical:
    def test_folds_server_fields_and_keeps_missing_data(self) -> None:
        base = make_item(data={"body": "b", "local": "l"})
        canonical = make_item(title="Server", data={"body": "server"})
        apply_canonical(base, canonical)
        assert base.title == "Server"
        assert base.data == {"body": "server", "local": "l"}

    def test_draft_dropped_when_canonical_unpublished(self) -> None:
        base = make_item(status="published", draft=Patch(system={"title": "x"}))
        apply_canonical(base, make_item(status="draft"))
        assert base.draft is None

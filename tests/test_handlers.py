"""
Tests for named requests and the asyncio surface.
"""

import asyncio

import pytest

from mediashelf.aio import AsyncCatalog
from mediashelf.handlers import REQUESTS, dispatch, handle

from conftest import make_item


def _result(envelope):
    assert envelope["ok"] is True, envelope
    return envelope["result"]


def _error_kind(envelope):
    assert envelope["ok"] is False, envelope
    return envelope["error"]["kind"]


class TestDispatch:

    def test_add_get_round_trip(self, catalog):
        added = _result(dispatch(catalog, "add-item", {"item": {
            "id": "a", "filename": "a.png", "format": "png", "isFavorite": True,
        }}))
        assert added["isFavorite"] is True
        assert added["createdAt"]
        assert _result(dispatch(catalog, "get-item", {"id": "a"})) == added

    def test_get_missing_item_is_null_result(self, catalog):
        assert _result(dispatch(catalog, "get-item", {"id": "nope"})) is None

    def test_search_payload_is_filters(self, catalog):
        catalog.items.add(make_item("a", filename="cat.png"))
        catalog.items.add(make_item("b", filename="dog.png"))
        found = _result(dispatch(catalog, "search-items", {"keyword": "CAT"}))
        assert [i["id"] for i in found] == ["a"]
        assert len(_result(dispatch(catalog, "search-items"))) == 2

    def test_view_favorites(self, catalog):
        catalog.items.add(make_item("a", is_favorite=True, category_id="default"))
        catalog.items.add(make_item("b"))
        found = _result(dispatch(catalog, "view-items", {"categoryId": "favorites"}))
        assert [i["id"] for i in found] == ["a"]

    def test_update_rename_and_usage(self, catalog):
        catalog.items.add(make_item("a"))
        assert _result(dispatch(catalog, "update-item", {
            "id": "a", "updates": {"width": 9},
        }))["width"] == 9
        assert _result(dispatch(catalog, "rename-item", {
            "id": "a", "filename": "b.png",
        }))["filename"] == "b.png"
        assert _result(dispatch(catalog, "increment-usage", {"id": "a"}))["usageCount"] == 1

    def test_pipeline_requests(self, catalog):
        catalog.items.add(make_item("a", filename="x.png", size=5))
        dup = _result(dispatch(catalog, "find-duplicate", {"filename": "x.png", "size": 5}))
        assert dup["id"] == "a"
        paths = _result(dispatch(catalog, "asset-paths", {"ids": ["a", "zz"]}))
        assert paths == {"a": {"storagePath": "/store/a.png", "originalPath": "/import/a.png"}}

    def test_category_and_tag_requests(self, catalog):
        _result(dispatch(catalog, "add-category", {"category": {"id": "c", "name": "C"}}))
        assert _result(dispatch(catalog, "get-category", {"id": "c"}))["name"] == "C"
        names = [c["id"] for c in _result(dispatch(catalog, "get-categories"))]
        assert "c" in names

        tag = _result(dispatch(catalog, "get-or-create-tag", {"name": "Happy", "color": "#ff0"}))
        again = _result(dispatch(catalog, "get-or-create-tag", {"name": " happy"}))
        assert again["id"] == tag["id"]
        assert again["color"] == "#ff0"
        assert _result(dispatch(catalog, "update-tag", {
            "id": tag["id"], "updates": {"name": "Joy"},
        }))["name"] == "Joy"
        assert [t["name"] for t in _result(dispatch(catalog, "get-tags"))] == ["Joy"]
        _result(dispatch(catalog, "delete-tag", {"id": tag["id"]}))

    def test_settings_and_stats(self, catalog):
        _result(dispatch(catalog, "set-setting", {"key": "theme", "value": {"mode": "dark"}}))
        assert _result(dispatch(catalog, "get-setting", {"key": "theme"})) == {"mode": "dark"}
        assert _result(dispatch(catalog, "get-settings"))["viewMode"] == "grid"
        _result(dispatch(catalog, "delete-setting", {"key": "theme"}))
        stats = _result(dispatch(catalog, "get-stats"))
        assert stats["categories"] == 3
        assert stats["items"] == 0


class TestDispatchErrors:

    def test_unknown_request(self, catalog):
        assert _error_kind(dispatch(catalog, "drop-everything", {})) == "InvalidArgument"

    def test_payload_must_be_object(self, catalog):
        assert _error_kind(dispatch(catalog, "get-item", ["a"])) == "InvalidArgument"

    def test_missing_field(self, catalog):
        envelope = dispatch(catalog, "get-item", {})
        assert _error_kind(envelope) == "InvalidArgument"
        assert "id" in envelope["error"]["message"]

    @pytest.mark.parametrize("name,payload,kind", [
        ("update-item", {"id": "nope", "updates": {"width": 1}}, "NotFound"),
        ("delete-item", {"id": "nope"}, "NotFound"),
        ("delete-category", {"id": "default"}, "ProtectedEntity"),
        ("add-category", {"category": {"id": "recent", "name": "R"}}, "Conflict"),
        ("search-items", {"sortBy": "colour"}, "InvalidArgument"),
        ("asset-paths", {"ids": "a"}, "InvalidArgument"),
    ])
    def test_error_kinds(self, catalog, name, payload, kind):
        assert _error_kind(dispatch(catalog, name, payload)) == kind

    def test_closed_catalog_is_storage_error(self, catalog):
        catalog.close()
        assert _error_kind(dispatch(catalog, "get-stats")) == "StorageIOError"

    def test_every_request_registered_with_callable(self):
        assert len(REQUESTS) == 24
        assert all(callable(fn) for fn in REQUESTS.values())


class TestAsync:

    @pytest.mark.asyncio
    async def test_handle_runs_request(self, catalog):
        catalog.items.add(make_item("a"))
        envelope = await handle(catalog, "get-item", {"id": "a"})
        assert _result(envelope)["filename"] == "a.png"

    @pytest.mark.asyncio
    async def test_concurrent_requests(self, catalog):
        catalog.items.add(make_item("a"))
        results = await asyncio.gather(*[
            handle(catalog, "increment-usage", {"id": "a"}) for _ in range(20)
        ])
        assert all(r["ok"] for r in results)
        assert catalog.items.get("a").usage_count == 20

    @pytest.mark.asyncio
    async def test_async_catalog_lifecycle(self, store_path):
        async with AsyncCatalog(store_path) as cat:
            tag = await cat.create_or_get_tag("Happy")
            await cat.add_item(make_item("a", tags=[tag.id]))
            await cat.set_setting("theme", "dark")

            assert (await cat.get_item("a")).tags == [tag.id]
            assert [i.id for i in await cat.search({"tags": ["happy"]})] == ["a"]
            assert await cat.get_setting("theme") == "dark"
            assert _result(await cat.request("get-stats"))["items"] == 1

            await cat.increment_usage("a")
            assert (await cat.view("recent"))[0].usage_count == 1
            await cat.delete_item("a")
            assert await cat.get_item("a") is None
        assert not cat.catalog.is_open

    @pytest.mark.asyncio
    async def test_async_categories(self, store_path):
        async with AsyncCatalog(store_path) as cat:
            await cat.create_category({"id": "c", "name": "C"})
            assert "c" in [c.id for c in await cat.list_categories()]
            await cat.delete_category("c")
            assert [t.name for t in await cat.list_tags()] == []

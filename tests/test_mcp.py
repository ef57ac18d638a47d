"""
Tests for the MCP stdio server tool functions.

Tool functions are called directly against a real catalog installed in
the module global; a mock catalog checks error mapping at the boundary.
"""

from unittest.mock import MagicMock

import pytest

import mediashelf.mcp as mcp_mod
from mediashelf.errors import StorageIOError

from conftest import make_item


@pytest.fixture(autouse=True)
def patch_catalog(catalog):
    """Install the test catalog as the server's catalog."""
    mcp_mod._catalog = catalog
    yield
    mcp_mod._catalog = None


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

class TestItemTools:

    @pytest.mark.asyncio
    async def test_add_then_get(self):
        added = await mcp_mod.mediashelf_add_item({"id": "a", "filename": "a.png", "size": 10})
        assert added["ok"] is True
        fetched = await mcp_mod.mediashelf_get_item("a")
        assert fetched["result"] == added["result"]

    @pytest.mark.asyncio
    async def test_search_with_and_without_filters(self, catalog):
        catalog.items.add(make_item("a", filename="cat.png", usage_count=5))
        catalog.items.add(make_item("b", filename="dog.png", usage_count=1))
        everything = await mcp_mod.mediashelf_search()
        assert len(everything["result"]) == 2
        ranked = await mcp_mod.mediashelf_search({"sortBy": "usageCount", "sortOrder": "ASC"})
        assert [i["id"] for i in ranked["result"]] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_view_all_and_favorites(self, catalog):
        catalog.items.add(make_item("a", is_favorite=True))
        catalog.items.add(make_item("b"))
        assert len((await mcp_mod.mediashelf_view())["result"]) == 2
        favorites = await mcp_mod.mediashelf_view("favorites")
        assert [i["id"] for i in favorites["result"]] == ["a"]

    @pytest.mark.asyncio
    async def test_update_rename_usage_delete(self, catalog):
        catalog.items.add(make_item("a"))
        updated = await mcp_mod.mediashelf_update_item("a", {"isFavorite": True})
        assert updated["result"]["isFavorite"] is True
        renamed = await mcp_mod.mediashelf_rename_item("a", "smile.png")
        assert renamed["result"]["filename"] == "smile.png"
        used = await mcp_mod.mediashelf_increment_usage("a")
        assert used["result"]["usageCount"] == 1
        assert (await mcp_mod.mediashelf_delete_item("a"))["ok"] is True
        assert (await mcp_mod.mediashelf_get_item("a"))["result"] is None

    @pytest.mark.asyncio
    async def test_duplicate_and_paths(self, catalog):
        catalog.items.add(make_item("a", filename="x.png", size=3))
        dup = await mcp_mod.mediashelf_find_duplicate("x.png", 3)
        assert dup["result"]["id"] == "a"
        paths = await mcp_mod.mediashelf_asset_paths(["a"])
        assert paths["result"]["a"]["storagePath"] == "/store/a.png"

    @pytest.mark.asyncio
    async def test_not_found_envelope(self):
        result = await mcp_mod.mediashelf_delete_item("missing")
        assert result == {
            "ok": False,
            "error": {"kind": "NotFound", "message": result["error"]["message"]},
        }


# ---------------------------------------------------------------------------
# Categories, tags, settings
# ---------------------------------------------------------------------------

class TestCatalogTools:

    @pytest.mark.asyncio
    async def test_category_lifecycle(self):
        created = await mcp_mod.mediashelf_add_category({"name": "Cats"})
        cat_id = created["result"]["id"]
        assert (await mcp_mod.mediashelf_get_category(cat_id))["result"]["name"] == "Cats"
        updated = await mcp_mod.mediashelf_update_category(cat_id, {"color": "#fa0"})
        assert updated["result"]["color"] == "#fa0"
        listed = await mcp_mod.mediashelf_list_categories()
        assert cat_id in [c["id"] for c in listed["result"]]
        assert (await mcp_mod.mediashelf_delete_category(cat_id))["ok"] is True

    @pytest.mark.asyncio
    async def test_builtin_category_protected(self):
        result = await mcp_mod.mediashelf_delete_category("favorites")
        assert result["error"]["kind"] == "ProtectedEntity"

    @pytest.mark.asyncio
    async def test_tag_lifecycle(self):
        tag = await mcp_mod.mediashelf_get_or_create_tag("Happy")
        again = await mcp_mod.mediashelf_get_or_create_tag("HAPPY")
        assert again["result"]["id"] == tag["result"]["id"]
        renamed = await mcp_mod.mediashelf_update_tag(tag["result"]["id"], {"name": "Joy"})
        assert renamed["result"]["name"] == "Joy"
        assert [t["name"] for t in (await mcp_mod.mediashelf_list_tags())["result"]] == ["Joy"]
        assert (await mcp_mod.mediashelf_delete_tag(tag["result"]["id"]))["ok"] is True

    @pytest.mark.asyncio
    async def test_settings(self):
        await mcp_mod.mediashelf_set_setting("theme", "dark")
        assert (await mcp_mod.mediashelf_get_setting("theme"))["result"] == "dark"
        assert (await mcp_mod.mediashelf_get_settings())["result"]["theme"] == "dark"
        assert (await mcp_mod.mediashelf_delete_setting("theme"))["ok"] is True
        assert (await mcp_mod.mediashelf_get_setting("theme"))["result"] is None

    @pytest.mark.asyncio
    async def test_stats(self, catalog):
        catalog.items.add(make_item("a", size=7, is_favorite=True))
        stats = (await mcp_mod.mediashelf_stats())["result"]
        assert stats["items"] == 1
        assert stats["favorites"] == 1
        assert stats["totalSize"] == 7


# ---------------------------------------------------------------------------
# Boundary behavior
# ---------------------------------------------------------------------------

class TestBoundary:

    @pytest.mark.asyncio
    async def test_storage_error_becomes_envelope(self):
        broken = MagicMock()
        broken.stats.side_effect = StorageIOError("disk gone")
        mcp_mod._catalog = broken
        result = await mcp_mod.mediashelf_stats()
        assert result == {"ok": False, "error": {"kind": "StorageIOError", "message": "disk gone"}}

    @pytest.mark.asyncio
    async def test_lazy_open_uses_store_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MEDIASHELF_STORE_PATH", str(tmp_path / "lazy"))
        mcp_mod._catalog = None
        try:
            result = await mcp_mod.mediashelf_stats()
            assert result["ok"] is True
            assert mcp_mod._catalog.store_path == (tmp_path / "lazy").resolve()
        finally:
            mcp_mod._catalog.close()

    @pytest.mark.asyncio
    async def test_open_failure_becomes_envelope(self, tmp_path, monkeypatch):
        store = tmp_path / "bad"
        store.mkdir()
        (store / "mediashelf.toml").write_text("not = = toml")
        monkeypatch.setenv("MEDIASHELF_STORE_PATH", str(store))
        mcp_mod._catalog = None
        result = await mcp_mod.mediashelf_stats()
        assert result["error"]["kind"] == "StorageInitError"
        assert mcp_mod._catalog is None

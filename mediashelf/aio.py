"""
Asyncio surface over a Catalog.

Every call runs on a worker thread via ``asyncio.to_thread``. The catalog
does its own locking, so concurrent awaits are safe: reads proceed in
parallel and writes queue behind the single writer.
"""

import asyncio
from pathlib import Path
from typing import Any, Iterable, Optional

from .api import Catalog
from .config import StoreConfig
from .handlers import handle
from .query import SearchFilters
from .types import AssetPaths, Category, Item, Tag


class AsyncCatalog:
    """
    Example:
        async with AsyncCatalog(store_path) as catalog:
            item = await catalog.add_item({"id": "a", "filename": "a.png"})
            items = await catalog.search({"keyword": "a"})
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        catalog: Optional[Catalog] = None,
    ) -> None:
        self._catalog = catalog if catalog is not None else Catalog(store_path, config=config)

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    async def _run(self, fn, *args) -> Any:
        return await asyncio.to_thread(fn, *args)

    async def open(self) -> "AsyncCatalog":
        await self._run(self._catalog.open)
        return self

    async def close(self) -> None:
        await self._run(self._catalog.close)

    async def __aenter__(self) -> "AsyncCatalog":
        return await self.open()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def request(self, name: str, payload: Any = None) -> dict:
        """Run a named request and return its result envelope."""
        return await handle(self._catalog, name, payload)

    # Items

    async def search(self, filters: SearchFilters | dict | None = None) -> list[Item]:
        return await self._run(self._catalog.search, filters)

    async def view(self, category_id: Optional[str], filters: SearchFilters | dict | None = None) -> list[Item]:
        return await self._run(self._catalog.view, category_id, filters)

    async def get_item(self, id: str) -> Optional[Item]:
        return await self._run(self._catalog.items.get, id)

    async def add_item(self, item: Item | dict) -> Item:
        return await self._run(self._catalog.items.add, item)

    async def update_item(self, id: str, changes: dict) -> Item:
        return await self._run(self._catalog.items.update, id, changes)

    async def delete_item(self, id: str) -> None:
        await self._run(self._catalog.items.delete, id)

    async def increment_usage(self, id: str) -> Item:
        return await self._run(self._catalog.items.increment_usage, id)

    async def asset_paths(self, ids: Iterable[str]) -> dict[str, AssetPaths]:
        return await self._run(self._catalog.items.asset_paths, list(ids))

    # Categories and tags

    async def list_categories(self) -> list[Category]:
        return await self._run(self._catalog.categories.list_all)

    async def create_category(self, category: Category | dict) -> Category:
        return await self._run(self._catalog.categories.create, category)

    async def delete_category(self, id: str) -> None:
        await self._run(self._catalog.categories.delete, id)

    async def create_or_get_tag(self, name: str, color: Optional[str] = None) -> Tag:
        return await self._run(self._catalog.tags.create_or_get, name, color)

    async def list_tags(self) -> list[Tag]:
        return await self._run(self._catalog.tags.list)

    # Settings

    async def get_setting(self, key: str, default: Any = None) -> Any:
        return await self._run(self._catalog.get_setting, key, default)

    async def set_setting(self, key: str, value: Any) -> None:
        await self._run(self._catalog.set_setting, key, value)

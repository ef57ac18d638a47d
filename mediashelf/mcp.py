"""
MCP stdio server for mediashelf: catalog tools for local agents.

Exposes every catalog request as an MCP tool. Each tool returns the same
envelope as ``mediashelf.handlers``: ``{"ok": true, "result": ...}`` or
``{"ok": false, "error": {"kind": ..., "message": ...}}``.

Usage:
    mediashelf mcp                  # stdio server (via CLI)
"""

import asyncio
import os
from pathlib import Path
from typing import Annotated, Any, Optional

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from .api import Catalog
from .errors import CatalogError
from .handlers import failure, handle

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "mediashelf",
    instructions=(
        "Local media catalog. Search, tag and categorize image assets, "
        "and read or change catalog settings."
    ),
)

_catalog: Optional[Catalog] = None
_lock = asyncio.Lock()


def _get_catalog() -> Catalog:
    """Lazy-open the catalog (respects MEDIASHELF_STORE_PATH).

    Must be called inside ``async with _lock`` so two tools never race
    on the global.
    """
    global _catalog
    if _catalog is None:
        store_path = os.environ.get("MEDIASHELF_STORE_PATH")
        catalog = Catalog(store_path=Path(store_path) if store_path else None)
        catalog.open()
        _catalog = catalog
    return _catalog


async def _call(name: str, payload: dict) -> dict:
    try:
        async with _lock:
            catalog = await asyncio.to_thread(_get_catalog)
    except CatalogError as e:
        return failure(e)
    return await handle(catalog, name, payload)


def _compact(**fields: Any) -> dict:
    """Payload with unset optional fields left out."""
    return {k: v for k, v in fields.items() if v is not None}


# ---------------------------------------------------------------------------
# Tool annotations
# ---------------------------------------------------------------------------

_READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False)
_IDEMPOTENT = ToolAnnotations(idempotentHint=True, destructiveHint=False)
_DESTRUCTIVE = ToolAnnotations(destructiveHint=True, idempotentHint=False)

_ID = Annotated[str, Field(description="Entity ID.")]
_UPDATES = Annotated[dict[str, Any], Field(
    description='Fields to change (camelCase). Example: {"isFavorite": true}',
)]


# ---------------------------------------------------------------------------
# Item tools
# ---------------------------------------------------------------------------


@mcp.tool(
    description=(
        "Search catalog items. All filters are optional and combine with AND: "
        "keyword, categoryId, tags (names), tagIds, excludeTagIds, format, "
        "sizeRange {min,max}, minWidth/maxWidth, minHeight/maxHeight, "
        "dateRange {start,end}, dateField, isFavorite, hasTransparency, isAnimated, "
        "sortBy (updatedAt|createdAt|usageCount|name|size), sortOrder (ASC|DESC), limit, offset."
    ),
    annotations=_READ_ONLY,
)
async def mediashelf_search(
    filters: Annotated[Optional[dict[str, Any]], Field(
        description='Search filters. Example: {"tags": ["happy"], "sortBy": "usageCount", "limit": 10}',
    )] = None,
) -> dict:
    """Search items."""
    return await _call("search-items", filters or {})


@mcp.tool(
    description=(
        "List the items shown for a sidebar category: 'favorites', 'recent', "
        "an empty string for everything, or a category ID."
    ),
    annotations=_READ_ONLY,
)
async def mediashelf_view(
    category_id: Annotated[str, Field(description="Category ID, or '' for all items.")] = "",
    filters: Annotated[Optional[dict[str, Any]], Field(
        description="Extra search filters combined with the view.",
    )] = None,
) -> dict:
    """List items for a category view."""
    return await _call("view-items", _compact(categoryId=category_id, filters=filters))


@mcp.tool(description="Get one item by ID. Result is null if absent.", annotations=_READ_ONLY)
async def mediashelf_get_item(id: _ID) -> dict:
    """Get an item."""
    return await _call("get-item", {"id": id})


@mcp.tool(
    description="Add an item record. The ID is generated when omitted; timestamps are set by the store.",
    annotations=_DESTRUCTIVE,
)
async def mediashelf_add_item(
    item: Annotated[dict[str, Any], Field(
        description='Item fields (camelCase). Example: {"filename": "smile.png", "format": "png", "size": 1024}',
    )],
) -> dict:
    """Add an item."""
    return await _call("add-item", {"item": item})


@mcp.tool(description="Change fields of an item. 'tags' replaces the whole tag set.", annotations=_IDEMPOTENT)
async def mediashelf_update_item(id: _ID, updates: _UPDATES) -> dict:
    """Update an item."""
    return await _call("update-item", {"id": id, "updates": updates})


@mcp.tool(description="Delete an item record (not its file).", annotations=_DESTRUCTIVE)
async def mediashelf_delete_item(id: _ID) -> dict:
    """Delete an item."""
    return await _call("delete-item", {"id": id})


@mcp.tool(description="Rename an item's display filename.", annotations=_IDEMPOTENT)
async def mediashelf_rename_item(
    id: _ID,
    filename: Annotated[str, Field(description="New display filename.")],
) -> dict:
    """Rename an item."""
    return await _call("rename-item", {"id": id, "filename": filename})


@mcp.tool(description="Record one use of an item (e.g. copied to clipboard).", annotations=_DESTRUCTIVE)
async def mediashelf_increment_usage(id: _ID) -> dict:
    """Increment an item's usage counter."""
    return await _call("increment-usage", {"id": id})


@mcp.tool(description="Find an existing item with the same filename and byte size.", annotations=_READ_ONLY)
async def mediashelf_find_duplicate(
    filename: Annotated[str, Field(description="Filename to look up.")],
    size: Annotated[int, Field(description="File size in bytes.", ge=0)],
) -> dict:
    """Find a duplicate item."""
    return await _call("find-duplicate", {"filename": filename, "size": size})


@mcp.tool(description="Storage and original paths for a list of item IDs.", annotations=_READ_ONLY)
async def mediashelf_asset_paths(
    ids: Annotated[list[str], Field(description="Item IDs.")],
) -> dict:
    """Locate item files."""
    return await _call("asset-paths", {"ids": ids})


# ---------------------------------------------------------------------------
# Category tools
# ---------------------------------------------------------------------------


@mcp.tool(description="List all categories, built-ins included, in display order.", annotations=_READ_ONLY)
async def mediashelf_list_categories() -> dict:
    """List categories."""
    return await _call("get-categories", {})


@mcp.tool(description="Get one category by ID. Result is null if absent.", annotations=_READ_ONLY)
async def mediashelf_get_category(id: _ID) -> dict:
    """Get a category."""
    return await _call("get-category", {"id": id})


@mcp.tool(description="Create a category. The ID is generated when omitted.", annotations=_DESTRUCTIVE)
async def mediashelf_add_category(
    category: Annotated[dict[str, Any], Field(
        description='Category fields. Example: {"name": "Cats", "color": "#ffaa00", "parentId": null}',
    )],
) -> dict:
    """Create a category."""
    return await _call("add-category", {"category": category})


@mcp.tool(description="Change fields of a category.", annotations=_IDEMPOTENT)
async def mediashelf_update_category(id: _ID, updates: _UPDATES) -> dict:
    """Update a category."""
    return await _call("update-category", {"id": id, "updates": updates})


@mcp.tool(
    description="Delete a user category. Built-ins cannot be deleted; items keep their category ID.",
    annotations=_DESTRUCTIVE,
)
async def mediashelf_delete_category(id: _ID) -> dict:
    """Delete a category."""
    return await _call("delete-category", {"id": id})


# ---------------------------------------------------------------------------
# Tag tools
# ---------------------------------------------------------------------------


@mcp.tool(description="List all tags ordered by name.", annotations=_READ_ONLY)
async def mediashelf_list_tags() -> dict:
    """List tags."""
    return await _call("get-tags", {})


@mcp.tool(
    description="Get the tag with this name (case-insensitive), creating it if needed.",
    annotations=_IDEMPOTENT,
)
async def mediashelf_get_or_create_tag(
    name: Annotated[str, Field(description="Tag name.")],
    color: Annotated[Optional[str], Field(description="Color for a newly created tag.")] = None,
    description: Annotated[Optional[str], Field(description="Description for a newly created tag.")] = None,
) -> dict:
    """Get or create a tag."""
    return await _call("get-or-create-tag", _compact(name=name, color=color, description=description))


@mcp.tool(description="Rename or recolor a tag.", annotations=_IDEMPOTENT)
async def mediashelf_update_tag(id: _ID, updates: _UPDATES) -> dict:
    """Update a tag."""
    return await _call("update-tag", {"id": id, "updates": updates})


@mcp.tool(description="Delete a tag. Items keep the tag ID.", annotations=_DESTRUCTIVE)
async def mediashelf_delete_tag(id: _ID) -> dict:
    """Delete a tag."""
    return await _call("delete-tag", {"id": id})


# ---------------------------------------------------------------------------
# Settings and stats
# ---------------------------------------------------------------------------


@mcp.tool(description="Read one setting. Result is null if unset.", annotations=_READ_ONLY)
async def mediashelf_get_setting(key: Annotated[str, Field(description="Setting key.")]) -> dict:
    """Get a setting."""
    return await _call("get-setting", {"key": key})


@mcp.tool(description="Write one setting. Any JSON value is accepted.", annotations=_IDEMPOTENT)
async def mediashelf_set_setting(
    key: Annotated[str, Field(description="Setting key.")],
    value: Annotated[Any, Field(description="JSON value: null, bool, number, string, array or object.")],
) -> dict:
    """Set a setting."""
    return await _call("set-setting", {"key": key, "value": value})


@mcp.tool(description="Remove one setting.", annotations=_DESTRUCTIVE)
async def mediashelf_delete_setting(key: Annotated[str, Field(description="Setting key.")]) -> dict:
    """Delete a setting."""
    return await _call("delete-setting", {"key": key})


@mcp.tool(description="Read all settings.", annotations=_READ_ONLY)
async def mediashelf_get_settings() -> dict:
    """Get all settings."""
    return await _call("get-settings", {})


@mcp.tool(description="Counts of items, categories, tags, settings and favorites.", annotations=_READ_ONLY)
async def mediashelf_stats() -> dict:
    """Catalog statistics."""
    return await _call("get-stats", {})


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    """Run the MCP stdio server."""
    import signal
    # anyio's stdin reader shields the blocking readline from cancellation,
    # so the first Ctrl+C would be ignored without this handler.
    signal.signal(signal.SIGINT, lambda *_: os._exit(130))
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()

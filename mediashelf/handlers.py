"""
Named requests over a Catalog, with structured results.

Each request takes a JSON-style payload (camelCase keys) and yields either

    {"ok": True, "result": ...}
    {"ok": False, "error": {"kind": "NotFound", "message": "..."}}

The handlers themselves are plain synchronous functions; ``handle`` runs
them on a worker thread so an event loop serving many callers never
blocks on storage I/O.
"""

import asyncio
import logging
from typing import Any, Callable

from .api import Catalog
from .errors import CatalogError, InvalidArgument, error_payload

logger = logging.getLogger(__name__)

Handler = Callable[[Catalog, dict], Any]


def _arg(payload: dict, key: str) -> Any:
    if key not in payload:
        raise InvalidArgument(f"Missing request field: {key!r}")
    return payload[key]


def _dict_or_none(entity) -> Any:
    return entity.to_dict() if entity is not None else None


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------

def search_items(catalog: Catalog, payload: dict) -> list[dict]:
    return [item.to_dict() for item in catalog.search(payload)]


def view_items(catalog: Catalog, payload: dict) -> list[dict]:
    items = catalog.view(payload.get("categoryId"), payload.get("filters"))
    return [item.to_dict() for item in items]


def get_item(catalog: Catalog, payload: dict) -> Any:
    return _dict_or_none(catalog.items.get(_arg(payload, "id")))


def add_item(catalog: Catalog, payload: dict) -> dict:
    return catalog.items.add(_arg(payload, "item")).to_dict()


def update_item(catalog: Catalog, payload: dict) -> dict:
    return catalog.items.update(_arg(payload, "id"), _arg(payload, "updates")).to_dict()


def delete_item(catalog: Catalog, payload: dict) -> None:
    catalog.items.delete(_arg(payload, "id"))


def rename_item(catalog: Catalog, payload: dict) -> dict:
    return catalog.items.rename(_arg(payload, "id"), _arg(payload, "filename")).to_dict()


def increment_usage(catalog: Catalog, payload: dict) -> dict:
    return catalog.items.increment_usage(_arg(payload, "id")).to_dict()


def find_duplicate(catalog: Catalog, payload: dict) -> Any:
    return _dict_or_none(
        catalog.items.find_duplicate(_arg(payload, "filename"), _arg(payload, "size"))
    )


def asset_paths(catalog: Catalog, payload: dict) -> dict:
    ids = _arg(payload, "ids")
    if not isinstance(ids, list):
        raise InvalidArgument("ids must be a list")
    return {
        id: {"storagePath": paths.storage_path, "originalPath": paths.original_path}
        for id, paths in catalog.items.asset_paths(ids).items()
    }


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def get_categories(catalog: Catalog, payload: dict) -> list[dict]:
    return [category.to_dict() for category in catalog.categories.list_all()]


def get_category(catalog: Catalog, payload: dict) -> Any:
    return _dict_or_none(catalog.categories.get(_arg(payload, "id")))


def add_category(catalog: Catalog, payload: dict) -> dict:
    return catalog.categories.create(_arg(payload, "category")).to_dict()


def update_category(catalog: Catalog, payload: dict) -> dict:
    return catalog.categories.update(_arg(payload, "id"), _arg(payload, "updates")).to_dict()


def delete_category(catalog: Catalog, payload: dict) -> None:
    catalog.categories.delete(_arg(payload, "id"))


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------

def get_tags(catalog: Catalog, payload: dict) -> list[dict]:
    return [tag.to_dict() for tag in catalog.tags.list()]


def get_or_create_tag(catalog: Catalog, payload: dict) -> dict:
    return catalog.tags.create_or_get(
        _arg(payload, "name"), payload.get("color"), payload.get("description"),
    ).to_dict()


def update_tag(catalog: Catalog, payload: dict) -> dict:
    return catalog.tags.update(_arg(payload, "id"), _arg(payload, "updates")).to_dict()


def delete_tag(catalog: Catalog, payload: dict) -> None:
    catalog.tags.delete(_arg(payload, "id"))


# ---------------------------------------------------------------------------
# Settings and stats
# ---------------------------------------------------------------------------

def get_setting(catalog: Catalog, payload: dict) -> Any:
    return catalog.get_setting(_arg(payload, "key"))


def set_setting(catalog: Catalog, payload: dict) -> None:
    catalog.set_setting(_arg(payload, "key"), _arg(payload, "value"))


def delete_setting(catalog: Catalog, payload: dict) -> None:
    catalog.settings.delete(_arg(payload, "key"))


def get_settings(catalog: Catalog, payload: dict) -> dict:
    return catalog.settings.all()


def get_stats(catalog: Catalog, payload: dict) -> dict:
    return catalog.stats()


REQUESTS: dict[str, Handler] = {
    "search-items": search_items,
    "view-items": view_items,
    "get-item": get_item,
    "add-item": add_item,
    "update-item": update_item,
    "delete-item": delete_item,
    "rename-item": rename_item,
    "increment-usage": increment_usage,
    "find-duplicate": find_duplicate,
    "asset-paths": asset_paths,
    "get-categories": get_categories,
    "get-category": get_category,
    "add-category": add_category,
    "update-category": update_category,
    "delete-category": delete_category,
    "get-tags": get_tags,
    "get-or-create-tag": get_or_create_tag,
    "update-tag": update_tag,
    "delete-tag": delete_tag,
    "get-setting": get_setting,
    "set-setting": set_setting,
    "delete-setting": delete_setting,
    "get-settings": get_settings,
    "get-stats": get_stats,
}


def ok(result: Any) -> dict:
    return {"ok": True, "result": result}


def failure(exc: CatalogError) -> dict:
    return {"ok": False, "error": error_payload(exc)}


def dispatch(catalog: Catalog, name: str, payload: Any = None) -> dict:
    """Run one request synchronously and wrap the outcome."""
    try:
        handler = REQUESTS.get(name)
        if handler is None:
            raise InvalidArgument(f"Unknown request: {name!r}")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise InvalidArgument(f"Request payload must be an object, got {type(payload).__name__}")
        result = handler(catalog, payload)
    except CatalogError as e:
        logger.debug("Request %s failed: %s: %s", name, e.kind, e)
        return failure(e)
    return ok(result)


async def handle(catalog: Catalog, name: str, payload: Any = None) -> dict:
    """Run one request on a worker thread and wrap the outcome."""
    return await asyncio.to_thread(dispatch, catalog, name, payload)

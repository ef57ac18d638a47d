"""
mediashelf: embedded catalog store for a personal media library.

Items (image asset metadata), categories, tags and settings in one SQLite
file, with filtered, sorted and paginated search.
"""

from importlib.metadata import PackageNotFoundError, version

from .aio import AsyncCatalog
from .api import Catalog
from .config import StoreConfig
from .errors import (
    CatalogError,
    Conflict,
    InvalidArgument,
    NotFound,
    ProtectedEntity,
    StorageInitError,
    StorageIOError,
)
from .query import SearchFilters
from .tags import normalize_tag_name
from .types import AssetPaths, BUILTIN_CATEGORY_IDS, Category, Item, Tag

try:
    __version__ = version("mediashelf")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "AssetPaths",
    "AsyncCatalog",
    "BUILTIN_CATEGORY_IDS",
    "Catalog",
    "CatalogError",
    "Category",
    "Conflict",
    "InvalidArgument",
    "Item",
    "NotFound",
    "ProtectedEntity",
    "SearchFilters",
    "StorageIOError",
    "StorageInitError",
    "StoreConfig",
    "Tag",
    "normalize_tag_name",
]

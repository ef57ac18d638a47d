"""
Catalog: the owned store object callers open, use and close.

Example:
    with Catalog("~/Pictures/.mediashelf") as catalog:
        tag = catalog.tags.create_or_get("Happy")
        catalog.items.add(Item(id="a", filename="smile.png", tags=[tag.id]))
        found = catalog.search({"tags": ["happy"]})
"""

import dataclasses
import logging
import threading
from pathlib import Path
from typing import Any, Optional

from .categories import CategoryStore
from .config import StoreConfig, get_default_store_path, load_or_create_config
from .database import Database
from .errors import StorageInitError, StorageIOError
from .items import ItemStore
from .logging_config import configure_ops_log, remove_ops_log
from .query import QueryEngine, SearchFilters
from .schema import SCHEMA_VERSION, ensure_schema
from .settings import SettingsStore, default_settings
from .tags import TagStore
from .types import Item

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 100


class Catalog:
    """
    Media catalog store: items, categories, tags, settings and search.

    Nothing touches disk until ``open()``. Every store attribute raises
    StorageIOError before ``open()`` and after ``close()``.
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
    ) -> None:
        """
        Args:
            store_path: Store directory. Defaults to MEDIASHELF_STORE_PATH
                or ~/.mediashelf.
            config: Pre-loaded StoreConfig (skips reading mediashelf.toml).
        """
        if config is not None:
            self._config: Optional[StoreConfig] = config
            self._store_path = Path(config.path)
        else:
            self._config = None
            if store_path is not None:
                self._store_path = Path(store_path).expanduser().resolve()
            else:
                self._store_path = get_default_store_path()

        self._db: Optional[Database] = None
        self._items: Optional[ItemStore] = None
        self._tags: Optional[TagStore] = None
        self._categories: Optional[CategoryStore] = None
        self._settings: Optional[SettingsStore] = None
        self._query: Optional[QueryEngine] = None
        self._ops_log_handler = None
        self._initialized = False
        self._lifecycle_lock = threading.Lock()
        self._init_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def open(self) -> "Catalog":
        """
        Open the database and bring its schema up to date. Idempotent.

        Raises:
            StorageInitError: unreadable config, or a database that cannot
                be opened, is corrupt, or is newer than supported
        """
        with self._lifecycle_lock:
            if self._db is not None:
                return self
            if self._config is None:
                try:
                    self._config = load_or_create_config(self._store_path)
                except (OSError, ValueError) as e:
                    raise StorageInitError(f"Cannot load catalog config: {e}") from e

            db = Database(self._config.database_path)
            db.open()
            self._db = db
            self._initialized = False
            try:
                self.ensure_initialized()
            except BaseException:
                self._db = None
                db.close()
                raise

            self._items = ItemStore(db, strict_references=self._config.strict_references)
            self._tags = TagStore(db)
            self._categories = CategoryStore(db)
            self._settings = SettingsStore(db)
            self._query = QueryEngine(db)
            try:
                self._ops_log_handler = configure_ops_log(self._store_path)
            except OSError as e:
                logger.warning("Operations log unavailable: %s", e)
            logger.info("Opened catalog %s", self._store_path)
        return self

    def ensure_initialized(self) -> None:
        """
        Create or migrate the schema and seed built-in data, once.

        Concurrent callers wait for the first one to finish.
        """
        with self._init_lock:
            if self._initialized:
                return
            db = self._require_db()
            defaults = default_settings(self._store_path)
            defaults.update(self._config.settings if self._config else {})
            previous = ensure_schema(db, defaults)
            if previous != SCHEMA_VERSION:
                logger.info("Catalog schema at v%d (was v%d)", SCHEMA_VERSION, previous)
            self._initialized = True

    def close(self) -> None:
        """Close the database. Safe to call more than once."""
        with self._lifecycle_lock:
            if self._db is not None:
                self._db.close()
                logger.info("Closed catalog %s", self._store_path)
            self._db = None
            self._items = self._tags = self._categories = None
            self._settings = self._query = None
            self._initialized = False
            remove_ops_log(self._ops_log_handler)
            self._ops_log_handler = None

    def __enter__(self) -> "Catalog":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def config(self) -> Optional[StoreConfig]:
        return self._config

    @property
    def is_open(self) -> bool:
        return self._db is not None

    def _require_db(self) -> Database:
        if self._db is None:
            raise StorageIOError("Catalog is not open")
        return self._db

    def _require(self, store):
        if store is None:
            raise StorageIOError("Catalog is not open")
        return store

    # -------------------------------------------------------------------------
    # Stores
    # -------------------------------------------------------------------------

    @property
    def items(self) -> ItemStore:
        return self._require(self._items)

    @property
    def tags(self) -> TagStore:
        return self._require(self._tags)

    @property
    def categories(self) -> CategoryStore:
        return self._require(self._categories)

    @property
    def settings(self) -> SettingsStore:
        return self._require(self._settings)

    @property
    def query(self) -> QueryEngine:
        return self._require(self._query)

    # -------------------------------------------------------------------------
    # Shortcuts
    # -------------------------------------------------------------------------

    def search(self, filters: SearchFilters | dict | None = None) -> list[Item]:
        return self.query.search(filters)

    def get_setting(self, key: str, default: Any = None) -> Any:
        return self.settings.get(key, default)

    def set_setting(self, key: str, value: Any) -> None:
        self.settings.set(key, value)

    def view(self, category_id: Optional[str], filters: SearchFilters | dict | None = None) -> list[Item]:
        """
        Items shown when a category is selected in the sidebar.

        ``favorites`` lists favorite items from any category, ``recent`` the
        most recently updated items up to the ``recentLimit`` setting, and
        an empty id lists everything. Any other id is an exact category match.
        """
        if isinstance(filters, SearchFilters):
            filters = dataclasses.replace(filters)
        else:
            filters = SearchFilters.from_dict(filters)

        if category_id == "favorites":
            filters.category_id = None
            filters.is_favorite = True
        elif category_id == "recent":
            limit = self.get_setting("recentLimit", DEFAULT_RECENT_LIMIT)
            if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
                limit = DEFAULT_RECENT_LIMIT
            filters.category_id = None
            filters.sort_by = "updatedAt"
            filters.sort_order = "DESC"
            filters.limit = limit
        elif category_id:
            filters.category_id = category_id
        else:
            filters.category_id = None
        return self.search(filters)

    def stats(self) -> dict[str, int]:
        """Row counts per entity kind, read from one snapshot."""
        with self._require_db().snapshot() as conn:
            counts = {
                name: conn.execute(f"SELECT count(*) FROM {table}").fetchone()[0]
                for name, table in (
                    ("items", "items"),
                    ("categories", "categories"),
                    ("tags", "tags"),
                    ("settings", "settings"),
                )
            }
            counts["favorites"] = conn.execute(
                "SELECT count(*) FROM items WHERE is_favorite = 1"
            ).fetchone()[0]
            counts["totalSize"] = conn.execute(
                "SELECT coalesce(sum(size), 0) FROM items"
            ).fetchone()[0]
        return counts

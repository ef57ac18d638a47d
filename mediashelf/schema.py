"""
Schema creation and migration for the catalog database.

The schema version lives in SQLite's ``PRAGMA user_version``:

- 0: no tables (fresh file), or a legacy desktop-app database holding an
  ``emojis`` table with tag *names* as a JSON array on each row
- 1: items / item_tags / categories / tags / settings
- 2: adds categories.position, categories.icon, items.has_transparency,
  items.is_animated

``ensure_schema`` brings any of these to SCHEMA_VERSION in one write
transaction, then seeds built-in categories and default settings.
"""

import json
import logging
import sqlite3
from typing import Any, Optional

from .database import Database
from .errors import InvalidArgument, StorageInitError, StorageIOError
from .settings import encode_value
from .tags import insert_or_get_tag
from .types import BUILTIN_CATEGORIES, canonical_timestamp, utc_now

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

_CATEGORIES_TABLE = """
    CREATE TABLE IF NOT EXISTS categories (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        color TEXT,
        parent_id TEXT,
        position INTEGER,
        icon TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""

_TAGS_TABLE = """
    CREATE TABLE IF NOT EXISTS tags (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        name_key TEXT NOT NULL UNIQUE,
        color TEXT,
        description TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""

# category_id and item_tags.tag_id are soft references: no foreign keys,
# deleting a category or tag leaves them dangling on purpose.
_ITEMS_TABLE = """
    CREATE TABLE IF NOT EXISTS items (
        id TEXT PRIMARY KEY,
        filename TEXT NOT NULL,
        original_path TEXT NOT NULL DEFAULT '',
        storage_path TEXT NOT NULL DEFAULT '',
        format TEXT NOT NULL DEFAULT '',
        size INTEGER NOT NULL DEFAULT 0,
        width INTEGER NOT NULL DEFAULT 0,
        height INTEGER NOT NULL DEFAULT 0,
        category_id TEXT,
        is_favorite INTEGER NOT NULL DEFAULT 0,
        usage_count INTEGER NOT NULL DEFAULT 0,
        has_transparency INTEGER NOT NULL DEFAULT 0,
        is_animated INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""

_ITEM_TAGS_TABLE = """
    CREATE TABLE IF NOT EXISTS item_tags (
        item_id TEXT NOT NULL,
        tag_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        PRIMARY KEY (item_id, tag_id)
    )
"""

_SETTINGS_TABLE = """
    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        kind TEXT NOT NULL,
        value TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_items_category ON items(category_id)",
    "CREATE INDEX IF NOT EXISTS idx_items_favorite ON items(is_favorite)",
    "CREATE INDEX IF NOT EXISTS idx_items_updated ON items(updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_items_created ON items(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_items_filename ON items(filename, size)",
    "CREATE INDEX IF NOT EXISTS idx_item_tags_tag ON item_tags(tag_id)",
)

# Columns added in version 2: (table, column, definition)
_V2_COLUMNS = (
    ("categories", "position", "INTEGER"),
    ("categories", "icon", "TEXT"),
    ("items", "has_transparency", "INTEGER NOT NULL DEFAULT 0"),
    ("items", "is_animated", "INTEGER NOT NULL DEFAULT 0"),
)


def get_schema_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def _tables(conn: sqlite3.Connection) -> set[str]:
    return {
        row[0] for row in conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        )
    }


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}


def _add_missing_columns(conn: sqlite3.Connection, only: Optional[str] = None) -> None:
    for table, column, definition in _V2_COLUMNS:
        if only is not None and table != only:
            continue
        if column not in _columns(conn, table):
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")


def _legacy_timestamp(value: Any) -> str:
    """Convert legacy CURRENT_TIMESTAMP text; unparseable values become now."""
    if value is None:
        return utc_now()
    try:
        return canonical_timestamp(str(value))
    except InvalidArgument:
        return utc_now()


def _create_tables(conn: sqlite3.Connection) -> None:
    for ddl in (_CATEGORIES_TABLE, _TAGS_TABLE, _ITEMS_TABLE, _ITEM_TAGS_TABLE, _SETTINGS_TABLE):
        conn.execute(ddl)


def _create_indexes(conn: sqlite3.Connection) -> None:
    for ddl in _INDEXES:
        conn.execute(ddl)


def _migrate_legacy(conn: sqlite3.Connection, tables: set[str]) -> None:
    """Import a desktop-app database (emojis table, tag names inline)."""
    if "categories" in tables:
        _add_missing_columns(conn, only="categories")
        for row in conn.execute("SELECT id, created_at, updated_at FROM categories").fetchall():
            conn.execute(
                "UPDATE categories SET created_at = ?, updated_at = ? WHERE id = ?",
                (_legacy_timestamp(row["created_at"]), _legacy_timestamp(row["updated_at"]), row["id"]),
            )

    if "settings" in tables and "kind" not in _columns(conn, "settings"):
        conn.execute("ALTER TABLE settings ADD COLUMN kind TEXT NOT NULL DEFAULT 'null'")
        for row in conn.execute("SELECT key, value, updated_at FROM settings").fetchall():
            try:
                kind, text = encode_value(json.loads(row["value"]))
            except (ValueError, TypeError, InvalidArgument):
                # Legacy values that are not JSON are kept as plain strings
                kind, text = encode_value(row["value"])
            conn.execute(
                "UPDATE settings SET kind = ?, value = ?, updated_at = ? WHERE key = ?",
                (kind, text, _legacy_timestamp(row["updated_at"]), row["key"]),
            )

    _create_tables(conn)

    imported = 0
    for row in conn.execute("SELECT * FROM emojis").fetchall():
        now = utc_now()
        try:
            names = json.loads(row["tags"]) if row["tags"] else []
        except ValueError:
            names = []
        if not isinstance(names, list):
            names = []
        tag_ids: list[str] = []
        for name in names:
            if not isinstance(name, str) or not name.strip():
                continue
            tag, _ = insert_or_get_tag(conn, name, now=now)
            if tag.id not in tag_ids:
                tag_ids.append(tag.id)

        conn.execute("""
            INSERT OR IGNORE INTO items
            (id, filename, original_path, storage_path, format, size, width, height,
             category_id, is_favorite, usage_count, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            row["id"], row["filename"], row["original_path"] or "", row["storage_path"] or "",
            row["format"] or "", row["size"] or 0, row["width"] or 0, row["height"] or 0,
            row["category_id"], int(bool(row["is_favorite"])), row["usage_count"] or 0,
            _legacy_timestamp(row["created_at"]), _legacy_timestamp(row["updated_at"]),
        ))
        conn.executemany(
            "INSERT OR IGNORE INTO item_tags (item_id, tag_id, position) VALUES (?, ?, ?)",
            [(row["id"], tag_id, pos) for pos, tag_id in enumerate(tag_ids)],
        )
        imported += 1

    conn.execute("DROP TABLE emojis")
    logger.info("Imported %d items from legacy catalog database", imported)


def _seed(conn: sqlite3.Connection, default_settings: dict[str, Any]) -> None:
    now = utc_now()
    for position, (cat_id, name, description, icon) in enumerate(BUILTIN_CATEGORIES):
        conn.execute("""
            INSERT OR IGNORE INTO categories
            (id, name, description, position, icon, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (cat_id, name, description, position, icon, now, now))

    for key, value in default_settings.items():
        kind, text = encode_value(value)
        conn.execute(
            "INSERT OR IGNORE INTO settings (key, kind, value, updated_at) VALUES (?, ?, ?, ?)",
            (key, kind, text, now),
        )


def ensure_schema(db: Database, default_settings: Optional[dict[str, Any]] = None) -> int:
    """
    Create or upgrade the schema and seed built-in data. Idempotent.

    Returns:
        The schema version found on disk before any upgrade.

    Raises:
        StorageInitError: the file is newer than supported, or the
            migration could not be written
    """
    try:
        with db.transaction() as conn:
            version = get_schema_version(conn)
            if version > SCHEMA_VERSION:
                raise StorageInitError(
                    f"Catalog schema version {version} is newer than supported ({SCHEMA_VERSION})"
                )

            if version < SCHEMA_VERSION:
                tables = _tables(conn)
                if version == 0 and "emojis" in tables:
                    logger.info("Migrating legacy catalog database to schema v%d", SCHEMA_VERSION)
                    _migrate_legacy(conn, tables)
                elif version == 1:
                    logger.info("Upgrading catalog schema v1 -> v%d", SCHEMA_VERSION)
                    _add_missing_columns(conn)
                _create_tables(conn)
                conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

            _create_indexes(conn)
            _seed(conn, default_settings or {})
    except StorageIOError as e:
        raise StorageInitError(f"Cannot initialize catalog schema: {e}") from e
    return version

"""
Item store: metadata for cataloged assets.

An item's tag set lives in ``item_tags`` (one row per tag id, with its
position so the caller's order survives). References to categories and
tags are soft: nothing here repairs or rejects them after the fact, and
with ``strict_references`` off nothing checks them at write time either.
"""

import logging
import sqlite3
import uuid
from typing import Any, Iterable, Optional

from .database import Database, update_columns
from .errors import Conflict, InvalidArgument, NotFound
from .types import (
    AssetPaths,
    Item,
    check_bool,
    check_int,
    check_str,
    snake_keys,
    utc_now,
    validate_id,
)

logger = logging.getLogger(__name__)

ITEM_COLUMNS = (
    "id", "filename", "original_path", "storage_path", "format",
    "size", "width", "height", "category_id", "is_favorite", "usage_count",
    "has_transparency", "is_animated", "created_at", "updated_at",
)
_SELECT_ITEM = f"SELECT {', '.join(ITEM_COLUMNS)} FROM items"
_BOOL_COLUMNS = frozenset({"is_favorite", "has_transparency", "is_animated"})
_COUNT_COLUMNS = frozenset({"size", "width", "height", "usage_count"})
_PATH_COLUMNS = frozenset({"original_path", "storage_path", "format"})
_IMMUTABLE = frozenset({"id", "created_at", "updated_at"})
_UPDATABLE = Item.field_names() - _IMMUTABLE

# Stay well under SQLite's bound-parameter limit
_CHUNK = 500


def _chunks(values: list, size: int = _CHUNK) -> Iterable[list]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


def dedupe_tag_ids(tags: Any) -> list[str]:
    """Validate a tag id list and drop repeats, keeping first occurrences."""
    if not isinstance(tags, (list, tuple)):
        raise InvalidArgument(f"tags must be a list of tag IDs, got {type(tags).__name__}")
    return list(dict.fromkeys(validate_id(t, "Tag ID") for t in tags))


def _validate_column(column: str, value: Any) -> Any:
    if column == "filename":
        return check_str(value, "filename", allow_empty=False)
    if column in _PATH_COLUMNS:
        return check_str(value, column)
    if column in _COUNT_COLUMNS:
        return check_int(value, column)
    if column in _BOOL_COLUMNS:
        return int(check_bool(value, column))
    if column == "category_id":
        return None if value is None else validate_id(value, "Category ID")
    raise InvalidArgument(f"Unknown item field: {column!r}")


def load_tag_ids(conn: sqlite3.Connection, item_ids: list[str]) -> dict[str, list[str]]:
    """Tag ids per item, in stored order. Items without tags are absent."""
    result: dict[str, list[str]] = {}
    for chunk in _chunks(item_ids):
        placeholders = ",".join("?" * len(chunk))
        for row in conn.execute(f"""
            SELECT item_id, tag_id FROM item_tags
            WHERE item_id IN ({placeholders})
            ORDER BY item_id, position
        """, chunk):
            result.setdefault(row["item_id"], []).append(row["tag_id"])
    return result


def rows_to_items(conn: sqlite3.Connection, rows: list[sqlite3.Row]) -> list[Item]:
    """Build Items from item rows, loading tag sets on the same connection."""
    tags = load_tag_ids(conn, [row["id"] for row in rows])
    items = []
    for row in rows:
        values = {column: row[column] for column in ITEM_COLUMNS}
        for column in _BOOL_COLUMNS:
            values[column] = bool(values[column])
        items.append(Item(tags=tags.get(row["id"], []), **values))
    return items


def _write_tags(conn: sqlite3.Connection, item_id: str, tag_ids: list[str]) -> None:
    conn.execute("DELETE FROM item_tags WHERE item_id = ?", (item_id,))
    conn.executemany(
        "INSERT INTO item_tags (item_id, tag_id, position) VALUES (?, ?, ?)",
        [(item_id, tag_id, position) for position, tag_id in enumerate(tag_ids)],
    )


def _check_references(
    conn: sqlite3.Connection,
    category_id: Optional[str],
    tag_ids: Optional[list[str]],
) -> None:
    if category_id is not None:
        found = conn.execute(
            "SELECT 1 FROM categories WHERE id = ?", (category_id,)
        ).fetchone()
        if not found:
            raise NotFound(f"Category not found: {category_id}")
    if tag_ids:
        known: set[str] = set()
        for chunk in _chunks(tag_ids):
            placeholders = ",".join("?" * len(chunk))
            known.update(
                row["id"] for row in
                conn.execute(f"SELECT id FROM tags WHERE id IN ({placeholders})", chunk)
            )
        missing = [t for t in tag_ids if t not in known]
        if missing:
            raise NotFound(f"Tag not found: {', '.join(missing)}")


class ItemStore:
    """
    Owns item rows and their tag links.

    Args:
        db: Shared database
        strict_references: Reject unknown category/tag ids on add/update
    """

    def __init__(self, db: Database, *, strict_references: bool = False):
        self._db = db
        self._strict = strict_references

    def _fetch(self, conn: sqlite3.Connection, id: str) -> Optional[Item]:
        row = conn.execute(f"{_SELECT_ITEM} WHERE id = ?", (id,)).fetchone()
        if row is None:
            return None
        return rows_to_items(conn, [row])[0]

    def add(self, item: Item | dict) -> Item:
        """
        Insert a new item. An empty id is replaced by a generated one.

        Both timestamps are set to now, whatever the input carries.

        Raises:
            Conflict: an item with this id already exists
            InvalidArgument: malformed fields
        """
        if isinstance(item, dict):
            item = Item.from_dict(item)
        id = validate_id(item.id, "Item ID") if item.id else uuid.uuid4().hex
        values = {
            column: _validate_column(column, getattr(item, column))
            for column in ITEM_COLUMNS if column not in _IMMUTABLE
        }
        tag_ids = dedupe_tag_ids(item.tags)
        now = utc_now()

        with self._db.transaction() as conn:
            if self._strict:
                _check_references(conn, values["category_id"], tag_ids)
            try:
                conn.execute(
                    f"INSERT INTO items ({', '.join(ITEM_COLUMNS)}) "
                    f"VALUES ({', '.join('?' * len(ITEM_COLUMNS))})",
                    (id, *values.values(), now, now),
                )
            except sqlite3.IntegrityError as e:
                raise Conflict(f"Item already exists: {id}") from e
            _write_tags(conn, id, tag_ids)
            created = self._fetch(conn, id)
        logger.info("Added item %s (%r)", id, created.filename)
        return created

    def get(self, id: str) -> Optional[Item]:
        """The item, or None if absent."""
        validate_id(id, "Item ID")
        with self._db.snapshot() as conn:
            return self._fetch(conn, id)

    def update(self, id: str, changes: dict) -> Item:
        """
        Merge ``changes`` into an item and refresh updated_at.

        Only the supplied columns are written, so two updates touching
        disjoint fields both take effect. ``tags`` replaces the whole set.

        Raises:
            NotFound: no item with this id
            InvalidArgument: unknown or immutable fields, bad values
        """
        validate_id(id, "Item ID")
        if isinstance(changes, dict):
            immutable = sorted(k for k in changes if isinstance(k, str) and
                               (k in _IMMUTABLE or k in ("createdAt", "updatedAt")))
            if immutable:
                raise InvalidArgument(f"Item fields cannot be changed: {', '.join(immutable)}")
        changes = snake_keys(changes, _UPDATABLE, "item")
        tag_ids = dedupe_tag_ids(changes.pop("tags")) if "tags" in changes else None
        values = {column: _validate_column(column, value) for column, value in changes.items()}

        with self._db.transaction() as conn:
            if self._strict:
                _check_references(conn, values.get("category_id"), tag_ids)
            if not update_columns(conn, "items", id, values, utc_now()):
                raise NotFound(f"Item not found: {id}")
            if tag_ids is not None:
                _write_tags(conn, id, tag_ids)
            updated = self._fetch(conn, id)
        fields = sorted(values) + (["tags"] if tag_ids is not None else [])
        logger.info("Updated item %s: %s", id, ", ".join(fields) or "touch")
        return updated

    def rename(self, id: str, filename: str) -> Item:
        return self.update(id, {"filename": filename})

    def delete(self, id: str) -> None:
        """Hard delete an item and its tag links."""
        validate_id(id, "Item ID")
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM items WHERE id = ?", (id,))
            if cursor.rowcount == 0:
                raise NotFound(f"Item not found: {id}")
            conn.execute("DELETE FROM item_tags WHERE item_id = ?", (id,))
        logger.info("Deleted item %s", id)

    def increment_usage(self, id: str) -> Item:
        """Atomically bump usage_count, e.g. when the item is copied out."""
        validate_id(id, "Item ID")
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE items SET usage_count = usage_count + 1, updated_at = ? WHERE id = ?",
                (utc_now(), id),
            )
            if cursor.rowcount == 0:
                raise NotFound(f"Item not found: {id}")
            item = self._fetch(conn, id)
        logger.debug("Usage of item %s is now %d", id, item.usage_count)
        return item

    def find_duplicate(self, filename: str, size: int) -> Optional[Item]:
        """The oldest item with this filename and byte size, if any."""
        check_str(filename, "filename", allow_empty=False)
        check_int(size, "size")
        with self._db.snapshot() as conn:
            row = conn.execute(
                f"{_SELECT_ITEM} WHERE filename = ? AND size = ? ORDER BY created_at, id LIMIT 1",
                (filename, size),
            ).fetchone()
            return rows_to_items(conn, [row])[0] if row else None

    def asset_paths(self, ids: Iterable[str]) -> dict[str, AssetPaths]:
        """Where each item's bytes live. Unknown ids are left out."""
        ids = list(dict.fromkeys(validate_id(i, "Item ID") for i in ids))
        result = {}
        with self._db.snapshot() as conn:
            for chunk in _chunks(ids):
                placeholders = ",".join("?" * len(chunk))
                for row in conn.execute(
                    f"SELECT id, storage_path, original_path FROM items WHERE id IN ({placeholders})",
                    chunk,
                ):
                    result[row["id"]] = AssetPaths(row["storage_path"], row["original_path"])
        return {i: result[i] for i in ids if i in result}

    def count(self) -> int:
        with self._db.snapshot() as conn:
            return conn.execute("SELECT count(*) FROM items").fetchone()[0]

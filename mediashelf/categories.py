"""
Category store.

The built-in categories (``default``, ``favorites``, ``recent``) are seeded
by the schema manager and can never be deleted. Deleting any other category
leaves items that reference it untouched.
"""

import logging
import sqlite3
import uuid
from typing import Any, Optional

from .database import Database, update_columns
from .errors import Conflict, InvalidArgument, NotFound, ProtectedEntity
from .types import (
    BUILTIN_CATEGORY_IDS,
    Category,
    check_int,
    check_str,
    snake_keys,
    utc_now,
    validate_id,
)

logger = logging.getLogger(__name__)

_CATEGORY_COLUMNS = (
    "id, name, description, color, parent_id, position, icon, created_at, updated_at"
)
_UPDATABLE = frozenset({"name", "description", "color", "parent_id", "position", "icon"})


def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(**{key: row[key] for key in row.keys()})


def _validated_fields(id: str, values: dict[str, Any]) -> dict[str, Any]:
    """Type-check updatable category fields present in ``values``."""
    result = {}
    for column, value in values.items():
        if column == "name":
            result[column] = check_str(value, "Category name", allow_empty=False).strip()
        elif column == "position":
            result[column] = check_int(value, "position", optional=True, minimum=None)
        elif column == "parent_id":
            if value is not None:
                validate_id(value, "Parent category ID")
                if value == id:
                    raise InvalidArgument(f"Category {id} cannot be its own parent")
            result[column] = value
        else:
            result[column] = check_str(value, column, optional=True)
    return result


class CategoryStore:
    """Owns category rows."""

    def __init__(self, db: Database):
        self._db = db

    def list_all(self) -> list[Category]:
        """All categories, built-ins included, in display order."""
        with self._db.snapshot() as conn:
            rows = conn.execute(f"""
                SELECT {_CATEGORY_COLUMNS} FROM categories
                ORDER BY position IS NULL, position, casefold(name), id
            """).fetchall()
        return [_row_to_category(row) for row in rows]

    def get(self, id: str) -> Optional[Category]:
        validate_id(id, "Category ID")
        with self._db.snapshot() as conn:
            row = conn.execute(
                f"SELECT {_CATEGORY_COLUMNS} FROM categories WHERE id = ?", (id,)
            ).fetchone()
        return _row_to_category(row) if row else None

    def create(self, category: Category | dict) -> Category:
        """
        Insert a new category. An empty id is replaced by a generated one.

        Raises:
            Conflict: a category with this id already exists
            InvalidArgument: empty name, or the category is its own parent
        """
        if isinstance(category, dict):
            category = Category.from_dict(category)
        id = validate_id(category.id, "Category ID") if category.id else uuid.uuid4().hex
        fields = _validated_fields(id, {
            "name": category.name,
            "description": category.description,
            "color": category.color,
            "parent_id": category.parent_id,
            "position": category.position,
            "icon": category.icon,
        })
        now = utc_now()
        with self._db.transaction() as conn:
            try:
                conn.execute(f"""
                    INSERT INTO categories ({_CATEGORY_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    id, fields["name"], fields["description"], fields["color"],
                    fields["parent_id"], fields["position"], fields["icon"], now, now,
                ))
            except sqlite3.IntegrityError as e:
                raise Conflict(f"Category already exists: {id}") from e
        logger.info("Created category %s (%r)", id, fields["name"])
        return Category(id=id, created_at=now, updated_at=now, **fields)

    def update(self, id: str, changes: dict) -> Category:
        """
        Merge ``changes`` into a category. Built-ins may be renamed.

        Raises:
            NotFound: no category with this id
        """
        validate_id(id, "Category ID")
        values = _validated_fields(id, snake_keys(changes, _UPDATABLE, "category"))
        with self._db.transaction() as conn:
            if not update_columns(conn, "categories", id, values, utc_now()):
                raise NotFound(f"Category not found: {id}")
            row = conn.execute(
                f"SELECT {_CATEGORY_COLUMNS} FROM categories WHERE id = ?", (id,)
            ).fetchone()
        logger.info("Updated category %s: %s", id, ", ".join(sorted(values)) or "touch")
        return _row_to_category(row)

    def delete(self, id: str) -> None:
        """
        Delete a user category. Items keep their (now dangling) category_id.

        Raises:
            ProtectedEntity: the id is a built-in category
            NotFound: no category with this id
        """
        if id in BUILTIN_CATEGORY_IDS:
            raise ProtectedEntity(f"Built-in category cannot be deleted: {id}")
        validate_id(id, "Category ID")
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM categories WHERE id = ?", (id,))
            if cursor.rowcount == 0:
                raise NotFound(f"Category not found: {id}")
        logger.info("Deleted category %s", id)

    def count(self) -> int:
        with self._db.snapshot() as conn:
            return conn.execute("SELECT count(*) FROM categories").fetchone()[0]

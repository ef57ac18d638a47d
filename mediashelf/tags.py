"""
Tag normalization and the tag store.

Tag identity is the normalized name: trimmed and case-folded. The
``tags.name_key`` column is UNIQUE, so two writers racing to create the
same tag cannot both succeed; the loser reads back the winner's row.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from typing import Any, Iterable, Optional

from .database import Database, update_columns
from .errors import Conflict, InvalidArgument, NotFound
from .types import Tag, check_str, snake_keys, utc_now, validate_id

logger = logging.getLogger(__name__)

_TAG_COLUMNS = "id, name, color, description, created_at, updated_at"
_UPDATABLE = frozenset({"name", "color", "description"})


def normalize_tag_name(raw: Any) -> str:
    """
    Canonical key for a tag name: leading/trailing whitespace removed,
    Unicode case-folded.

    Raises:
        InvalidArgument: not a string, or empty after trimming
    """
    if not isinstance(raw, str):
        raise InvalidArgument(f"Tag name must be a string, got {type(raw).__name__}")
    key = raw.strip().casefold()
    if not key:
        raise InvalidArgument("Tag name must not be empty")
    return key


def _row_to_tag(row: sqlite3.Row) -> Tag:
    return Tag(
        id=row["id"],
        name=row["name"],
        color=row["color"],
        description=row["description"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def insert_or_get_tag(
    conn: sqlite3.Connection,
    name: str,
    color: Optional[str] = None,
    description: Optional[str] = None,
    *,
    now: Optional[str] = None,
) -> tuple[Tag, bool]:
    """
    Create the tag for ``name`` unless one with the same key exists.

    Must run inside a write transaction. On a hit the existing row is
    returned unchanged; color and description are ignored.

    Returns:
        (tag, created)
    """
    key = normalize_tag_name(name)
    now = now or utc_now()
    cursor = conn.execute(f"""
        INSERT INTO tags (id, name, name_key, color, description, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(name_key) DO NOTHING
    """, (uuid.uuid4().hex, name.strip(), key, color, description, now, now))
    row = conn.execute(
        f"SELECT {_TAG_COLUMNS} FROM tags WHERE name_key = ?", (key,)
    ).fetchone()
    return _row_to_tag(row), cursor.rowcount > 0


class TagStore:
    """Owns tag rows. Deleting a tag leaves item links in place."""

    def __init__(self, db: Database):
        self._db = db

    def create_or_get(
        self,
        name: str,
        color: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Tag:
        check_str(color, "color", optional=True)
        check_str(description, "description", optional=True)
        with self._db.transaction() as conn:
            tag, created = insert_or_get_tag(conn, name, color, description)
        if created:
            logger.info("Created tag %s (%r)", tag.id, tag.name)
        return tag

    def get(self, id: str) -> Optional[Tag]:
        validate_id(id, "Tag ID")
        with self._db.snapshot() as conn:
            row = conn.execute(
                f"SELECT {_TAG_COLUMNS} FROM tags WHERE id = ?", (id,)
            ).fetchone()
        return _row_to_tag(row) if row else None

    def get_by_name(self, name: str) -> Optional[Tag]:
        key = normalize_tag_name(name)
        with self._db.snapshot() as conn:
            row = conn.execute(
                f"SELECT {_TAG_COLUMNS} FROM tags WHERE name_key = ?", (key,)
            ).fetchone()
        return _row_to_tag(row) if row else None

    def update(self, id: str, changes: dict) -> Tag:
        """
        Merge ``changes`` (name, color, description) into a tag.

        Raises:
            NotFound: no tag with this id
            Conflict: the new name normalizes to another tag's key
        """
        validate_id(id, "Tag ID")
        changes = snake_keys(changes, _UPDATABLE, "tag")
        values: dict[str, Any] = {}
        if "name" in changes:
            key = normalize_tag_name(changes["name"])
            values["name"] = changes["name"].strip()
            values["name_key"] = key
        for column in ("color", "description"):
            if column in changes:
                values[column] = check_str(changes[column], column, optional=True)

        with self._db.transaction() as conn:
            if "name_key" in values:
                clash = conn.execute(
                    "SELECT id FROM tags WHERE name_key = ? AND id != ?",
                    (values["name_key"], id),
                ).fetchone()
                if clash:
                    raise Conflict(f"Tag name {values['name']!r} is already used by tag {clash['id']}")
            if not update_columns(conn, "tags", id, values, utc_now()):
                raise NotFound(f"Tag not found: {id}")
            row = conn.execute(
                f"SELECT {_TAG_COLUMNS} FROM tags WHERE id = ?", (id,)
            ).fetchone()
        logger.info("Updated tag %s: %s", id, ", ".join(sorted(changes)) or "touch")
        return _row_to_tag(row)

    def delete(self, id: str) -> None:
        validate_id(id, "Tag ID")
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM tags WHERE id = ?", (id,))
            if cursor.rowcount == 0:
                raise NotFound(f"Tag not found: {id}")
        logger.info("Deleted tag %s", id)

    def list(self) -> list[Tag]:
        with self._db.snapshot() as conn:
            rows = conn.execute(
                f"SELECT {_TAG_COLUMNS} FROM tags ORDER BY name_key, id"
            ).fetchall()
        return [_row_to_tag(row) for row in rows]

    def resolve_names(self, names: Iterable[str]) -> list[str]:
        """Ids of the existing tags named in ``names``; unknown names are dropped."""
        keys = list(dict.fromkeys(normalize_tag_name(n) for n in names))
        if not keys:
            return []
        placeholders = ",".join("?" * len(keys))
        with self._db.snapshot() as conn:
            rows = conn.execute(
                f"SELECT id, name_key FROM tags WHERE name_key IN ({placeholders})", keys
            ).fetchall()
        by_key = {row["name_key"]: row["id"] for row in rows}
        return [by_key[k] for k in keys if k in by_key]

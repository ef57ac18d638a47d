"""
Key/value application settings.

Values are a tagged variant: the ``kind`` column records which JSON type
the serialized ``value`` holds (null, bool, number, string, array, object),
so a value read back is structurally equal to the value written.
"""

import json
import logging
import math
from pathlib import Path
from typing import Any

from .database import Database
from .errors import InvalidArgument, NotFound
from .types import check_str, utc_now

logger = logging.getLogger(__name__)

SETTING_KINDS = ("null", "bool", "number", "string", "array", "object")


def default_settings(store_path: Path) -> dict[str, Any]:
    """Settings seeded into a new catalog when absent."""
    pictures = Path.home() / "Pictures"
    return {
        "theme": "auto",
        "viewMode": "grid",
        "thumbnailSize": "medium",
        "autoBackup": True,
        "maxStorageSize": 1024 * 1024 * 1024,
        "recentLimit": 100,
        "storageLocation": str(store_path / "media"),
        "defaultImportPath": str(pictures),
        "defaultExportPath": str(pictures / "mediashelf-export"),
        "namingConvention": {
            "pattern": "{name}_{timestamp}",
            "useOriginalName": True,
            "includeTimestamp": True,
            "includeFormat": True,
            "customPrefix": "",
            "customSuffix": "",
        },
    }


def value_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, dict):
        return "object"
    raise InvalidArgument(f"Setting value of type {type(value).__name__} is not serializable")


def _check_structure(value: Any, path: str = "value") -> None:
    kind = value_kind(value)
    if kind == "number" and isinstance(value, float) and not math.isfinite(value):
        raise InvalidArgument(f"Setting {path} is not a finite number: {value!r}")
    elif kind == "array":
        for i, element in enumerate(value):
            _check_structure(element, f"{path}[{i}]")
    elif kind == "object":
        for key, element in value.items():
            # json.dumps would silently stringify non-string keys
            if not isinstance(key, str):
                raise InvalidArgument(f"Setting {path} has a non-string key: {key!r}")
            _check_structure(element, f"{path}.{key}")


def encode_value(value: Any) -> tuple[str, str]:
    """
    Serialize a setting value.

    Returns:
        (kind, json_text)

    Raises:
        InvalidArgument: the value is not JSON-compatible
    """
    _check_structure(value)
    return value_kind(value), json.dumps(value, ensure_ascii=False, allow_nan=False)


def decode_value(kind: str, text: str) -> Any:
    if kind not in SETTING_KINDS:
        raise InvalidArgument(f"Unknown setting kind: {kind!r}")
    return json.loads(text)


class SettingsStore:
    """Last-write-wins settings, one row per key."""

    def __init__(self, db: Database):
        self._db = db

    @staticmethod
    def _check_key(key: Any) -> str:
        return check_str(key, "Setting key", allow_empty=False)

    def get(self, key: str, default: Any = None) -> Any:
        self._check_key(key)
        with self._db.snapshot() as conn:
            row = conn.execute(
                "SELECT kind, value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return default
        return decode_value(row["kind"], row["value"])

    def set(self, key: str, value: Any) -> None:
        self._check_key(key)
        kind, text = encode_value(value)
        with self._db.transaction() as conn:
            conn.execute("""
                INSERT INTO settings (key, kind, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    kind = excluded.kind,
                    value = excluded.value,
                    updated_at = excluded.updated_at
            """, (key, kind, text, utc_now()))
        logger.info("Set setting %s (%s)", key, kind)

    def delete(self, key: str) -> None:
        self._check_key(key)
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM settings WHERE key = ?", (key,))
            if cursor.rowcount == 0:
                raise NotFound(f"Setting not found: {key}")
        logger.info("Deleted setting %s", key)

    def all(self) -> dict[str, Any]:
        with self._db.snapshot() as conn:
            rows = conn.execute(
                "SELECT key, kind, value FROM settings ORDER BY key"
            ).fetchall()
        return {row["key"]: decode_value(row["kind"], row["value"]) for row in rows}

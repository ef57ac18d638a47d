"""
Error types and error logging for mediashelf.

Every public catalog operation either succeeds or raises one of the
CatalogError subclasses below, so callers (CLI, request handlers) can
branch on ``kind`` without inspecting messages.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class CatalogError(Exception):
    """Base class for all catalog failures."""

    kind = "CatalogError"


class NotFound(CatalogError):
    """An operation referenced a missing entity by id."""

    kind = "NotFound"


class Conflict(CatalogError):
    """Duplicate id on creation, or a rename colliding with another entity."""

    kind = "Conflict"


class ProtectedEntity(CatalogError):
    """Attempted deletion of a built-in category."""

    kind = "ProtectedEntity"


class InvalidArgument(CatalogError):
    """Malformed input: bad filters, empty names, unknown fields."""

    kind = "InvalidArgument"


class StorageInitError(CatalogError):
    """Storage medium unavailable, unwritable or corrupt at startup."""

    kind = "StorageInitError"


class StorageIOError(CatalogError):
    """Read/write failure after initialization. Not retried internally."""

    kind = "StorageIOError"


def error_payload(exc: CatalogError) -> dict:
    """Structured form of a catalog error for the request boundary."""
    return {"kind": exc.kind, "message": str(exc)}


def _error_log_path() -> Path:
    """Resolve error log path, respecting MEDIASHELF_STORE_PATH."""
    store = os.environ.get("MEDIASHELF_STORE_PATH")
    if store:
        return Path(store) / "mediashelf-errors.log"
    return Path.home() / ".mediashelf" / "mediashelf-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}] {type(exc).__name__}")
            if isinstance(exc, CatalogError):
                f.write(f" kind={exc.kind}")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.writelines(traceback.format_exception(exc))
    except OSError:
        pass  # Can't write error log, don't crash over it
    return log_path

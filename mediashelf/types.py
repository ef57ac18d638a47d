"""
Data types for the media catalog.
"""

import re
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime, time, timezone
from typing import Any, NamedTuple, Optional

from .errors import InvalidArgument


# Categories that exist from first initialization and can never be deleted
BUILTIN_CATEGORY_IDS = ("default", "favorites", "recent")

# Seed rows for the built-in categories: (id, name, description, icon)
BUILTIN_CATEGORIES = (
    ("default", "Default", "Uncategorized items", "folder"),
    ("favorites", "Favorites", "Items marked as favorite", "star"),
    ("recent", "Recent", "Recently used items", "clock"),
)

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS.ffffffZ.

    Fixed width, so string order is chronological order. This is the single
    source of truth for timestamp formatting.
    """
    return datetime.now(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def parse_utc_timestamp(ts: str) -> datetime:
    """Parse a stored timestamp string to a timezone-aware UTC datetime.

    Handles the canonical format, bare dates, and legacy SQLite
    ``CURRENT_TIMESTAMP`` text (``YYYY-MM-DD HH:MM:SS``).
    """
    ts = ts.strip().replace("Z", "+00:00")
    dt = datetime.fromisoformat(ts)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def canonical_timestamp(value: Any, *, end_of_day: bool = False) -> str:
    """Normalize a datetime, date or ISO string to the canonical format.

    A bare date becomes the start of that day, or its last microsecond
    when ``end_of_day`` is set, so inclusive ranges cover the whole day.
    """
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    elif isinstance(value, date):
        dt = datetime.combine(value, time.max if end_of_day else time.min, timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            if len(text) == 10:
                return canonical_timestamp(date.fromisoformat(text), end_of_day=end_of_day)
            dt = parse_utc_timestamp(text)
        except ValueError as e:
            raise InvalidArgument(f"Invalid timestamp: {value!r}") from e
    else:
        raise InvalidArgument(f"Invalid timestamp: {value!r}")
    return dt.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


MAX_ID_LENGTH = 256

# IDs: printable characters minus control chars
_ID_BLOCKED_RE = re.compile(r'[\x00-\x1f\x7f]')


def validate_id(id: Any, what: str = "ID") -> str:
    """Validate an entity ID: a non-empty string without control characters."""
    if not isinstance(id, str) or not id or len(id) > MAX_ID_LENGTH:
        raise InvalidArgument(f"{what} must be a string of 1-{MAX_ID_LENGTH} characters")
    if _ID_BLOCKED_RE.search(id):
        raise InvalidArgument(f"{what} contains invalid characters: {id!r}")
    return id


# ---------------------------------------------------------------------------
# Wire-format key conversion (camelCase on the request boundary)
# ---------------------------------------------------------------------------

_CAMEL_RE = re.compile(r'(?<!^)(?=[A-Z])')


def to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def to_snake(name: str) -> str:
    return _CAMEL_RE.sub("_", name).lower()


def snake_keys(data: dict, allowed: frozenset, what: str) -> dict:
    """Convert request keys to snake_case, rejecting unknown ones."""
    if not isinstance(data, dict):
        raise InvalidArgument(f"{what} must be an object, got {type(data).__name__}")
    result = {}
    for key, value in data.items():
        name = to_snake(key) if isinstance(key, str) else key
        if name not in allowed:
            raise InvalidArgument(f"Unknown {what} field: {key!r}")
        result[name] = value
    return result


class _Record:
    """Shared dict conversion for entity dataclasses."""

    def to_dict(self) -> dict[str, Any]:
        return {to_camel(k): v for k, v in asdict(self).items()}

    @classmethod
    def field_names(cls) -> frozenset:
        return frozenset(f.name for f in fields(cls))

    @classmethod
    def from_dict(cls, data: dict):
        return cls(**snake_keys(data, cls.field_names(), cls.__name__.lower()))


@dataclass
class Item(_Record):
    """
    Metadata for one cataloged asset.

    The asset bytes live at ``storage_path`` and belong to the file pipeline;
    the catalog only records where they are.
    """
    id: str = ""
    filename: str = ""
    original_path: str = ""
    storage_path: str = ""
    format: str = ""
    size: int = 0
    width: int = 0
    height: int = 0
    tags: list[str] = field(default_factory=list)
    category_id: Optional[str] = None
    is_favorite: bool = False
    usage_count: int = 0
    has_transparency: bool = False
    is_animated: bool = False
    created_at: str = ""
    updated_at: str = ""


@dataclass
class Category(_Record):
    """A user-visible grouping of items."""
    id: str = ""
    name: str = ""
    description: Optional[str] = None
    color: Optional[str] = None
    parent_id: Optional[str] = None
    position: Optional[int] = None
    icon: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @property
    def is_builtin(self) -> bool:
        return self.id in BUILTIN_CATEGORY_IDS


@dataclass
class Tag(_Record):
    """A short label. Name uniqueness is case-insensitive and trimmed."""
    id: str
    name: str
    color: Optional[str] = None
    description: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


class AssetPaths(NamedTuple):
    """Where an item's bytes live, for the import/export pipeline."""
    storage_path: str
    original_path: str


# ---------------------------------------------------------------------------
# Field validation shared by the stores
# ---------------------------------------------------------------------------

def check_str(value: Any, name: str, *, optional: bool = False, allow_empty: bool = True) -> Optional[str]:
    if value is None and optional:
        return None
    if not isinstance(value, str):
        raise InvalidArgument(f"{name} must be a string, got {type(value).__name__}")
    if not allow_empty and not value.strip():
        raise InvalidArgument(f"{name} must not be empty")
    return value


def check_int(value: Any, name: str, *, optional: bool = False, minimum: Optional[int] = 0) -> Optional[int]:
    if value is None and optional:
        return None
    # bool is an int subclass; True is not a valid size
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgument(f"{name} must be an integer, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        raise InvalidArgument(f"{name} must be >= {minimum}, got {value}")
    return value


def check_bool(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidArgument(f"{name} must be a boolean, got {type(value).__name__}")
    return value

"""
Filtered, sorted, paginated item search.

All filters are optional and combine with AND. Each search runs as one
SQL statement plus one tag-loading statement inside a single read
snapshot, so results always reflect the latest committed mutations and
never a half-applied one.
"""

import json
import logging
from dataclasses import dataclass, fields
from typing import Any, NamedTuple, Optional

from .database import Database
from .errors import InvalidArgument
from .items import ITEM_COLUMNS, rows_to_items
from .tags import normalize_tag_name
from .types import (
    Item,
    canonical_timestamp,
    check_bool,
    check_int,
    check_str,
    snake_keys,
    validate_id,
)

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "updatedAt": "i.updated_at",
    "createdAt": "i.created_at",
    "usageCount": "i.usage_count",
    "name": "casefold(i.filename)",
    "size": "i.size",
}
SORT_ORDERS = ("ASC", "DESC")
DATE_FIELDS = {"createdAt": "i.created_at", "updatedAt": "i.updated_at"}

DEFAULT_SORT_BY = "updatedAt"
DEFAULT_SORT_ORDER = "DESC"


class Range(NamedTuple):
    """Inclusive bounds; None leaves that side open."""
    low: Any = None
    high: Any = None


def _parse_range(value: Any, name: str, low_key: str, high_key: str) -> Optional[Range]:
    if value is None or isinstance(value, Range):
        return value
    if not isinstance(value, dict):
        raise InvalidArgument(f"{name} must be an object with {low_key!r}/{high_key!r}")
    unknown = set(value) - {low_key, high_key}
    if unknown:
        raise InvalidArgument(f"Unknown {name} field: {sorted(unknown)[0]!r}")
    return Range(value.get(low_key), value.get(high_key))


def _check_id_list(value: Any, name: str) -> Optional[list[str]]:
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        raise InvalidArgument(f"{name} must be a list, got {type(value).__name__}")
    return [validate_id(v, f"{name} entry") for v in value]


@dataclass
class SearchFilters:
    """
    Search criteria. Unset fields impose no constraint.

    ``tags`` are tag names (matched after normalization); ``tag_ids`` are
    ids. An item matches if it carries at least one tag from either list.
    """
    keyword: Optional[str] = None
    category_id: Optional[str] = None
    tags: Optional[list[str]] = None
    tag_ids: Optional[list[str]] = None
    exclude_tag_ids: Optional[list[str]] = None
    format: Optional[str] = None
    size_range: Optional[Range] = None
    min_width: Optional[int] = None
    max_width: Optional[int] = None
    min_height: Optional[int] = None
    max_height: Optional[int] = None
    date_range: Optional[Range] = None
    date_field: str = "createdAt"
    is_favorite: Optional[bool] = None
    has_transparency: Optional[bool] = None
    is_animated: Optional[bool] = None
    sort_by: str = DEFAULT_SORT_BY
    sort_order: str = DEFAULT_SORT_ORDER
    limit: Optional[int] = None
    offset: int = 0

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SearchFilters":
        """Build filters from a request payload (camelCase or snake_case keys)."""
        if data is None:
            return cls()
        allowed = frozenset(f.name for f in fields(cls))
        values = snake_keys(data, allowed, "filter")
        if "size_range" in values:
            values["size_range"] = _parse_range(values["size_range"], "sizeRange", "min", "max")
        if "date_range" in values:
            values["date_range"] = _parse_range(values["date_range"], "dateRange", "start", "end")
        # Explicit nulls mean "don't care", same as leaving the key out
        defaults = cls()
        for key, value in list(values.items()):
            if value is None:
                values[key] = getattr(defaults, key)
        filters = cls(**values)
        filters.validate()
        return filters

    def validate(self) -> None:
        """
        Raises:
            InvalidArgument: wrong types, unknown sort, inverted ranges,
                non-positive limit, negative offset
        """
        check_str(self.keyword, "keyword", optional=True)
        if self.category_id is not None:
            validate_id(self.category_id, "categoryId")
        if self.tags is not None:
            if not isinstance(self.tags, (list, tuple)):
                raise InvalidArgument(f"tags must be a list, got {type(self.tags).__name__}")
            for name in self.tags:
                normalize_tag_name(name)
        _check_id_list(self.tag_ids, "tagIds")
        _check_id_list(self.exclude_tag_ids, "excludeTagIds")
        check_str(self.format, "format", optional=True)

        self.size_range = _parse_range(self.size_range, "sizeRange", "min", "max")
        if self.size_range is not None:
            check_int(self.size_range.low, "sizeRange.min", optional=True)
            check_int(self.size_range.high, "sizeRange.max", optional=True)
            self._check_order(self.size_range.low, self.size_range.high, "sizeRange")
        for name in ("min_width", "max_width", "min_height", "max_height"):
            check_int(getattr(self, name), name, optional=True)
        self._check_order(self.min_width, self.max_width, "width")
        self._check_order(self.min_height, self.max_height, "height")

        self.date_range = _parse_range(self.date_range, "dateRange", "start", "end")
        if self.date_range is not None:
            start, end = self.date_range
            self.date_range = Range(
                canonical_timestamp(start) if start is not None else None,
                canonical_timestamp(end, end_of_day=True) if end is not None else None,
            )
            self._check_order(self.date_range.low, self.date_range.high, "dateRange")
        if self.date_field not in DATE_FIELDS:
            raise InvalidArgument(
                f"dateField must be one of {', '.join(DATE_FIELDS)}, got {self.date_field!r}"
            )

        for name in ("is_favorite", "has_transparency", "is_animated"):
            if getattr(self, name) is not None:
                check_bool(getattr(self, name), name)

        if self.sort_by not in SORT_COLUMNS:
            raise InvalidArgument(
                f"sortBy must be one of {', '.join(SORT_COLUMNS)}, got {self.sort_by!r}"
            )
        if not isinstance(self.sort_order, str) or self.sort_order.upper() not in SORT_ORDERS:
            raise InvalidArgument(f"sortOrder must be ASC or DESC, got {self.sort_order!r}")
        self.sort_order = self.sort_order.upper()
        if self.limit is not None:
            check_int(self.limit, "limit", minimum=1)
        check_int(self.offset, "offset")

    @staticmethod
    def _check_order(low: Any, high: Any, name: str) -> None:
        if low is not None and high is not None and low > high:
            raise InvalidArgument(f"{name}: lower bound {low!r} is above upper bound {high!r}")


def build_query(filters: SearchFilters) -> tuple[str, list[Any]]:
    """Translate validated filters into one SELECT over items."""
    clauses: list[str] = []
    params: list[Any] = []

    # Whitespace inside a non-blank keyword is matched literally
    keyword = filters.keyword.casefold() if filters.keyword and filters.keyword.strip() else ""
    if keyword:
        clauses.append("""(
            instr(casefold(i.filename), ?) > 0
            OR EXISTS (
                SELECT 1 FROM item_tags it JOIN tags t ON t.id = it.tag_id
                WHERE it.item_id = i.id AND instr(casefold(t.name), ?) > 0
            )
        )""")
        params += [keyword, keyword]

    if filters.category_id is not None:
        clauses.append("i.category_id = ?")
        params.append(filters.category_id)

    names = [normalize_tag_name(n) for n in filters.tags or []]
    ids = list(filters.tag_ids or [])
    if names or ids:
        clauses.append("""EXISTS (
            SELECT 1 FROM item_tags it LEFT JOIN tags t ON t.id = it.tag_id
            WHERE it.item_id = i.id AND (
                it.tag_id IN (SELECT value FROM json_each(?))
                OR t.name_key IN (SELECT value FROM json_each(?))
            )
        )""")
        params += [json.dumps(ids), json.dumps(names)]

    if filters.exclude_tag_ids:
        clauses.append("""NOT EXISTS (
            SELECT 1 FROM item_tags it
            WHERE it.item_id = i.id AND it.tag_id IN (SELECT value FROM json_each(?))
        )""")
        params.append(json.dumps(list(filters.exclude_tag_ids)))

    if filters.format is not None:
        clauses.append("casefold(i.format) = ?")
        params.append(filters.format.casefold())

    bounds = [
        ("i.size", filters.size_range or Range()),
        ("i.width", Range(filters.min_width, filters.max_width)),
        ("i.height", Range(filters.min_height, filters.max_height)),
        (DATE_FIELDS[filters.date_field], filters.date_range or Range()),
    ]
    for column, (low, high) in bounds:
        if low is not None:
            clauses.append(f"{column} >= ?")
            params.append(low)
        if high is not None:
            clauses.append(f"{column} <= ?")
            params.append(high)

    for name in ("is_favorite", "has_transparency", "is_animated"):
        value = getattr(filters, name)
        if value is not None:
            clauses.append(f"i.{name} = ?")
            params.append(int(value))

    sql = f"SELECT {', '.join(f'i.{c} AS {c}' for c in ITEM_COLUMNS)} FROM items i"
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += f" ORDER BY {SORT_COLUMNS[filters.sort_by]} {filters.sort_order}, i.id ASC"
    if filters.limit is not None or filters.offset:
        sql += " LIMIT ? OFFSET ?"
        params += [filters.limit if filters.limit is not None else -1, filters.offset]
    return sql, params


class QueryEngine:
    """Reads items through the same database the stores write."""

    def __init__(self, db: Database):
        self._db = db

    def search(self, filters: SearchFilters | dict | None = None) -> list[Item]:
        if isinstance(filters, SearchFilters):
            filters.validate()
        else:
            filters = SearchFilters.from_dict(filters)
        sql, params = build_query(filters)
        with self._db.snapshot() as conn:
            rows = conn.execute(sql, params).fetchall()
            items = rows_to_items(conn, rows)
        logger.debug("Search matched %d items", len(items))
        return items

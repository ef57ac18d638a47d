"""
Tests for the query engine: each filter, sorting, pagination,
filter validation and the built-in category views.
"""

from datetime import date

import pytest

from mediashelf.errors import InvalidArgument
from mediashelf.query import Range, SearchFilters

from conftest import make_item


def _ids(items):
    return [item.id for item in items]


def _set_times(catalog, id, created_at, updated_at=None):
    """Backdate an item's timestamps directly in storage."""
    with catalog._db.transaction() as conn:
        conn.execute(
            "UPDATE items SET created_at = ?, updated_at = ? WHERE id = ?",
            (created_at, updated_at or created_at, id),
        )


@pytest.fixture
def tagged(catalog):
    """Items a (happy) and b (sad), with their tag ids."""
    happy = catalog.tags.create_or_get("happy")
    sad = catalog.tags.create_or_get("sad")
    catalog.items.add(make_item("a", tags=[happy.id]))
    catalog.items.add(make_item("b", tags=[sad.id]))
    return catalog, happy, sad


class TestTagFilters:

    def test_tags_by_name(self, tagged):
        catalog, happy, sad = tagged
        assert _ids(catalog.search({"tags": ["happy"]})) == ["a"]
        assert _ids(catalog.search({"tags": [" HAPPY "]})) == ["a"]

    def test_exclude_tag_ids(self, tagged):
        catalog, happy, sad = tagged
        assert _ids(catalog.search({"excludeTagIds": [happy.id]})) == ["b"]

    def test_tag_ids_any_of(self, tagged):
        catalog, happy, sad = tagged
        catalog.items.add(make_item("c"))
        result = catalog.search({"tagIds": [happy.id, sad.id], "sortBy": "name", "sortOrder": "ASC"})
        assert _ids(result) == ["a", "b"]

    def test_names_and_ids_union(self, tagged):
        catalog, happy, sad = tagged
        result = catalog.search({"tags": ["happy"], "tagIds": [sad.id], "sortBy": "name", "sortOrder": "ASC"})
        assert _ids(result) == ["a", "b"]

    def test_unknown_tag_name_matches_nothing(self, tagged):
        catalog, _, _ = tagged
        assert catalog.search({"tags": ["nope"]}) == []

    def test_include_and_exclude_combine(self, tagged):
        catalog, happy, sad = tagged
        catalog.items.add(make_item("both", tags=[happy.id, sad.id]))
        assert _ids(catalog.search({"tags": ["happy"], "excludeTagIds": [sad.id]})) == ["a"]


class TestKeyword:

    def test_matches_filename_case_insensitive(self, catalog):
        catalog.items.add(make_item("a", filename="Grumpy_Cat.PNG"))
        catalog.items.add(make_item("b", filename="dog.png"))
        assert _ids(catalog.search({"keyword": "cat"})) == ["a"]
        assert _ids(catalog.search({"keyword": "GRUMPY"})) == ["a"]

    def test_matches_tag_name(self, catalog):
        tag = catalog.tags.create_or_get("Celebration")
        catalog.items.add(make_item("a", filename="x.png", tags=[tag.id]))
        catalog.items.add(make_item("b", filename="y.png"))
        assert _ids(catalog.search({"keyword": "celebr"})) == ["a"]

    def test_filename_or_tag_either_suffices(self, catalog):
        tag = catalog.tags.create_or_get("party")
        catalog.items.add(make_item("a", filename="party.png"))
        catalog.items.add(make_item("b", filename="x.png", tags=[tag.id]))
        catalog.items.add(make_item("c", filename="y.png"))
        result = catalog.search({"keyword": "PARTY", "sortBy": "name", "sortOrder": "ASC"})
        assert _ids(result) == ["a", "b"]

    def test_like_wildcards_are_literal(self, catalog):
        catalog.items.add(make_item("a", filename="100%_done.png"))
        catalog.items.add(make_item("b", filename="100x_done.png"))
        assert _ids(catalog.search({"keyword": "100%"})) == ["a"]
        assert _ids(catalog.search({"keyword": "%_d"})) == ["a"]

    def test_blank_keyword_ignored(self, catalog):
        catalog.items.add(make_item("a"))
        assert _ids(catalog.search({"keyword": "  "})) == ["a"]

    def test_keyword_whitespace_is_part_of_substring(self, catalog):
        catalog.items.add(make_item("a", filename="acat.png"))
        catalog.items.add(make_item("b", filename="a cat.png"))
        assert _ids(catalog.search({"keyword": " cat"})) == ["b"]
        assert sorted(_ids(catalog.search({"keyword": "cat"}))) == ["a", "b"]


class TestAttributeFilters:

    def test_category_exact(self, catalog):
        catalog.items.add(make_item("a", category_id="default"))
        catalog.items.add(make_item("b", category_id="defaults"))
        catalog.items.add(make_item("c"))
        assert _ids(catalog.search({"categoryId": "default"})) == ["a"]

    def test_format_case_insensitive(self, catalog):
        catalog.items.add(make_item("a", format="PNG"))
        catalog.items.add(make_item("b", format="gif"))
        assert _ids(catalog.search({"format": "png"})) == ["a"]

    def test_size_range_inclusive(self, catalog):
        for id, size in (("a", 10), ("b", 20), ("c", 30)):
            catalog.items.add(make_item(id, size=size))
        order = {"sortBy": "size", "sortOrder": "ASC"}
        assert _ids(catalog.search({"sizeRange": {"min": 10, "max": 20}, **order})) == ["a", "b"]
        assert _ids(catalog.search({"sizeRange": {"min": 20}, **order})) == ["b", "c"]
        assert _ids(catalog.search({"sizeRange": {"max": 10}, **order})) == ["a"]

    def test_dimension_bounds(self, catalog):
        catalog.items.add(make_item("small", width=16, height=16))
        catalog.items.add(make_item("wide", width=512, height=16))
        catalog.items.add(make_item("big", width=512, height=512))
        assert _ids(catalog.search({"minWidth": 512, "maxHeight": 16})) == ["wide"]
        assert _ids(catalog.search({"minHeight": 17})) == ["big"]
        assert _ids(catalog.search({"maxWidth": 16})) == ["small"]

    def test_boolean_flags(self, catalog):
        catalog.items.add(make_item("fav", is_favorite=True))
        catalog.items.add(make_item("clear", has_transparency=True))
        catalog.items.add(make_item("anim", is_animated=True, is_favorite=True))
        assert sorted(_ids(catalog.search({"isFavorite": True}))) == ["anim", "fav"]
        assert _ids(catalog.search({"isFavorite": False})) == ["clear"]
        assert _ids(catalog.search({"hasTransparency": True})) == ["clear"]
        assert _ids(catalog.search({"isAnimated": True, "isFavorite": True})) == ["anim"]
        assert len(catalog.search({"isAnimated": None})) == 3

    def test_dangling_references_returned(self, catalog):
        catalog.items.add(make_item("a", category_id="gone", tags=["gone-tag"]))
        assert _ids(catalog.search()) == ["a"]
        assert catalog.search()[0].tags == ["gone-tag"]


class TestDateRange:

    @pytest.fixture
    def dated(self, catalog):
        for id, created, updated in (
            ("jan", "2024-01-15T10:00:00.000000Z", "2024-06-01T00:00:00.000000Z"),
            ("feb", "2024-02-15T23:59:59.999999Z", "2024-02-16T00:00:00.000000Z"),
            ("mar", "2024-03-15T00:00:00.000000Z", "2024-03-15T00:00:00.000000Z"),
        ):
            catalog.items.add(make_item(id))
            _set_times(catalog, id, created, updated)
        return catalog

    def test_created_at_by_default(self, dated):
        result = dated.search({"dateRange": {"start": "2024-01-01", "end": "2024-02-15"},
                               "sortBy": "createdAt", "sortOrder": "ASC"})
        assert _ids(result) == ["jan", "feb"]

    def test_date_only_end_covers_whole_day(self, dated):
        assert _ids(dated.search({"dateRange": {"start": "2024-02-15", "end": "2024-02-15"}})) == ["feb"]

    def test_updated_at_field(self, dated):
        result = dated.search({"dateRange": {"start": "2024-05-01"}, "dateField": "updatedAt"})
        assert _ids(result) == ["jan"]

    def test_timestamp_bounds(self, dated):
        result = dated.search({"dateRange": {"end": "2024-03-15T00:00:00Z"}, "sortBy": "createdAt"})
        assert _ids(result) == ["mar", "feb", "jan"]

    def test_date_objects(self, dated):
        filters = SearchFilters(date_range=Range(date(2024, 3, 1), None))
        assert _ids(dated.search(filters)) == ["mar"]


class TestSortAndPage:

    def test_usage_count_desc_limit(self, catalog):
        for id, usage in (("a", 1), ("b", 5), ("c", 3)):
            catalog.items.add(make_item(id, usage_count=usage))
        result = catalog.search({"sortBy": "usageCount", "sortOrder": "DESC", "limit": 2})
        assert [i.usage_count for i in result] == [5, 3]
        assert _ids(result) == ["b", "c"]

    def test_ties_broken_by_id(self, catalog):
        for id in ("c", "a", "b"):
            catalog.items.add(make_item(id, size=7))
        assert _ids(catalog.search({"sortBy": "size", "sortOrder": "DESC"})) == ["a", "b", "c"]
        assert _ids(catalog.search({"sortBy": "size", "sortOrder": "ASC"})) == ["a", "b", "c"]

    def test_name_sort_case_insensitive(self, catalog):
        catalog.items.add(make_item("1", filename="banana.png"))
        catalog.items.add(make_item("2", filename="Apple.png"))
        catalog.items.add(make_item("3", filename="cherry.png"))
        assert _ids(catalog.search({"sortBy": "name", "sortOrder": "asc"})) == ["2", "1", "3"]

    def test_default_sort_updated_desc(self, catalog):
        for id, ts in (("old", "2024-01-01T00:00:00.000000Z"),
                       ("new", "2024-03-01T00:00:00.000000Z"),
                       ("mid", "2024-02-01T00:00:00.000000Z")):
            catalog.items.add(make_item(id))
            _set_times(catalog, id, ts)
        assert _ids(catalog.search()) == ["new", "mid", "old"]

    def test_pagination(self, catalog):
        for i in range(7):
            catalog.items.add(make_item(f"i{i}", size=i))
        pages = [
            _ids(catalog.search({"sortBy": "size", "sortOrder": "ASC", "limit": 3, "offset": off}))
            for off in (0, 3, 6)
        ]
        assert pages == [["i0", "i1", "i2"], ["i3", "i4", "i5"], ["i6"]]
        assert _ids(catalog.search({"sortBy": "size", "sortOrder": "ASC", "offset": 5})) == ["i5", "i6"]

    def test_no_filters_returns_all(self, catalog):
        for i in range(4):
            catalog.items.add(make_item(f"i{i}"))
        assert sorted(_ids(catalog.search())) == ["i0", "i1", "i2", "i3"]
        assert sorted(_ids(catalog.search({}))) == ["i0", "i1", "i2", "i3"]


class TestReadAfterWrite:

    def test_search_sees_latest_mutation(self, catalog):
        catalog.items.add(make_item("a"))
        assert _ids(catalog.search({"isFavorite": True})) == []
        catalog.items.update("a", {"isFavorite": True})
        assert _ids(catalog.search({"isFavorite": True})) == ["a"]
        catalog.items.delete("a")
        assert catalog.search() == []


class TestValidation:

    @pytest.mark.parametrize("filters", [
        {"unknownKey": 1},
        {"sortBy": "color"},
        {"sortOrder": "SIDEWAYS"},
        {"limit": 0},
        {"limit": -5},
        {"offset": -1},
        {"sizeRange": {"min": 20, "max": 10}},
        {"sizeRange": {"low": 1}},
        {"sizeRange": 5},
        {"minWidth": 100, "maxWidth": 10},
        {"dateRange": {"start": "2024-02-01", "end": "2024-01-01"}},
        {"dateRange": {"start": "not a date"}},
        {"dateField": "deletedAt"},
        {"isFavorite": "yes"},
        {"tags": "happy"},
        {"tags": [""]},
        {"tagIds": [1]},
        {"keyword": 5},
    ])
    def test_malformed_filters_rejected(self, catalog, filters):
        with pytest.raises(InvalidArgument):
            catalog.search(filters)

    def test_filters_must_be_object(self, catalog):
        with pytest.raises(InvalidArgument):
            catalog.search(["keyword"])

    def test_dataclass_filters_validated(self, catalog):
        with pytest.raises(InvalidArgument):
            catalog.search(SearchFilters(limit=0))


class TestViews:

    def test_favorites_view_ignores_category(self, catalog):
        catalog.items.add(make_item("a", is_favorite=True, category_id="default"))
        catalog.items.add(make_item("b", is_favorite=True))
        catalog.items.add(make_item("c"))
        assert sorted(_ids(catalog.view("favorites"))) == ["a", "b"]

    def test_recent_view_uses_recent_limit(self, catalog):
        for i, ts in enumerate(("2024-01-01", "2024-01-03", "2024-01-02")):
            catalog.items.add(make_item(f"i{i}"))
            _set_times(catalog, f"i{i}", f"{ts}T00:00:00.000000Z")
        catalog.set_setting("recentLimit", 2)
        assert _ids(catalog.view("recent")) == ["i1", "i2"]

    def test_empty_view_lists_everything(self, catalog):
        catalog.items.add(make_item("a", category_id="x"))
        catalog.items.add(make_item("b"))
        assert sorted(_ids(catalog.view(""))) == ["a", "b"]
        assert sorted(_ids(catalog.view(None))) == ["a", "b"]

    def test_category_view_combines_with_filters(self, catalog):
        catalog.items.add(make_item("a", category_id="x", format="png"))
        catalog.items.add(make_item("b", category_id="x", format="gif"))
        catalog.items.add(make_item("c", category_id="y", format="png"))
        assert _ids(catalog.view("x", {"format": "png"})) == ["a"]

    def test_view_does_not_mutate_caller_filters(self, catalog):
        filters = SearchFilters(category_id="x")
        catalog.view("favorites", filters)
        assert filters.category_id == "x"
        assert filters.is_favorite is None

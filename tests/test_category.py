"""
Unit tests for the Category data model.
"""

import pytest

from kollektiv.core.category import (
    Category,
    CategoryValidationError,
    build_category_lookup,
    get_root_categories,
)


class TestCategoryCreation:
    """Test Category construction and validation."""

    def test_creation_with_all_params(self):
        category = Category(id="c1", name="  Cats  ", parent_id="r1", order=2, is_nsfw=True, color="red")

        assert category.id == "c1"
        assert category.name == "Cats"
        assert category.parent_id == "r1"
        assert category.order == 2
        assert category.is_nsfw is True
        assert category.metadata == {"color": "red"}

    def test_generates_id_when_missing(self):
        first = Category(name="A")
        second = Category(name="B")

        assert first.id
        assert first.id != second.id

    @pytest.mark.parametrize("name", ["", "   ", None, 42])
    def test_rejects_invalid_name(self, name):
        with pytest.raises(CategoryValidationError):
            Category(id="x", name=name)

    def test_rejects_blank_parent(self):
        with pytest.raises(CategoryValidationError):
            Category(id="x", name="X", parent_id="  ")

    def test_rejects_non_integer_order(self):
        with pytest.raises(CategoryValidationError):
            Category(id="x", name="X", order="first")


class TestCategorySerialization:
    """Test manifest round-trips."""

    def test_to_dict_uses_camel_case(self):
        category = Category(id="c1", name="Cats", parent_id="r1", order=1, is_nsfw=True)

        assert category.to_dict() == {
            "id": "c1",
            "name": "Cats",
            "order": 1,
            "parentId": "r1",
            "isNsfw": True,
        }

    def test_to_dict_omits_defaults(self):
        assert Category(id="r1", name="Root").to_dict() == {"id": "r1", "name": "Root", "order": 0}

    def test_from_dict_accepts_snake_case(self):
        category = Category.from_dict({"id": "c1", "name": "Cats", "parent_id": "r1", "is_nsfw": True})

        assert category.parent_id == "r1"
        assert category.is_nsfw is True

    def test_from_dict_legacy_entry_without_order(self):
        category = Category.from_dict({"id": "c1", "name": "Cats", "order": None})

        assert category.order == 0
        assert category.parent_id is None

    def test_from_dict_rejects_non_dict(self):
        with pytest.raises(CategoryValidationError):
            Category.from_dict(["not", "a", "dict"])

    def test_round_trip_keeps_metadata(self):
        data = {"id": "c1", "name": "Cats", "order": 0, "icon": "cat"}
        assert Category.from_dict(data).to_dict() == data

    def test_copy_is_independent(self):
        original = Category(id="c1", name="Cats", tags=["a"])
        clone = original.copy()
        clone.name = "Dogs"
        clone.metadata["tags"].append("b")

        assert original.name == "Cats"
        assert original.metadata["tags"] == ["a"]
        assert clone == Category(id="c1", name="Dogs", tags=["a", "b"])


class TestCategoryHierarchy:
    """Test hierarchy helpers."""

    def test_get_path(self, sample_categories):
        lookup = build_category_lookup(sample_categories)
        assert lookup["c1"].get_path(lookup) == "Root1/Child"
        assert lookup["r1"].get_path() == "Root1"

    def test_get_children_in_order(self, sample_categories):
        lookup = build_category_lookup(sample_categories)
        assert [c.id for c in lookup["r1"].get_children(sample_categories)] == ["c1", "c2"]

    def test_get_descendants(self):
        categories = [
            Category(id="a", name="A"),
            Category(id="b", name="B", parent_id="a"),
            Category(id="c", name="C", parent_id="b"),
        ]
        assert [c.id for c in categories[0].get_descendants(categories)] == ["b", "c"]

    def test_can_move_to(self):
        categories = [
            Category(id="a", name="A"),
            Category(id="b", name="B", parent_id="a"),
            Category(id="c", name="C"),
        ]
        a, b, c = categories

        assert a.can_move_to(None, categories) is True
        assert a.can_move_to("c", categories) is True
        assert a.can_move_to("a", categories) is False
        assert a.can_move_to("b", categories) is False
        assert b.can_move_to("missing", categories) is False

    def test_is_ancestor_of_terminates_on_cycle(self):
        categories = [
            Category(id="a", name="A", parent_id="b"),
            Category(id="b", name="B", parent_id="a"),
            Category(id="x", name="X"),
        ]
        assert categories[2].is_ancestor_of(categories[0], categories) is False

    def test_root_categories_sorted(self, sample_categories):
        assert [c.id for c in get_root_categories(sample_categories)] == ["r1", "r2"]

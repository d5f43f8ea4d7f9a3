"""
Unit tests for the category tree engine.

Every mutation must leave each sibling group with dense order values and the
parent graph free of cycles.
"""

import pytest

from kollektiv.core.category import Category
from kollektiv.core.category_tree import (
    build_tree,
    check_order_density,
    delete_category,
    drag_reorder,
    get_category_path,
    insert_category,
    is_descendant,
    move_category,
    normalize_categories,
    rename_category,
    reorder_category,
    set_category_flags,
    siblings_of,
    sort_categories,
)
from kollektiv.core.validation import find_category_cycles


def by_id(categories, category_id):
    return next(c for c in categories if c.id == category_id)


def sibling_ids(categories, parent_id):
    return [c.id for c in siblings_of(categories, parent_id)]


def assert_consistent(categories):
    assert check_order_density(categories)
    assert find_category_cycles(categories) == []


class TestQueries:
    def test_siblings_of(self, sample_categories):
        assert sibling_ids(sample_categories, None) == ["r1", "r2"]
        assert sibling_ids(sample_categories, "r1") == ["c1", "c2"]

    def test_is_descendant(self, sample_categories):
        assert is_descendant(sample_categories, "c1", "r1") is True
        assert is_descendant(sample_categories, "r1", "c1") is False
        assert is_descendant(sample_categories, "c1", "c1") is False
        assert is_descendant(sample_categories, "missing", "r1") is False

    def test_is_descendant_terminates_on_cycle(self):
        categories = [
            Category(id="a", name="A", parent_id="b"),
            Category(id="b", name="B", parent_id="a"),
        ]
        assert is_descendant(categories, "a", "x") is False

    def test_get_category_path(self, sample_categories):
        assert [c.name for c in get_category_path(sample_categories, "c2")] == ["Root1", "Other"]
        assert get_category_path(sample_categories, "missing") == []


class TestInsert:
    """Test category creation."""

    def test_appends_to_sibling_group(self, sample_categories):
        result, created = insert_category(sample_categories, "New", parent_id="r1", category_id="n1")

        assert created.id == "n1"
        assert created.order == 2
        assert sibling_ids(result, "r1") == ["c1", "c2", "n1"]
        assert_consistent(result)

    def test_does_not_mutate_input(self, sample_categories):
        insert_category(sample_categories, "New")
        assert len(sample_categories) == 5

    def test_generates_id(self):
        result, created = insert_category([], "First")
        assert created.id
        assert created.order == 0
        assert result == [created]

    @pytest.mark.parametrize("name", ["", "   ", "a/b", "a\\b", "..", None])
    def test_rejects_invalid_names(self, sample_categories, name):
        result, created = insert_category(sample_categories, name)

        assert created is None
        assert len(result) == 5

    def test_rejects_unknown_parent(self, sample_categories):
        _result, created = insert_category(sample_categories, "New", parent_id="ghost")
        assert created is None

    def test_rejects_duplicate_id(self, sample_categories):
        _result, created = insert_category(sample_categories, "New", category_id="r1")
        assert created is None


class TestRenameAndFlags:
    def test_rename(self, sample_categories):
        result = rename_category(sample_categories, "c1", "  Renamed ")

        assert by_id(result, "c1").name == "Renamed"
        assert by_id(sample_categories, "c1").name == "Child"

    def test_rename_blank_is_noop(self, sample_categories):
        assert by_id(rename_category(sample_categories, "c1", " "), "c1").name == "Child"

    def test_set_flags(self, sample_categories):
        result = set_category_flags(sample_categories, "r2", True)
        assert by_id(result, "r2").is_nsfw is True
        assert by_id(sample_categories, "r2").is_nsfw is False


class TestReorder:
    """Test moves within a sibling group."""

    @pytest.fixture
    def siblings(self):
        return [Category(id=name, name=name.upper(), order=index) for index, name in enumerate("abcd")]

    @pytest.mark.parametrize("category_id,direction,expected", [
        ("c", "up", ["a", "c", "b", "d"]),
        ("b", "down", ["a", "c", "b", "d"]),
        ("c", "top", ["c", "a", "b", "d"]),
        ("b", "bottom", ["a", "c", "d", "b"]),
    ])
    def test_directions(self, siblings, category_id, direction, expected):
        result = reorder_category(siblings, category_id, direction)

        assert sibling_ids(result, None) == expected
        assert_consistent(result)

    @pytest.mark.parametrize("category_id,direction", [
        ("a", "up"), ("a", "top"), ("d", "down"), ("d", "bottom"), ("a", "sideways"), ("ghost", "up"),
    ])
    def test_boundaries_are_noops(self, siblings, category_id, direction):
        result = reorder_category(siblings, category_id, direction)
        assert result == siblings


class TestMove:
    """Test explicit parent + position moves."""

    def test_move_to_other_parent_appends(self, sample_categories):
        result = move_category(sample_categories, "c1", "r2")

        assert by_id(result, "c1").parent_id == "r2"
        assert sibling_ids(result, "r2") == ["l1", "c1"]
        assert sibling_ids(result, "r1") == ["c2"]
        assert by_id(result, "c2").order == 0
        assert_consistent(result)

    def test_move_before_sibling(self, sample_categories):
        result = move_category(sample_categories, "c2", "r2", before_id="l1")

        assert sibling_ids(result, "r2") == ["c2", "l1"]
        assert_consistent(result)

    def test_move_to_root(self, sample_categories):
        result = move_category(sample_categories, "l1", None, before_id="r1")

        assert sibling_ids(result, None) == ["l1", "r1", "r2"]
        assert by_id(result, "l1").parent_id is None
        assert_consistent(result)

    def test_move_under_own_descendant_is_noop(self, sample_categories):
        assert move_category(sample_categories, "r1", "c1") == sample_categories
        assert move_category(sample_categories, "r1", "r1") == sample_categories

    def test_before_must_be_in_new_group(self, sample_categories):
        assert move_category(sample_categories, "c1", "r2", before_id="c2") == sample_categories

    def test_unknown_ids_are_noops(self, sample_categories):
        assert move_category(sample_categories, "ghost", None) == sample_categories
        assert move_category(sample_categories, "c1", "ghost") == sample_categories


class TestDragReorder:
    """Test drag-and-drop of one category onto another."""

    def test_drop_on_sibling_nests_under_it(self, sample_categories):
        result = drag_reorder(sample_categories, "c2", "c1")

        assert by_id(result, "c2").parent_id == "c1"
        assert by_id(result, "c2").order == 0
        assert sibling_ids(result, "r1") == ["c1"]
        assert_consistent(result)

    def test_drop_on_category_in_other_group_nests_first(self, sample_categories):
        result = drag_reorder(sample_categories, "c1", "r2")

        moved = by_id(result, "c1")
        assert moved.parent_id == "r2"
        assert moved.order == 0
        assert sibling_ids(result, "r2") == ["c1", "l1"]
        assert by_id(result, "l1").order == 1
        assert sibling_ids(result, "r1") == ["c2"]
        assert by_id(result, "c2").order == 0
        assert_consistent(result)

    def test_drop_on_leaf_of_other_root(self, sample_categories):
        result = drag_reorder(sample_categories, "c1", "l1")

        assert by_id(result, "c1").parent_id == "l1"
        assert by_id(result, "c1").order == 0
        assert_consistent(result)

    def test_drop_on_own_parent_moves_to_top(self, sample_categories):
        result = drag_reorder(sample_categories, "c2", "r1")

        assert sibling_ids(result, "r1") == ["c2", "c1"]
        assert_consistent(result)

    def test_drop_on_own_descendant_is_noop(self, sample_categories):
        assert drag_reorder(sample_categories, "r1", "c1") == sample_categories

    def test_drop_on_self_is_noop(self, sample_categories):
        assert drag_reorder(sample_categories, "r1", "r1") == sample_categories

    def test_input_is_not_mutated(self, sample_categories):
        drag_reorder(sample_categories, "c1", "r2")
        assert by_id(sample_categories, "c1").parent_id == "r1"


class TestSort:
    def test_sorts_each_group_separately(self):
        categories = [
            Category(id="z", name="zebra", order=0),
            Category(id="A", name="Apple", order=1),
            Category(id="m", name="mango", order=2),
            Category(id="zc2", name="beta", parent_id="z", order=0),
            Category(id="zc1", name="Alpha", parent_id="z", order=1),
        ]

        result = sort_categories(categories)

        assert sibling_ids(result, None) == ["A", "m", "z"]
        assert sibling_ids(result, "z") == ["zc1", "zc2"]
        assert_consistent(result)

    def test_case_tie_puts_lowercase_first(self):
        categories = [
            Category(id="upper", name="Cat", order=0),
            Category(id="lower", name="cat", order=1),
        ]
        assert sibling_ids(sort_categories(categories), None) == ["lower", "upper"]

    def test_group_with_dangling_parent_is_sorted(self):
        categories = [
            Category(id="b", name="B", parent_id="ghost", order=0),
            Category(id="a", name="A", parent_id="ghost", order=1),
        ]
        assert sibling_ids(sort_categories(categories), "ghost") == ["a", "b"]


class TestDelete:
    """Test removal with sub-category re-parenting."""

    def test_children_move_to_grandparent(self, sample_categories):
        result, removed = delete_category(sample_categories, "r1")

        assert removed.id == "r1"
        assert sibling_ids(result, None) == ["r2", "c1", "c2"]
        assert by_id(result, "c1").parent_id is None
        assert_consistent(result)

    def test_delete_leaf(self, sample_categories):
        result, removed = delete_category(sample_categories, "c1")

        assert removed.name == "Child"
        assert sibling_ids(result, "r1") == ["c2"]
        assert_consistent(result)

    def test_unknown_id(self, sample_categories):
        result, removed = delete_category(sample_categories, "ghost")
        assert removed is None
        assert result == sample_categories


class TestNormalize:
    """Test repair of loaded category data."""

    def test_sparse_orders_reindexed(self):
        categories = [
            Category(id="a", name="A", order=5),
            Category(id="b", name="B", order=2),
            Category(id="c", name="C", order=9),
        ]

        result = normalize_categories(categories)

        assert sibling_ids(result, None) == ["b", "a", "c"]
        assert_consistent(result)

    def test_legacy_entries_ordered_by_position(self):
        categories = [Category(id=name, name=name) for name in ("x", "y", "z")]

        result = normalize_categories(categories)

        assert [by_id(result, name).order for name in ("x", "y", "z")] == [0, 1, 2]

    def test_dangling_and_self_parents_become_roots(self):
        categories = [
            Category(id="a", name="A", parent_id="ghost"),
            Category(id="b", name="B", parent_id="b"),
        ]

        result = normalize_categories(categories)

        assert all(c.parent_id is None for c in result)
        assert_consistent(result)

    def test_cycle_is_broken(self):
        categories = [
            Category(id="a", name="A", parent_id="b"),
            Category(id="b", name="B", parent_id="a"),
            Category(id="c", name="C", parent_id="a"),
        ]

        result = normalize_categories(categories)

        assert_consistent(result)
        assert by_id(result, "a").parent_id is None
        assert by_id(result, "b").parent_id == "a"

    def test_duplicate_ids_keep_first(self):
        categories = [Category(id="a", name="First"), Category(id="a", name="Second")]

        result = normalize_categories(categories)

        assert len(result) == 1
        assert result[0].name == "First"


class TestBuildTree:
    def test_nested_view_with_counts(self, sample_categories):
        roots = build_tree(sample_categories, {"c1": 2, "r1": 1, "l1": 4})

        assert [node.category.id for node in roots] == ["r1", "r2"]
        assert [child.category.id for child in roots[0].children] == ["c1", "c2"]
        assert roots[0].children[0].depth == 1
        assert roots[0].item_count == 1
        assert roots[0].total_count == 3
        assert roots[1].total_count == 4

    def test_filter_keeps_ancestors(self, sample_categories):
        roots = build_tree(sample_categories, query="leaf")

        assert [node.category.id for node in roots] == ["r2"]
        assert [child.category.id for child in roots[0].children] == ["l1"]

    def test_to_dict(self, sample_categories):
        data = build_tree(sample_categories)[0].to_dict()

        assert data["id"] == "r1"
        assert data["depth"] == 0
        assert data["children"][0]["parentId"] == "r1"

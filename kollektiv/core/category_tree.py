"""
Category Tree Engine

Pure operations over the flat category list of a loaded manifest. Every
function returns a new list of category copies; the input list and its
categories are never mutated. Invalid input (unknown ids, blank names, boundary
reorders, moves that would create a cycle) makes an operation a no-op instead
of raising.

Key Features:
- Insert, rename, flag update and delete with sub-category re-parenting
- Reorder within a sibling group (up/down/top/bottom)
- Single-message move (parent + position) with cycle guard, used by drag-and-drop
- Recursive alphabetical sort per sibling group
- Repair pass for loaded data (dangling parents, cycles, sparse order values)
- Derived nested view with optional search filter
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .category import Category, CategoryValidationError, build_category_lookup
from .validation import find_category_cycles, validate_sibling_orders

logger = logging.getLogger(__name__)

REORDER_DIRECTIONS = ("up", "down", "top", "bottom")


@dataclass
class CategoryNode:
    """A category in the derived nested view."""
    category: Category
    depth: int = 0
    item_count: int = 0
    total_count: int = 0
    children: List['CategoryNode'] = field(default_factory=list)

    def to_dict(self) -> Dict:
        result = self.category.to_dict()
        result["depth"] = self.depth
        result["itemCount"] = self.item_count
        result["totalCount"] = self.total_count
        result["children"] = [child.to_dict() for child in self.children]
        return result


def _clone(categories: List[Category]) -> List[Category]:
    return [category.copy() for category in categories]


def _is_valid_name(name) -> bool:
    if not isinstance(name, str):
        return False
    stripped = name.strip()
    if not stripped or stripped in (".", ".."):
        return False
    return "/" not in stripped and "\\" not in stripped


def _reindex(group: List[Category]) -> None:
    for index, category in enumerate(group):
        category.order = index


def _sort_key(category: Category):
    # Case-insensitive first; on a tie lowercase sorts before uppercase.
    return (category.name.casefold(), category.name.swapcase())


def siblings_of(categories: List[Category], parent_id: Optional[str]) -> List[Category]:
    """
    Categories sharing a parent, in sibling order.

    Ties in ``order`` keep list position. The returned objects are the ones
    in ``categories``, not copies.
    """
    return sorted([c for c in categories if c.parent_id == parent_id], key=lambda c: c.order)


def is_descendant(categories: List[Category], node_id: str, ancestor_id: str) -> bool:
    """
    Check whether ``ancestor_id`` appears on the parent chain of ``node_id``.

    The walk stops after ``len(categories)`` steps so corrupted data with a
    cycle still terminates.

    Args:
        categories: Flat category list
        node_id: Node whose ancestors are walked
        ancestor_id: Candidate ancestor

    Returns:
        True if node_id is a strict descendant of ancestor_id
    """
    lookup = build_category_lookup(categories)
    current = lookup.get(node_id)
    steps = 0

    while current is not None and current.parent_id and steps < len(categories):
        if current.parent_id == ancestor_id:
            return True
        current = lookup.get(current.parent_id)
        steps += 1

    return False


def get_category_path(categories: List[Category], category_id: str) -> List[Category]:
    """
    Ancestor chain of a category, root first and the category itself last.

    Returns an empty list for an unknown id.
    """
    lookup = build_category_lookup(categories)
    chain = []
    seen = set()
    current = lookup.get(category_id)

    while current is not None and current.id not in seen:
        seen.add(current.id)
        chain.append(current)
        current = lookup.get(current.parent_id) if current.parent_id else None

    chain.reverse()
    return chain


def check_order_density(categories: List[Category]) -> bool:
    """True if every sibling group has order values 0..n-1."""
    return validate_sibling_orders(categories).is_valid


def insert_category(categories: List[Category], name: str, parent_id: Optional[str] = None,
                    is_nsfw: bool = False, category_id: Optional[str] = None) -> Tuple[List[Category], Optional[Category]]:
    """
    Append a new category at the end of its sibling group.

    Args:
        categories: Current category list
        name: Display name, also the physical folder segment
        parent_id: Parent category id, None for a root-level category
        is_nsfw: Exclusivity flag
        category_id: Id to assign. A fresh id is generated when omitted.

    Returns:
        Tuple of (updated list, new category). The category is None when the
        insert was rejected (blank or invalid name, unknown parent, duplicate id).
    """
    result = _clone(categories)
    lookup = build_category_lookup(result)

    if not _is_valid_name(name):
        logger.debug(f"Rejected category insert with invalid name {name!r}")
        return result, None
    if parent_id is not None and parent_id not in lookup:
        logger.debug(f"Rejected category insert under unknown parent {parent_id}")
        return result, None
    if category_id is not None and category_id in lookup:
        logger.debug(f"Rejected category insert with duplicate id {category_id}")
        return result, None

    try:
        new_category = Category(
            id=category_id,
            name=name,
            parent_id=parent_id,
            order=len(siblings_of(result, parent_id)),
            is_nsfw=is_nsfw,
        )
    except CategoryValidationError as e:
        logger.debug(f"Rejected category insert: {e}")
        return result, None

    result.append(new_category)
    return result, new_category


def rename_category(categories: List[Category], category_id: str, name: str) -> List[Category]:
    """Rename a category. Files are not moved here."""
    result = _clone(categories)
    target = build_category_lookup(result).get(category_id)
    if target is None or not _is_valid_name(name):
        return result
    target.name = name.strip()
    return result


def set_category_flags(categories: List[Category], category_id: str, is_nsfw: bool) -> List[Category]:
    result = _clone(categories)
    target = build_category_lookup(result).get(category_id)
    if target is not None:
        target.is_nsfw = bool(is_nsfw)
    return result


def reorder_category(categories: List[Category], category_id: str, direction: str) -> List[Category]:
    """
    Move a category within its sibling group.

    Args:
        categories: Current category list
        category_id: Category to move
        direction: "up", "down", "top" or "bottom"

    Returns:
        Updated list with the sibling group reindexed 0..n-1. Unchanged when
        the category is already at the boundary for that direction.
    """
    result = _clone(categories)
    target = build_category_lookup(result).get(category_id)
    if target is None or direction not in REORDER_DIRECTIONS:
        return result

    group = siblings_of(result, target.parent_id)
    index = group.index(target)

    if direction == "up":
        new_index = index - 1
    elif direction == "down":
        new_index = index + 1
    elif direction == "top":
        new_index = 0
    else:
        new_index = len(group) - 1

    if new_index < 0 or new_index >= len(group) or new_index == index:
        return result

    group.pop(index)
    group.insert(new_index, target)
    _reindex(group)
    return result


def move_category(categories: List[Category], source_id: str, new_parent_id: Optional[str],
                  before_id: Optional[str] = None) -> List[Category]:
    """
    Move a category to a new parent and position in one step.

    The parent change and the reindex of both the old and the new sibling
    group happen together, so no intermediate state is ever returned.

    Args:
        categories: Current category list
        source_id: Category to move
        new_parent_id: New parent id, None for root level
        before_id: Sibling in the new group to insert before. Appends when None.

    Returns:
        Updated list. Unchanged if an id is unknown, ``before_id`` is not a
        child of ``new_parent_id``, or the new parent is the source itself or
        one of its descendants.
    """
    result = _clone(categories)
    lookup = build_category_lookup(result)
    source = lookup.get(source_id)
    if source is None:
        return result

    if new_parent_id is not None:
        if new_parent_id not in lookup:
            return result
        if new_parent_id == source_id or is_descendant(result, new_parent_id, source_id):
            logger.debug(f"Rejected move of {source_id} under its own subtree ({new_parent_id})")
            return result

    before = None
    if before_id is not None:
        before = lookup.get(before_id)
        if before is None or before_id == source_id or before.parent_id != new_parent_id:
            return result

    old_group = [c for c in siblings_of(result, source.parent_id) if c is not source]
    new_group = [c for c in siblings_of(result, new_parent_id) if c is not source]

    index = new_group.index(before) if before is not None else len(new_group)
    new_group.insert(index, source)
    source.parent_id = new_parent_id

    _reindex(old_group)
    _reindex(new_group)
    return result


def drag_reorder(categories: List[Category], source_id: str, target_id: str) -> List[Category]:
    """
    Apply a drag-and-drop of one category onto another.

    The source becomes the target's first child, changing parent and
    position in a single move. Use ``move_category`` with a ``before_id`` to
    place a category among the target's siblings instead.

    Rejected (no-op) when the target is the source or one of its descendants.
    """
    lookup = build_category_lookup(categories)
    source = lookup.get(source_id)
    target = lookup.get(target_id)
    if source is None or target is None or source_id == target_id:
        return _clone(categories)
    if is_descendant(categories, target_id, source_id):
        logger.debug(f"Rejected drag of {source_id} onto its descendant {target_id}")
        return _clone(categories)

    children = [c for c in siblings_of(categories, target_id) if c.id != source_id]
    first_child = children[0].id if children else None
    return move_category(categories, source_id, target_id, before_id=first_child)


def sort_categories(categories: List[Category]) -> List[Category]:
    """
    Sort every sibling group alphabetically, depth-first from the roots.

    Names compare case-insensitively first, then case-sensitively. Groups are
    only ever sorted among themselves, never across parents.
    """
    result = _clone(categories)
    visited = set()

    def sort_group(parent_id: Optional[str]) -> None:
        if parent_id in visited:
            return
        visited.add(parent_id)

        group = sorted(siblings_of(result, parent_id), key=_sort_key)
        _reindex(group)
        for category in group:
            sort_group(category.id)

    sort_group(None)

    # Groups unreachable from the roots (dangling parents) are still sorted.
    for category in result:
        if category.parent_id not in visited:
            sort_group(category.parent_id)

    return result


def delete_category(categories: List[Category], category_id: str) -> Tuple[List[Category], Optional[Category]]:
    """
    Remove a category.

    Direct sub-categories are re-parented to the deleted category's parent and
    appended after its remaining siblings, keeping their relative order.
    Items are not touched here; detaching them is the caller's job.

    Returns:
        Tuple of (updated list, removed category or None if unknown)
    """
    result = _clone(categories)
    target = build_category_lookup(result).get(category_id)
    if target is None:
        return result, None

    children = siblings_of(result, category_id)
    result = [c for c in result if c is not target]

    group = siblings_of(result, target.parent_id)
    for child in children:
        child.parent_id = target.parent_id
    group.extend(children)
    _reindex(group)

    return result, target


def normalize_categories(categories: List[Category]) -> List[Category]:
    """
    Repair a loaded category list.

    - Duplicate ids keep their first occurrence
    - Parents that do not exist become root level
    - Each cycle is broken by moving its first detected node to the root
    - Every sibling group is reindexed by existing order, then list position
    """
    seen = set()
    result = []
    for category in _clone(categories):
        if category.id in seen:
            logger.warning(f"Dropping duplicate category id {category.id}")
            continue
        seen.add(category.id)
        result.append(category)

    for category in result:
        if category.parent_id and (category.parent_id not in seen or category.parent_id == category.id):
            logger.warning(f"Category '{category.name}' has missing parent {category.parent_id}, moving to root")
            category.parent_id = None

    lookup = build_category_lookup(result)
    for cycle in find_category_cycles(result):
        breaker = lookup[cycle[0]]
        logger.warning(f"Breaking category cycle {' -> '.join(cycle)} at '{breaker.name}'")
        breaker.parent_id = None

    parent_ids = []
    for category in result:
        if category.parent_id not in parent_ids:
            parent_ids.append(category.parent_id)
    for parent_id in parent_ids:
        _reindex(siblings_of(result, parent_id))

    return result


def build_tree(categories: List[Category], item_counts: Optional[Dict[str, int]] = None,
               query: Optional[str] = None) -> List[CategoryNode]:
    """
    Build the nested view of a category list.

    Args:
        categories: Flat category list
        item_counts: Optional mapping of category id to number of directly owned items
        query: Optional case-insensitive filter. Matching categories are kept
            together with all of their ancestors.

    Returns:
        Root nodes in sibling order
    """
    item_counts = item_counts or {}
    needle = (query or "").strip().lower()
    visited = set()

    def build(category: Category, depth: int) -> Optional[CategoryNode]:
        if category.id in visited:
            return None
        visited.add(category.id)

        node = CategoryNode(category=category, depth=depth, item_count=item_counts.get(category.id, 0))
        for child in siblings_of(categories, category.id):
            child_node = build(child, depth + 1)
            if child_node is not None:
                node.children.append(child_node)

        node.total_count = node.item_count + sum(child.total_count for child in node.children)

        if needle and needle not in category.name.lower() and not node.children:
            return None
        return node

    roots = []
    for root in siblings_of(categories, None):
        root_node = build(root, 0)
        if root_node is not None:
            roots.append(root_node)
    return roots

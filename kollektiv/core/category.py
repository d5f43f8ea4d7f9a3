"""
Category Data Model for Kollektiv

This module provides the Category class: a named node in the category forest.
Categories are persisted as a flat list of parent-pointer records; any nested
view is derived from that list.
"""

import copy
import uuid
import logging
from typing import Dict, List, Any, Optional

logger = logging.getLogger(__name__)


class CategoryError(Exception):
    """Base exception for category-related operations"""
    pass


class CategoryValidationError(CategoryError):
    """Exception raised when category validation fails"""
    pass


class Category:
    """
    Represents a category node with an opaque identifier.

    The ``name`` doubles as the physical folder segment for items the category
    owns directly. ``order`` is the position among siblings sharing the same
    ``parent_id``.
    """

    def __init__(self, id: str = None, name: str = "", parent_id: str = None,
                 order: int = 0, is_nsfw: bool = False, **metadata):
        """
        Initialize a Category instance.

        Args:
            id: Unique identifier. If None, generates a new UUID.
            name: Display name and physical folder segment
            parent_id: Identifier of the parent category. None for root-level categories.
            order: Position among siblings
            is_nsfw: Exclusivity flag propagated to owned gallery items
            **metadata: Additional category fields preserved on round-trip

        Raises:
            CategoryValidationError: If category data is invalid
        """
        self.id = id if id else str(uuid.uuid4())
        if not isinstance(self.id, str):
            raise CategoryValidationError("Category ID must be a string")

        if not isinstance(name, str):
            raise CategoryValidationError("Category name must be a string")

        self.name = name.strip()
        if not self.name:
            raise CategoryValidationError("Category name cannot be empty")

        if parent_id is not None:
            if not isinstance(parent_id, str) or not parent_id.strip():
                raise CategoryValidationError("Parent ID must be a valid string")
            self.parent_id = parent_id.strip()
        else:
            self.parent_id = None

        try:
            self.order = int(order)
        except (TypeError, ValueError):
            raise CategoryValidationError(f"Category order must be an integer, got {order!r}")

        self.is_nsfw = bool(is_nsfw)
        self.metadata = metadata or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert category to its manifest representation.

        Returns:
            Dictionary with camelCase keys as stored in manifest documents
        """
        result = {
            "id": self.id,
            "name": self.name,
            "order": self.order,
        }
        if self.parent_id is not None:
            result["parentId"] = self.parent_id
        if self.is_nsfw:
            result["isNsfw"] = True

        for key, value in self.metadata.items():
            if key not in result:
                result[key] = value

        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Category':
        """
        Create Category instance from manifest data.

        Accepts both the camelCase manifest keys and snake_case keys.

        Args:
            data: Dictionary containing category data

        Returns:
            Category instance

        Raises:
            CategoryValidationError: If data is invalid or missing required fields
        """
        if not isinstance(data, dict):
            raise CategoryValidationError("Category data must be a dictionary")

        fields = dict(data)
        category_id = fields.pop("id", None)
        name = fields.pop("name", "")
        parent_id = fields.pop("parentId", None)
        snake_parent = fields.pop("parent_id", None)
        if parent_id is None:
            parent_id = snake_parent
        order = fields.pop("order", 0)
        is_nsfw = fields.pop("isNsfw", None)
        snake_nsfw = fields.pop("is_nsfw", None)
        if is_nsfw is None:
            is_nsfw = snake_nsfw

        if order is None:
            order = 0

        try:
            return cls(id=category_id, name=name, parent_id=parent_id or None,
                       order=order, is_nsfw=bool(is_nsfw), **fields)
        except CategoryValidationError:
            raise
        except TypeError as e:
            raise CategoryValidationError(f"Failed to create category from data: {e}")

    def copy(self) -> 'Category':
        return Category(id=self.id, name=self.name, parent_id=self.parent_id,
                        order=self.order, is_nsfw=self.is_nsfw,
                        **copy.deepcopy(self.metadata))

    def get_path(self, category_lookup: Dict[str, 'Category'] = None) -> str:
        """
        Generate display path from the category hierarchy.

        Args:
            category_lookup: Dictionary mapping category IDs to Category objects

        Returns:
            Path string (e.g., "Characters/Heroes")
        """
        if not category_lookup:
            return self.name

        path_parts = []
        current = self
        visited = set()

        while current and current.id not in visited:
            visited.add(current.id)
            path_parts.append(current.name)
            if current.parent_id:
                current = category_lookup.get(current.parent_id)
            else:
                break

        path_parts.reverse()
        return '/'.join(path_parts)

    def get_children(self, all_categories: List['Category']) -> List['Category']:
        """Direct child categories, in sibling order."""
        children = [c for c in all_categories if c.parent_id == self.id]
        return sorted(children, key=lambda c: c.order)

    def get_descendants(self, all_categories: List['Category']) -> List['Category']:
        """
        Get all descendant categories recursively.

        Args:
            all_categories: List of all available categories

        Returns:
            List of all descendant categories, parents before children
        """
        descendants = []
        visited = set()

        def collect_descendants(category_id: str):
            if category_id in visited:
                return
            visited.add(category_id)

            for category in all_categories:
                if category.parent_id == category_id and category.id not in visited:
                    descendants.append(category)
                    collect_descendants(category.id)

        collect_descendants(self.id)
        return descendants

    def is_ancestor_of(self, other: 'Category', all_categories: List['Category']) -> bool:
        """
        Check if this category is an ancestor of another category.

        The walk is bounded by the number of categories so a corrupted
        (cyclic) parent graph still terminates.
        """
        if not other.parent_id:
            return False

        category_lookup = {c.id: c for c in all_categories}
        current = other
        steps = 0

        while current and current.parent_id and steps <= len(all_categories):
            if current.parent_id == self.id:
                return True
            current = category_lookup.get(current.parent_id)
            steps += 1

        return False

    def can_move_to(self, new_parent_id: Optional[str], all_categories: List['Category']) -> bool:
        """
        Check if category can be moved under a new parent without creating cycles.

        Args:
            new_parent_id: Identifier of the potential new parent, None for root
            all_categories: List of all available categories

        Returns:
            True if move is valid
        """
        if new_parent_id is None:
            return True

        if new_parent_id == self.id:
            return False

        target_parent = None
        for category in all_categories:
            if category.id == new_parent_id:
                target_parent = category
                break

        if not target_parent:
            return False

        return not self.is_ancestor_of(target_parent, all_categories)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Category):
            return False
        return self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash(self.id)

    def __str__(self) -> str:
        parent_info = f" (parent: {self.parent_id})" if self.parent_id else " (root)"
        return f"Category({self.name}{parent_info})"

    def __repr__(self) -> str:
        return f"Category(id='{self.id}', name='{self.name}', parent_id='{self.parent_id}', order={self.order})"


def build_category_lookup(categories: List[Category]) -> Dict[str, Category]:
    """
    Build a lookup dictionary for categories by ID.

    Args:
        categories: List of category objects

    Returns:
        Dictionary mapping category IDs to category objects
    """
    return {category.id: category for category in categories}


def get_root_categories(categories: List[Category]) -> List[Category]:
    """Root-level categories in sibling order."""
    return sorted([c for c in categories if c.parent_id is None], key=lambda c: c.order)

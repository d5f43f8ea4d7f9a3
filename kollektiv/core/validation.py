"""
Validation System for Kollektiv

This module provides validation for category forests, catalog items and whole
manifest documents.

Key Features:
- Cycle detection in the category parent graph using DFS
- Sibling order density checks (contiguous 0..n-1 per sibling group)
- Dangling parent and duplicate id detection
- Duplicate leaf-name warnings (items of same-named categories share a folder)
- JSON schema validation of manifest documents with jsonschema
"""

import os
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Dict, Set, Optional, Any, Union

import jsonschema

from .category import Category

logger = logging.getLogger(__name__)

SCHEMA_DIRECTORY = os.path.join(os.path.dirname(os.path.dirname(__file__)), "schemas")


@dataclass
class ValidationResult:
    """
    Result container for validation operations.

    Provides structured feedback about validation success/failure
    with detailed error and warning messages.
    """
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as invalid"""
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str) -> None:
        """Add a warning message"""
        self.warnings.append(message)

    def merge(self, other: 'ValidationResult') -> None:
        """Merge another validation result into this one"""
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)
        if not other.is_valid:
            self.is_valid = False


@dataclass
class CycleDetectionResult:
    """Result of cycle detection algorithm"""
    has_cycle: bool = False
    cycle_path: List[str] = field(default_factory=list)
    visited: Set[str] = field(default_factory=set)


def _parent_graph(categories: List[Category]) -> Dict[str, List[str]]:
    graph = {}
    for category in categories:
        graph[category.id] = [category.parent_id] if category.parent_id else []
    return graph


def _detect_cycle_dfs(graph: Dict[str, List[str]], start_node: str, finished: Set[str]) -> CycleDetectionResult:
    """
    Use DFS to detect a cycle reachable from a node.

    Args:
        graph: Parent graph (node_id -> [parent_id])
        start_node: Starting node for cycle detection
        finished: Nodes already proven cycle-free; extended in place

    Returns:
        CycleDetectionResult with cycle information
    """
    result = CycleDetectionResult()

    recursion_stack = set()
    path = []

    def dfs(node: str) -> bool:
        if node in recursion_stack:
            cycle_start_index = path.index(node)
            result.cycle_path = path[cycle_start_index:] + [node]
            return True

        if node in finished or node not in graph:
            return False

        result.visited.add(node)
        recursion_stack.add(node)
        path.append(node)

        for neighbor in graph[node]:
            if dfs(neighbor):
                return True

        recursion_stack.remove(node)
        path.pop()
        finished.add(node)
        return False

    result.has_cycle = dfs(start_node)
    return result


def find_category_cycles(categories: List[Category]) -> List[List[str]]:
    """
    Find every cycle in the category parent graph.

    Args:
        categories: Flat category list

    Returns:
        List of cycle paths, each starting and ending with the same id
    """
    graph = _parent_graph(categories)
    finished: Set[str] = set()
    cycles = []

    for node_id in graph:
        if node_id in finished:
            continue
        cycle_result = _detect_cycle_dfs(graph, node_id, finished)
        if cycle_result.has_cycle:
            cycles.append(cycle_result.cycle_path)
            # Nodes on a reported cycle are not reported again.
            finished.update(cycle_result.visited)

    return cycles


def detect_category_cycles(categories: List[Category]) -> ValidationResult:
    """
    Detect cycles in the category parent graph.

    Example:
        >>> a = Category(id="a", name="A", parent_id="b")
        >>> b = Category(id="b", name="B", parent_id="a")
        >>> detect_category_cycles([a, b]).is_valid
        False
    """
    result = ValidationResult(is_valid=True)
    for cycle in find_category_cycles(categories):
        result.add_error(f"Circular parent reference detected: {' -> '.join(cycle)}")
    return result


def validate_sibling_orders(categories: List[Category]) -> ValidationResult:
    """
    Check that every sibling group has dense order values 0..n-1.

    Args:
        categories: Flat category list

    Returns:
        ValidationResult with one error per sibling group that has gaps or duplicates
    """
    result = ValidationResult(is_valid=True)
    groups: Dict[Optional[str], List[int]] = defaultdict(list)
    for category in categories:
        groups[category.parent_id].append(category.order)

    for parent_id, orders in groups.items():
        if sorted(orders) != list(range(len(orders))):
            group_name = parent_id or "<root>"
            result.add_error(f"Sibling group under {group_name} has non-dense order values: {sorted(orders)}")

    return result


def validate_category_structure(category_data: Union[Dict[str, Any], Category]) -> ValidationResult:
    """
    Validate an individual category record.

    Args:
        category_data: Category object or manifest dictionary

    Returns:
        ValidationResult with structural validation results
    """
    result = ValidationResult(is_valid=True)

    if isinstance(category_data, Category):
        data = category_data.to_dict()
    elif isinstance(category_data, dict):
        data = category_data
    else:
        result.add_error(f"Invalid category data type: {type(category_data)}")
        return result

    category_id = data.get("id")
    if not isinstance(category_id, str) or not category_id.strip():
        result.add_error("Field 'id' must be a non-empty string")

    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        result.add_error("Field 'name' must be a non-empty string")
    elif "/" in name or "\\" in name:
        result.add_error(f"Category name '{name}' cannot contain path separators")
    elif name.strip() in (".", ".."):
        result.add_error(f"Category name '{name}' is reserved")

    parent_id = data.get("parentId", data.get("parent_id"))
    if parent_id is not None:
        if not isinstance(parent_id, str) or not parent_id.strip():
            result.add_error("Field 'parentId' must be a non-empty string when present")
        elif parent_id == category_id:
            result.add_error(f"Category '{category_id}' cannot be its own parent")

    if "order" in data:
        order = data["order"]
        if isinstance(order, bool) or not isinstance(order, int):
            result.add_error("Field 'order' must be an integer")
        elif order < 0:
            result.add_error("Field 'order' cannot be negative")
    else:
        result.add_warning(f"Category '{category_id}' has no order value")

    return result


def validate_category_collection(categories: List[Category]) -> ValidationResult:
    """
    Perform comprehensive validation of a category forest.

    Validates each record, parent references, acyclicity and sibling order
    density. Categories sharing a leaf name are reported as warnings since
    their items would share one physical folder.

    Args:
        categories: Flat category list

    Returns:
        ValidationResult with comprehensive validation results
    """
    result = ValidationResult(is_valid=True)

    seen_ids = set()
    for category in categories:
        structure_result = validate_category_structure(category)
        for error in structure_result.errors:
            result.add_error(f"Category '{category.id}': {error}")
        for warning in structure_result.warnings:
            result.add_warning(f"Category '{category.id}': {warning}")

        if category.id in seen_ids:
            result.add_error(f"Duplicate category id '{category.id}'")
        seen_ids.add(category.id)

    for category in categories:
        if category.parent_id and category.parent_id not in seen_ids:
            result.add_error(f"Category '{category.id}' references missing parent '{category.parent_id}'")

    result.merge(detect_category_cycles(categories))
    result.merge(validate_sibling_orders(categories))

    names: Dict[str, List[str]] = defaultdict(list)
    for category in categories:
        names[category.name].append(category.id)
    for name, ids in names.items():
        if len(ids) > 1:
            result.add_warning(f"Categories {ids} share the folder name '{name}'")

    return result


def validate_item_structure(item_data: Dict[str, Any]) -> ValidationResult:
    """
    Validate a catalog item manifest entry.

    Args:
        item_data: Manifest dictionary for one item

    Returns:
        ValidationResult with structural validation results
    """
    result = ValidationResult(is_valid=True)

    if not isinstance(item_data, dict):
        result.add_error(f"Invalid item data type: {type(item_data)}")
        return result

    item_id = item_data.get("id")
    if not isinstance(item_id, str) or not item_id.strip():
        result.add_error("Field 'id' must be a non-empty string")

    paths = item_data.get("paths", item_data.get("urls"))
    if paths is None:
        result.add_warning(f"Item '{item_id}' has no path references")
    elif not isinstance(paths, list):
        result.add_error("Field 'paths' must be a list")
    else:
        for i, path in enumerate(paths):
            if not isinstance(path, str) or not path.strip():
                result.add_error(f"Path at index {i} must be a non-empty string")

    tags = item_data.get("tags")
    if tags is not None:
        if not isinstance(tags, list):
            result.add_error("Field 'tags' must be a list")
        else:
            for i, tag in enumerate(tags):
                if not isinstance(tag, str):
                    result.add_error(f"Tag at index {i} must be a string")

    category_id = item_data.get("categoryId")
    if category_id is not None and not isinstance(category_id, str):
        result.add_error("Field 'categoryId' must be a string")

    return result


@lru_cache(maxsize=None)
def load_schema(schema_name: str) -> Dict[str, Any]:
    """
    Load a bundled JSON schema by name (e.g. "gallery-manifest").

    Raises:
        FileNotFoundError: If no schema with that name is bundled
    """
    schema_path = os.path.join(SCHEMA_DIRECTORY, f"{schema_name}.schema.json")
    with open(schema_path, "r", encoding="utf-8") as schema_file:
        return json.load(schema_file)


def validate_document(document: Any, schema_name: str) -> ValidationResult:
    """
    Validate a manifest document against its bundled JSON schema.

    Args:
        document: Parsed JSON document
        schema_name: Bundled schema name

    Returns:
        ValidationResult with one error per schema violation
    """
    result = ValidationResult(is_valid=True)
    validator = jsonschema.Draft7Validator(load_schema(schema_name))

    for error in sorted(validator.iter_errors(document), key=lambda e: list(e.path)):
        location = "/".join(str(part) for part in error.path) or "<document>"
        result.add_error(f"{location}: {error.message}")

    return result

"""
Asset Relocation Service

Keeps the physical location of an item's files consistent with the name of
its owning category. A file lives at ``<domain_root>/<category name>/<basename>``,
or at ``<domain_root>/<basename>`` for uncategorized items.

Each path is relocated independently: a missing source file leaves that one
reference untouched while the item's other paths still move.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .file_storage import FileStorage, StorageError, basename, join_path, normalize_path
from .item import CatalogItem, is_external_reference

logger = logging.getLogger(__name__)

MOVED = "moved"
MISSING = "missing"
UNCHANGED = "unchanged"
EXTERNAL = "external"


def canonical_path(domain_root: str, category_name: Optional[str], old_path: str) -> str:
    """
    Compute where a file belongs for a given category.

    Example:
        >>> canonical_path("gallery", "New", "gallery/Old/x.png")
        'gallery/New/x.png'
        >>> canonical_path("gallery", None, "gallery/Old/x.png")
        'gallery/x.png'
    """
    return join_path(domain_root, category_name, basename(old_path))


@dataclass
class RelocationReport:
    """Outcome of relocating one item's paths."""
    item_id: str
    moved: List[Tuple[str, str]] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.moved)


class AssetRelocator:
    """
    Migrates file content between canonical locations.

    Write and delete failures raise StorageError; paths already moved by the
    same call are not rolled back.
    """

    def __init__(self, storage: FileStorage, domain_root: str):
        self.storage = storage
        self.domain_root = domain_root

    def _relocate(self, path: str, category_name: Optional[str]) -> Tuple[str, str]:
        if is_external_reference(path):
            return path, EXTERNAL

        new_path = canonical_path(self.domain_root, category_name, path)
        try:
            if normalize_path(path) == new_path:
                return path, UNCHANGED
        except StorageError as e:
            logger.warning(f"Cannot relocate invalid path {path!r}: {e}")
            return path, MISSING

        content = self.storage.read(path)
        if content is None:
            logger.warning(f"Content missing at {path}, keeping reference unchanged")
            return path, MISSING

        final_path = self.storage.save(new_path, content)
        if final_path != normalize_path(path):
            self.storage.delete(path)
        logger.debug(f"Relocated {path} -> {final_path}")
        return final_path, MOVED

    def relocate_path(self, path: str, category_name: Optional[str]) -> str:
        """
        Move one file to its canonical location.

        Args:
            path: Current storage path
            category_name: Name of the owning category, None if uncategorized

        Returns:
            The path now referencing the content. The old path is returned
            unchanged if it is already canonical, is not a storage path, or
            has no content.

        Raises:
            StorageError: If writing the new file or deleting the old one fails
        """
        new_path, _status = self._relocate(path, category_name)
        return new_path

    def relocate_item(self, item: CatalogItem, category_name: Optional[str]) -> RelocationReport:
        """
        Relocate every path of an item, updating ``item.paths`` in place.

        Args:
            item: Item to relocate
            category_name: Name of the item's (new) owning category

        Returns:
            RelocationReport listing moved, missing and unchanged paths
        """
        report = RelocationReport(item_id=item.id)
        new_paths = []

        for path in item.paths:
            new_path, status = self._relocate(path, category_name)
            new_paths.append(new_path)
            if status == MOVED:
                report.moved.append((path, new_path))
            elif status == MISSING:
                report.missing.append(path)
            else:
                report.unchanged.append(path)

        item.paths = new_paths

        if report.moved:
            logger.info(f"Relocated {len(report.moved)} file(s) of item {item.id} to '{category_name or self.domain_root}'")
        return report

    def relocate_category_items(self, manifest, category_id: str) -> List[RelocationReport]:
        """Relocate every item owned by a category to the category's current name."""
        category_name = manifest.category_name(category_id)
        return [self.relocate_item(item, category_name) for item in manifest.items_in_category(category_id)]

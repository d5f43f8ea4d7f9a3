"""
Catalog Manifest Store

This module persists one serialized document per domain through the storage
collaborator: the gallery catalog, the prompt catalog and the flat
reference-card sheets.

Key Features:
- Full-document load/save; a save is a single storage write
- load() never raises: absent, unreadable, unparsable or schema-invalid
  documents produce an empty manifest, corrupt entries are skipped
- Legacy document repair on load (missing order/parent values, legacy keys)
- Revision stamp with optional compare-and-swap on save
"""

import re
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Union

from .category import Category, CategoryValidationError
from .category_tree import normalize_categories
from .file_storage import FileStorage, StorageError, join_path
from .item import (
    CatalogItem,
    ItemValidationError,
    RawContent,
    ReferenceCard,
    ReferenceSection,
    as_raw_content,
    now_ms,
)
from .validation import validate_document

logger = logging.getLogger(__name__)

GALLERY_MANIFEST_NAME = "kollektiv_gallery_manifest.json"
PROMPTS_MANIFEST_NAME = "prompts_manifest.json"
UNCATEGORIZED_SECTION = "Uncategorized"


class StaleManifestError(StorageError):
    """Raised when a compare-and-swap save finds a newer stored revision"""
    pass


@dataclass
class Manifest:
    """The persisted aggregate for one domain."""
    items: List[CatalogItem] = field(default_factory=list)
    categories: List[Category] = field(default_factory=list)
    pinned: List[str] = field(default_factory=list)
    revision: int = 0

    def find_item(self, item_id: str) -> Optional[CatalogItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def find_category(self, category_id: Optional[str]) -> Optional[Category]:
        if not category_id:
            return None
        for category in self.categories:
            if category.id == category_id:
                return category
        return None

    def category_name(self, category_id: Optional[str]) -> Optional[str]:
        category = self.find_category(category_id)
        return category.name if category else None

    def items_in_category(self, category_id: str) -> List[CatalogItem]:
        return [item for item in self.items if item.category_id == category_id]

    def item_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for item in self.items:
            if item.category_id:
                counts[item.category_id] = counts.get(item.category_id, 0) + 1
        return counts


class ManifestStore:
    """
    Base store for the two nested-category domains.

    Subclasses name the document key holding the items and the schema the
    document is validated against.
    """

    SCHEMA_NAME = ""
    ITEMS_KEY = "items"
    DEFAULT_KIND = "image"
    HAS_PINS = False

    def __init__(self, storage: FileStorage, manifest_path: str):
        self.storage = storage
        self.manifest_path = manifest_path

    def empty(self) -> Manifest:
        return Manifest()

    def default_document(self) -> Dict[str, Any]:
        """Document written when repairing a missing or corrupt manifest."""
        return self.to_document(self.empty())

    def _read_document(self) -> Optional[Any]:
        raw = self.storage.read(self.manifest_path)
        if raw is None:
            logger.info(f"No manifest at {self.manifest_path}, starting empty")
            return None

        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Failed to parse manifest {self.manifest_path}, starting fresh: {e}")
            return None

        result = validate_document(document, self.SCHEMA_NAME)
        if not result.is_valid:
            logger.error(f"Manifest {self.manifest_path} failed schema validation, starting fresh: {result.errors[:3]}")
            return None

        return document

    def read_revision(self) -> int:
        """Revision of the currently stored document, 0 if none."""
        document = self._read_document()
        if not document:
            return 0
        return int(document.get("revision", 0))

    def load(self) -> Manifest:
        """
        Load the manifest for this domain.

        Returns:
            The stored manifest, or an empty one if the document is absent or invalid
        """
        document = self._read_document()
        if document is None:
            return self.empty()
        return self.from_document(document)

    def from_document(self, document: Dict[str, Any]) -> Manifest:
        categories = []
        for entry in document.get("categories", []):
            try:
                categories.append(Category.from_dict(entry))
            except CategoryValidationError as e:
                logger.warning(f"Skipping corrupt category entry in {self.manifest_path}: {e}")

        items = []
        seen_ids = set()
        for entry in document.get(self.ITEMS_KEY, []):
            try:
                item = CatalogItem.from_dict(entry, default_kind=self.DEFAULT_KIND)
            except ItemValidationError as e:
                logger.warning(f"Skipping corrupt item entry in {self.manifest_path}: {e}")
                continue
            if item.id in seen_ids:
                logger.warning(f"Skipping duplicate item id {item.id} in {self.manifest_path}")
                continue
            seen_ids.add(item.id)
            items.append(item)

        pinned = []
        if self.HAS_PINS:
            pinned = [pin for pin in document.get("pinnedIds", []) if isinstance(pin, str)]

        return Manifest(
            items=items,
            categories=normalize_categories(categories),
            pinned=pinned,
            revision=int(document.get("revision", 0)),
        )

    def to_document(self, manifest: Manifest) -> Dict[str, Any]:
        document = {
            self.ITEMS_KEY: [item.to_dict() for item in manifest.items],
            "categories": [category.to_dict() for category in manifest.categories],
        }
        if self.HAS_PINS:
            document["pinnedIds"] = list(manifest.pinned)
        document["revision"] = manifest.revision
        return document

    def save(self, manifest: Manifest, expected_revision: Optional[int] = None) -> None:
        """
        Write the full manifest, overwriting whatever is stored.

        Args:
            manifest: Manifest to persist. Its revision is incremented on success.
            expected_revision: When given, the save only happens if the stored
                revision still equals this value.

        Raises:
            StaleManifestError: If expected_revision no longer matches the stored document
            StorageError: If the write fails
        """
        if expected_revision is not None:
            current = self.read_revision()
            if current != expected_revision:
                raise StaleManifestError(
                    f"Manifest {self.manifest_path} is at revision {current}, expected {expected_revision}"
                )

        next_revision = manifest.revision + 1
        document = self.to_document(manifest)
        document["revision"] = next_revision

        self.storage.save_text(self.manifest_path, json.dumps(document, indent=2, ensure_ascii=False))
        manifest.revision = next_revision


class GalleryManifestStore(ManifestStore):
    """Gallery catalog: ``{galleryItems, categories, pinnedIds, revision}``."""

    SCHEMA_NAME = "gallery-manifest"
    ITEMS_KEY = "galleryItems"
    DEFAULT_KIND = "image"
    HAS_PINS = True

    def __init__(self, storage: FileStorage, manifest_path: str = GALLERY_MANIFEST_NAME):
        super().__init__(storage, manifest_path)


class PromptManifestStore(ManifestStore):
    """
    Prompt catalog: ``{prompts, categories, revision}``.

    Each prompt's body lives in its own text file. The ``text`` value kept in
    the manifest is a cache, refreshed from that file on load and used only
    when the file is missing.
    """

    SCHEMA_NAME = "prompts-manifest"
    ITEMS_KEY = "prompts"
    DEFAULT_KIND = "prompt"

    def __init__(self, storage: FileStorage, manifest_path: str = PROMPTS_MANIFEST_NAME,
                 prompts_root: str = "prompts"):
        super().__init__(storage, manifest_path)
        self.prompts_root = prompts_root

    def from_document(self, document: Dict[str, Any]) -> Manifest:
        manifest = super().from_document(document)
        for item in manifest.items:
            if not item.paths:
                item.paths = [join_path(self.prompts_root, f"{item.id}.txt")]
            try:
                text = self.storage.read_text(item.paths[0])
            except (StorageError, UnicodeDecodeError) as e:
                logger.warning(f"Prompt file {item.paths[0]} is unreadable, using cached text: {e}")
                continue
            if text is not None:
                item.text = text
            else:
                logger.debug(f"Prompt file {item.paths[0]} missing, using cached text")
        return manifest


def sanitize_file_stem(name: str) -> str:
    """Replace every character outside [A-Za-z0-9] with an underscore."""
    return re.sub(r"[^a-zA-Z0-9]", "_", name)


class ReferenceCardStore:
    """
    Store for a flat reference sheet: ``[{category, items: [card...]}]``.

    Sections are flat named groups; no nesting is involved.
    """

    SCHEMA_NAME = "reference-sheet"

    def __init__(self, storage: FileStorage, manifest_path: str, image_root: str):
        self.storage = storage
        self.manifest_path = manifest_path
        self.image_root = image_root

    def default_document(self) -> List[Any]:
        return []

    def load(self) -> List[ReferenceSection]:
        raw = self.storage.read(self.manifest_path)
        if raw is None:
            return []

        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Error reading {self.manifest_path}, returning empty: {e}")
            return []

        result = validate_document(document, self.SCHEMA_NAME)
        if not result.is_valid:
            logger.error(f"Reference sheet {self.manifest_path} failed schema validation: {result.errors[:3]}")
            return []

        return [ReferenceSection.from_dict(section) for section in document]

    def save(self, sections: List[ReferenceSection]) -> None:
        document = [section.to_dict() for section in sections]
        self.storage.save_text(self.manifest_path, json.dumps(document, indent=2, ensure_ascii=False))

    def find_card(self, card_id: str) -> Optional[ReferenceCard]:
        for section in self.load():
            for card in section.items:
                if card.id == card_id:
                    return card
        return None

    def update_card(self, card_id: str, updates: Dict[str, Any]) -> List[ReferenceSection]:
        """
        Update a card's fields and store any new images.

        Args:
            card_id: Card to update
            updates: Any of name, description, example, keywords and
                imageUrls. Image entries may be existing paths or raw content
                (bytes, RawContent, data URL); raw content is written to
                ``<image_root>/<section>/<card name>_<timestamp>_<index>.<ext>``.

        Returns:
            All sections after the update. Nothing is saved if the card does not exist.
        """
        sections = self.load()

        owner = None
        card = None
        for section in sections:
            for candidate in section.items:
                if candidate.id == card_id:
                    owner, card = section, candidate
                    break
            if card is not None:
                break

        if card is None:
            logger.warning(f"Could not find reference card {card_id!r} in {self.manifest_path}")
            return sections

        for key in ("name", "description", "example"):
            if isinstance(updates.get(key), str):
                setattr(card, key, updates[key])
        if isinstance(updates.get("keywords"), list):
            card.keywords = [k for k in updates["keywords"] if isinstance(k, str)]

        images = updates.get("imageUrls", updates.get("image_paths"))
        if images is not None:
            card.image_paths = self._store_images(card, owner.category or UNCATEGORIZED_SECTION, images)

        self.save(sections)
        logger.info(f"Updated reference card {card_id} in {self.manifest_path}")
        return sections

    def _store_images(self, card: ReferenceCard, section_name: str,
                      images: List[Union[str, bytes, RawContent]]) -> List[str]:
        stored = []
        timestamp = now_ms()
        for index, image in enumerate(images):
            content = as_raw_content(image, default_mime="image/png")
            if content is None:
                stored.append(image)
                continue
            file_name = f"{sanitize_file_stem(card.name)}_{timestamp}_{index}.{content.extension}"
            stored.append(self.storage.save(join_path(self.image_root, section_name, file_name), content.data))
        return stored

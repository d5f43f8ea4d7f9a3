"""
Catalog Item CRUD

The façade the application talks to. Every mutating call loads the manifest,
applies the change (tree mutation, file storage, relocation) and saves the
whole manifest back. No lock is held between load and save; two overlapping
calls each work on their own snapshot and the later save wins, unless the
catalog is created with ``compare_and_swap=True``.

Key Features:
- Add/update/delete items with raw content stored under the category folder
- Category management with relocation of owned files on rename or delete
- Search, filtering and sorting of items
- Gallery pins and NSFW flag inheritance
- Prompt text kept in standalone files
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from .category import Category, CategoryValidationError
from .category_tree import (
    REORDER_DIRECTIONS,
    CategoryNode,
    build_tree,
    delete_category as tree_delete_category,
    drag_reorder,
    get_category_path,
    insert_category,
    is_descendant,
    move_category as tree_move_category,
    rename_category,
    set_category_flags,
    sort_categories as tree_sort_categories,
    reorder_category as tree_reorder_category,
)
from .file_storage import FileStorage, join_path
from .item import (
    DEFAULT_MIME_TYPES,
    ITEM_KINDS,
    CatalogItem,
    ItemValidationError,
    RawContent,
    as_raw_content,
    generate_id,
    is_external_reference,
    now_ms,
)
from .manifest import GalleryManifestStore, Manifest, ManifestStore, PromptManifestStore
from .relocation import AssetRelocator

logger = logging.getLogger(__name__)

UNCATEGORIZED = "uncategorized"
SORT_OPTIONS = ("newest", "oldest", "title")

ContentValue = Union[str, bytes, RawContent]


class Catalog:
    """
    CRUD over one nested-category domain.

    Args:
        storage: Storage collaborator
        store: Manifest store for the domain
        domain_root: Fixed root folder of the domain's files (e.g. "gallery")
        compare_and_swap: Reject saves when the stored manifest changed since it was loaded
    """

    ITEM_PREFIX = "item"
    CATEGORY_PREFIX = "cat"
    PROPAGATE_NSFW = False

    def __init__(self, storage: FileStorage, store: ManifestStore, domain_root: str,
                 compare_and_swap: bool = False):
        self.storage = storage
        self.store = store
        self.domain_root = domain_root
        self.compare_and_swap = compare_and_swap
        self.relocator = AssetRelocator(storage, domain_root)

    def load(self) -> Manifest:
        return self.store.load()

    def _save(self, manifest: Manifest) -> None:
        expected = manifest.revision if self.compare_and_swap else None
        self.store.save(manifest, expected_revision=expected)

    # Items

    def _store_contents(self, item_id: str, kind: str, contents: Iterable[ContentValue],
                        category_name: Optional[str], stamp: Optional[int] = None) -> List[str]:
        """Write raw content values to storage; path values are kept as given."""
        paths = []
        for index, value in enumerate(contents):
            content = as_raw_content(value, DEFAULT_MIME_TYPES.get(kind, "application/octet-stream"))
            if content is None:
                paths.append(value)
                continue
            stem = f"{item_id}_{stamp}_{index}" if stamp is not None else f"{item_id}_{index}"
            target = join_path(self.domain_root, category_name, f"{stem}.{content.extension}")
            paths.append(self.storage.save(target, content.data))
        return paths

    def _prepare_new_item(self, item: CatalogItem, category: Optional[Category]) -> None:
        if self.PROPAGATE_NSFW:
            item.is_nsfw = bool(category.is_nsfw) if category else item.is_nsfw

    def add_item(self, kind: str, contents: Union[ContentValue, List[ContentValue]],
                 category_id: Optional[str] = None, **metadata) -> CatalogItem:
        """
        Create an item and store its raw content.

        Args:
            kind: "image", "video" or "prompt"
            contents: Existing storage paths and/or raw content (bytes,
                RawContent or data URLs). Raw content is written to
                ``<domain_root>/<category name>/<item id>_<index>.<ext>``.
            category_id: Owning category; unknown ids leave the item uncategorized
            **metadata: title, notes, tags, is_nsfw and domain-specific fields

        Returns:
            The new item, already persisted at the front of the item list

        Raises:
            ItemValidationError: If kind is unknown, no content is given or content cannot be decoded
            StorageError: If writing content or the manifest fails
        """
        if kind not in ITEM_KINDS:
            raise ItemValidationError(f"Unknown item kind: {kind!r}")
        if isinstance(contents, (str, bytes, bytearray, RawContent)):
            contents = [contents]
        if not contents:
            raise ItemValidationError("An item needs at least one content value")

        manifest = self.load()
        category = manifest.find_category(category_id)
        if category_id and category is None:
            logger.warning(f"Unknown category {category_id} for new item, storing as uncategorized")

        item_id = generate_id(self.ITEM_PREFIX)
        paths = self._store_contents(item_id, kind, contents, category.name if category else None)

        for key in ("id", "created_at", "createdAt", "paths", "kind"):
            metadata.pop(key, None)

        item = CatalogItem(
            id=item_id,
            created_at=now_ms(),
            category_id=category.id if category else None,
            paths=paths,
            kind=kind,
            **metadata,
        )
        self._prepare_new_item(item, category)

        manifest.items.insert(0, item)
        self._save(manifest)
        logger.info(f"Added {kind} item {item.id} with {len(paths)} file(s)")
        return item

    def _apply_domain_updates(self, manifest: Manifest, item: CatalogItem, updates: Dict[str, Any]) -> None:
        pass

    def update_item(self, item_id: str, updates: Dict[str, Any]) -> Optional[CatalogItem]:
        """
        Apply a partial update to an item.

        A category change relocates the item's files. A supplied ``paths`` list
        replaces the current one: raw content in it is stored, and paths
        missing from it are deleted from storage. ``id`` and ``created_at``
        cannot change.

        Args:
            item_id: Item to update
            updates: Attribute names mapped to new values

        Returns:
            The updated item, or None if no item has that id

        Raises:
            ItemValidationError: If supplied content cannot be decoded
            StorageError: If a storage write or delete fails; the manifest is then not saved
        """
        manifest = self.load()
        item = manifest.find_item(item_id)
        if item is None:
            logger.warning(f"Item with id {item_id} not found for update")
            return None

        updates = dict(updates)
        updates.pop("id", None)
        updates.pop("created_at", None)

        category_changed = False
        if "category_id" in updates:
            requested = updates.pop("category_id") or None
            if requested and manifest.find_category(requested) is None:
                logger.warning(f"Unknown category {requested} for item {item_id}, treating as uncategorized")
                requested = None
            category_changed = requested != item.category_id
            item.category_id = requested

        category_name = manifest.category_name(item.category_id)

        if "paths" in updates:
            supplied = updates.pop("paths")
            if not isinstance(supplied, list):
                raise ItemValidationError("Field 'paths' must be a list")
            old_paths = list(item.paths)
            new_paths = self._store_contents(item.id, item.kind, supplied, category_name, stamp=now_ms())
            for old_path in old_paths:
                if old_path not in new_paths and not is_external_reference(old_path):
                    self.storage.delete(old_path)
            item.paths = new_paths

        if category_changed:
            self.relocator.relocate_item(item, category_name)

        self._apply_domain_updates(manifest, item, updates)
        item.apply_updates(updates)

        self._save(manifest)
        logger.info(f"Updated item {item_id}")
        return item

    def delete_item(self, item_id: str) -> bool:
        """
        Delete an item, its files and its pin.

        Returns:
            True if the item existed
        """
        manifest = self.load()
        item = manifest.find_item(item_id)
        if item is None:
            logger.warning(f"Item with id {item_id} not found for deletion")
            return False

        for path in item.paths:
            if not is_external_reference(path):
                self.storage.delete(path)

        manifest.items = [i for i in manifest.items if i.id != item_id]
        manifest.pinned = [pin for pin in manifest.pinned if pin != item_id]
        self._save(manifest)
        logger.info(f"Deleted item {item_id}")
        return True

    def get_item(self, item_id: str) -> Optional[CatalogItem]:
        return self.load().find_item(item_id)

    def _visible_items(self, manifest: Manifest, items: List[CatalogItem], category: Optional[str],
                       include_nsfw: Optional[bool]) -> List[CatalogItem]:
        return items

    def list_items(self, category: Optional[str] = None, query: Optional[str] = None,
                   kind: Optional[str] = None, sort: str = "newest",
                   include_nsfw: Optional[bool] = None,
                   include_subcategories: bool = False) -> List[CatalogItem]:
        """
        Search and sort items.

        Args:
            category: None for all items, "uncategorized", or a category id
            query: Case-insensitive text matched against title, notes, tags and prompt text
            kind: Restrict to one item kind
            sort: "newest", "oldest" or "title"
            include_nsfw: Show NSFW items in the "all" view (gallery only)
            include_subcategories: With a category id, also include items of its descendants

        Returns:
            Matching items
        """
        manifest = self.load()
        items = list(manifest.items)

        if category == UNCATEGORIZED:
            items = [i for i in items if manifest.find_category(i.category_id) is None]
        elif category:
            owners = {category}
            if include_subcategories:
                owners.update(c.id for c in manifest.categories
                              if is_descendant(manifest.categories, c.id, category))
            items = [i for i in items if i.category_id in owners]

        if kind:
            items = [i for i in items if i.kind == kind]
        if query:
            items = [i for i in items if i.matches(query)]

        if sort == "oldest":
            items.sort(key=lambda i: i.created_at)
        elif sort == "title":
            items.sort(key=lambda i: (i.title.casefold(), i.title))
        else:
            items.sort(key=lambda i: i.created_at, reverse=True)

        return self._visible_items(manifest, items, category, include_nsfw)

    # Categories

    def list_categories(self) -> List[Category]:
        return self.load().categories

    def category_path(self, category_id: str) -> List[Category]:
        return get_category_path(self.load().categories, category_id)

    def add_category(self, name: str, parent_id: Optional[str] = None, is_nsfw: bool = False) -> Optional[Category]:
        """
        Create a category at the end of its sibling group.

        Returns:
            The new category, or None if the name is invalid or the parent does not exist
        """
        manifest = self.load()
        categories, created = insert_category(
            manifest.categories, name, parent_id=parent_id, is_nsfw=is_nsfw,
            category_id=generate_id(self.CATEGORY_PREFIX),
        )
        if created is None:
            logger.warning(f"Rejected new category {name!r} under parent {parent_id}")
            return None

        manifest.categories = categories
        self._save(manifest)
        logger.info(f"Added category '{created.name}' ({created.id})")
        return created

    def update_category(self, category_id: str, name: Optional[str] = None,
                        is_nsfw: Optional[bool] = None) -> Optional[Category]:
        """
        Rename a category and/or change its NSFW flag.

        Renaming moves the files of every item the category owns into the
        folder of the new name. In the gallery the NSFW flag is copied to the
        owned items.

        Returns:
            The updated category, or None if no category has that id

        Raises:
            CategoryValidationError: If the new name is not a valid folder name
        """
        manifest = self.load()
        category = manifest.find_category(category_id)
        if category is None:
            logger.warning(f"Category with id {category_id} not found for update")
            return None

        categories = manifest.categories
        renamed = False
        if name is not None and name.strip() != category.name:
            categories = rename_category(categories, category_id, name)
            if next(c for c in categories if c.id == category_id).name == category.name:
                raise CategoryValidationError(f"Invalid category name: {name!r}")
            renamed = True

        if is_nsfw is not None:
            categories = set_category_flags(categories, category_id, is_nsfw)

        manifest.categories = categories

        if renamed:
            self.relocator.relocate_category_items(manifest, category_id)

        if self.PROPAGATE_NSFW and is_nsfw is not None:
            for item in manifest.items_in_category(category_id):
                item.is_nsfw = bool(is_nsfw)

        self._save(manifest)
        updated = manifest.find_category(category_id)
        logger.info(f"Updated category {category_id} ('{updated.name}')")
        return updated

    def reparent_category(self, category_id: str, parent_id: Optional[str]) -> List[Category]:
        """Move a category to the end of another parent's children (None for root)."""
        return self.place_category(category_id, parent_id)

    def place_category(self, category_id: str, parent_id: Optional[str],
                       before_id: Optional[str] = None) -> List[Category]:
        """
        Move a category under a parent, before a given sibling or at the end.

        Moves into the category's own subtree are ignored.
        """
        manifest = self.load()
        manifest.categories = tree_move_category(manifest.categories, category_id, parent_id, before_id)
        self.relocator.relocate_category_items(manifest, category_id)
        self._save(manifest)
        return manifest.categories

    def reorder_category(self, category_id: str, direction: str) -> List[Category]:
        """
        Move a category up, down, to the top or to the bottom of its sibling group.

        Raises:
            CategoryValidationError: If direction is not one of up/down/top/bottom
        """
        if direction not in REORDER_DIRECTIONS:
            raise CategoryValidationError(f"Unknown reorder direction: {direction!r}")
        manifest = self.load()
        manifest.categories = tree_reorder_category(manifest.categories, category_id, direction)
        self._save(manifest)
        return manifest.categories

    def move_category(self, source_id: str, target_id: str) -> List[Category]:
        """Drop one category onto another (drag-and-drop)."""
        manifest = self.load()
        manifest.categories = drag_reorder(manifest.categories, source_id, target_id)
        self._save(manifest)
        return manifest.categories

    def sort_categories(self) -> List[Category]:
        manifest = self.load()
        manifest.categories = tree_sort_categories(manifest.categories)
        self._save(manifest)
        return manifest.categories

    def delete_category(self, category_id: str) -> bool:
        """
        Delete a category.

        Items it owned become uncategorized and their files move to the domain
        root. Its sub-categories move up to its parent.

        Returns:
            True if the category existed
        """
        manifest = self.load()
        categories, removed = tree_delete_category(manifest.categories, category_id)
        if removed is None:
            logger.warning(f"Category with id {category_id} not found for deletion")
            return False

        owned = manifest.items_in_category(category_id)
        manifest.categories = categories
        for item in owned:
            item.category_id = None
            if self.PROPAGATE_NSFW:
                item.is_nsfw = False
            self.relocator.relocate_item(item, None)

        self._save(manifest)
        logger.info(f"Deleted category '{removed.name}' and detached {len(owned)} item(s)")
        return True

    def category_tree(self, query: Optional[str] = None) -> List[CategoryNode]:
        manifest = self.load()
        return build_tree(manifest.categories, manifest.item_counts(), query)


class GalleryCatalog(Catalog):
    """Image and video groups with pins and NSFW gating."""

    ITEM_PREFIX = "item"
    CATEGORY_PREFIX = "cat"
    PROPAGATE_NSFW = True

    def __init__(self, storage: FileStorage, store: Optional[GalleryManifestStore] = None,
                 domain_root: str = "gallery", compare_and_swap: bool = False):
        super().__init__(storage, store or GalleryManifestStore(storage), domain_root, compare_and_swap)

    def add_item(self, kind: str, contents: Union[ContentValue, List[ContentValue]],
                 category_id: Optional[str] = None, **metadata) -> CatalogItem:
        if kind == "prompt":
            raise ItemValidationError("Gallery items must be images or videos")
        if not metadata.get("title"):
            count = 1 if isinstance(contents, (str, bytes, bytearray, RawContent)) else len(contents)
            metadata["title"] = f"Untitled Group ({count} {kind}{'s' if count > 1 else ''})"
        return super().add_item(kind, contents, category_id, **metadata)

    def _apply_domain_updates(self, manifest: Manifest, item: CatalogItem, updates: Dict[str, Any]) -> None:
        category = manifest.find_category(item.category_id)
        if category is not None:
            updates.pop("is_nsfw", None)
            item.is_nsfw = category.is_nsfw

    def _visible_items(self, manifest: Manifest, items: List[CatalogItem], category: Optional[str],
                       include_nsfw: Optional[bool]) -> List[CatalogItem]:
        if category is not None:
            return items
        if not include_nsfw:
            items = [i for i in items if not i.is_nsfw]
        pinned = [i for pin in manifest.pinned for i in items if i.id == pin]
        pinned_ids = {i.id for i in pinned}
        return pinned + [i for i in items if i.id not in pinned_ids]

    def pinned_ids(self) -> List[str]:
        return list(self.load().pinned)

    def set_pinned(self, item_ids: List[str]) -> List[str]:
        """Replace the pin list. Unknown and duplicate ids are dropped."""
        manifest = self.load()
        known = {item.id for item in manifest.items}
        pinned = []
        for item_id in item_ids:
            if item_id in known and item_id not in pinned:
                pinned.append(item_id)
        manifest.pinned = pinned
        self._save(manifest)
        return pinned

    def toggle_pin(self, item_id: str) -> bool:
        """
        Pin or unpin an item.

        Returns:
            The item's new pinned state. False for unknown items.
        """
        manifest = self.load()
        if manifest.find_item(item_id) is None:
            logger.warning(f"Cannot pin unknown item {item_id}")
            return False

        if item_id in manifest.pinned:
            manifest.pinned = [pin for pin in manifest.pinned if pin != item_id]
            pinned = False
        else:
            manifest.pinned.insert(0, item_id)
            pinned = True

        self._save(manifest)
        return pinned


def _default_title(text: str) -> str:
    first_line = text.strip().splitlines()[0] if text.strip() else ""
    return first_line[:60] or "Untitled Prompt"


class PromptCatalog(Catalog):
    """Text prompts, each stored as ``<prompts_root>/<category name>/<id>.txt``."""

    ITEM_PREFIX = "prompt"
    CATEGORY_PREFIX = "pcat"

    def __init__(self, storage: FileStorage, store: Optional[PromptManifestStore] = None,
                 domain_root: str = "prompts", compare_and_swap: bool = False):
        super().__init__(storage, store or PromptManifestStore(storage, prompts_root=domain_root),
                         domain_root, compare_and_swap)

    def add_item(self, kind: str, contents: Union[ContentValue, List[ContentValue]],
                 category_id: Optional[str] = None, **metadata) -> CatalogItem:
        """
        Add a prompt from raw text content or an existing text file.

        Raises:
            ItemValidationError: If kind is not "prompt", more than one content
                value is given, or the text cannot be read
        """
        if kind != "prompt":
            raise ItemValidationError("Prompt catalog items must be prompts")
        values = [contents] if isinstance(contents, (str, bytes, bytearray, RawContent)) else list(contents)
        if len(values) != 1:
            raise ItemValidationError("A prompt has exactly one text file")

        content = as_raw_content(values[0], DEFAULT_MIME_TYPES["prompt"])
        if content is None:
            try:
                text = self.storage.read_text(values[0])
            except UnicodeDecodeError as e:
                raise ItemValidationError(f"Prompt text at {values[0]} is not valid UTF-8: {e}")
            if text is None:
                raise ItemValidationError(f"No text found at {values[0]}")
        else:
            try:
                text = content.data.decode("utf-8")
            except UnicodeDecodeError as e:
                raise ItemValidationError(f"Prompt text is not valid UTF-8: {e}")

        return self.add_prompt(text, category_id=category_id, **metadata)

    def add_prompt(self, text: str, title: Optional[str] = None, category_id: Optional[str] = None,
                   tags: Optional[List[str]] = None, **metadata) -> CatalogItem:
        entry = dict(metadata, text=text, title=title, category_id=category_id, tags=tags)
        return self.add_prompts([entry])[0]

    def add_prompts(self, batch: List[Dict[str, Any]]) -> List[CatalogItem]:
        """
        Add many prompts with a single manifest save.

        Args:
            batch: Entries with "text" (required) and optional title,
                category_id, tags, notes and other fields

        Returns:
            The new prompts, in batch order, placed at the front of the catalog

        Raises:
            ItemValidationError: If an entry has no text
        """
        manifest = self.load()
        created = []

        for entry in batch:
            entry = dict(entry)
            text = entry.pop("text", None)
            if not isinstance(text, str):
                raise ItemValidationError("Each prompt needs a 'text' string")

            wire_category_id = entry.pop("categoryId", None)
            category_id = entry.pop("category_id", None) or wire_category_id
            category = manifest.find_category(category_id)
            if category_id and category is None:
                logger.warning(f"Unknown category {category_id} for new prompt, storing as uncategorized")

            for key in ("id", "created_at", "createdAt", "paths", "kind"):
                entry.pop(key, None)
            title = entry.pop("title", None) or _default_title(text)
            tags = entry.pop("tags", None) or []

            prompt_id = generate_id(self.ITEM_PREFIX)
            path = self.storage.save_text(
                join_path(self.domain_root, category.name if category else None, f"{prompt_id}.txt"), text
            )
            created.append(CatalogItem(
                id=prompt_id,
                created_at=now_ms(),
                category_id=category.id if category else None,
                paths=[path],
                kind="prompt",
                title=title,
                tags=tags,
                text=text,
                **entry,
            ))

        manifest.items[0:0] = created
        self._save(manifest)
        logger.info(f"Added {len(created)} prompt(s)")
        return created

    def _apply_domain_updates(self, manifest: Manifest, item: CatalogItem, updates: Dict[str, Any]) -> None:
        if "text" not in updates:
            return
        text = updates.pop("text")
        if not isinstance(text, str):
            raise ItemValidationError("Prompt text must be a string")
        path = item.paths[0] if item.paths else join_path(
            self.domain_root, manifest.category_name(item.category_id), f"{item.id}.txt"
        )
        saved = self.storage.save_text(path, text)
        item.paths = [saved] + item.paths[1:]
        item.text = text

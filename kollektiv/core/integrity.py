"""
Maintenance Operations for Kollektiv

Repairs and compacts the stored documents and re-synchronizes catalogs with
the files actually present in storage.

Key Features:
- Rewriting missing or unparsable documents with default content
- Gallery rebuild: files moved to their canonical folder, dead paths pruned
- Prompt rebuild: dead prompts pruned, orphan text files recovered
- Compact rewrite of every parsable document
- Optional progress callback for long-running passes
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from .file_storage import FileStorage, StorageError, basename, normalize_path
from .item import CatalogItem, generate_id, is_external_reference, now_ms
from .manifest import ManifestStore
from .relocation import AssetRelocator

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, Optional[float]], None]

RECOVERED_TAG = "recovered"


@dataclass
class RebuildReport:
    """Summary of a rebuild pass."""
    relocated: int = 0
    pruned_paths: int = 0
    removed_items: List[str] = field(default_factory=list)
    recovered_items: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relocated": self.relocated,
            "prunedPaths": self.pruned_paths,
            "removedItems": list(self.removed_items),
            "recoveredItems": list(self.recovered_items),
        }


def _progress(on_progress: Optional[ProgressCallback], message: str, progress: Optional[float] = None) -> None:
    logger.info(message)
    if on_progress is not None:
        on_progress(message, progress)


def verify_and_repair(storage: FileStorage, documents: Dict[str, Any],
                      on_progress: Optional[ProgressCallback] = None) -> bool:
    """
    Make sure every known document exists and parses as JSON.

    Args:
        storage: Storage collaborator
        documents: Document path mapped to the default content written when
            the document is missing or unparsable
        on_progress: Optional callback receiving (message, fraction done)

    Returns:
        True if every document is healthy or was repaired
    """
    _progress(on_progress, "Verifying application files...", 0.0)
    success = True
    total = len(documents) or 1

    for step, (path, default_content) in enumerate(documents.items(), start=1):
        _progress(on_progress, f"Checking: {path}", step / total)

        raw = storage.read(path)
        needs_repair = raw is None
        if raw is not None:
            try:
                json.loads(raw.decode("utf-8"))
            except (UnicodeDecodeError, ValueError):
                needs_repair = True

        if needs_repair:
            try:
                storage.save_text(path, json.dumps(default_content, indent=2, ensure_ascii=False))
                logger.warning(f"Rewrote {path} with default content")
            except StorageError as e:
                logger.error(f"Failed to repair {path}: {e}")
                success = False

    _progress(on_progress, "Registry healthy." if success else "Registry repair incomplete.", 1.0)
    return success


def rebuild_gallery(storage: FileStorage, store: ManifestStore, gallery_root: str,
                    on_progress: Optional[ProgressCallback] = None) -> RebuildReport:
    """
    Re-synchronize the gallery manifest with storage.

    Every file is moved to the folder of its item's category, paths whose
    content is gone are dropped, and items left without any path are removed
    (together with their pins).

    Returns:
        RebuildReport. Empty if no gallery manifest exists.
    """
    report = RebuildReport()
    if storage.read(store.manifest_path) is None:
        _progress(on_progress, "No gallery manifest to rebuild.")
        return report

    _progress(on_progress, "Synchronizing artifact paths...", 0.0)
    manifest = store.load()
    relocator = AssetRelocator(storage, gallery_root)
    kept_items = []
    total = len(manifest.items) or 1

    for index, item in enumerate(manifest.items, start=1):
        category_name = manifest.category_name(item.category_id)
        relocation = relocator.relocate_item(item, category_name)
        report.relocated += len(relocation.moved)

        # Canonical paths are not read during relocation, so check them here
        missing = set(relocation.missing)
        missing.update(path for path in relocation.unchanged
                       if not is_external_reference(path) and storage.read(path) is None)
        if missing:
            item.paths = [path for path in item.paths if path not in missing]
            report.pruned_paths += len(missing)

        if item.paths:
            kept_items.append(item)
        else:
            report.removed_items.append(item.id)
            logger.warning(f"Removing gallery item {item.id}: none of its files exist")

        _progress(on_progress, f"Checked item {item.id}", index / total)

    manifest.items = kept_items
    removed = set(report.removed_items)
    manifest.pinned = [pin for pin in manifest.pinned if pin not in removed]
    store.save(manifest)

    _progress(on_progress, "Gallery structure optimized.", 1.0)
    return report


def _walk_files(storage: FileStorage, dir_path: str) -> Iterable[str]:
    for entry in storage.list(dir_path):
        if entry.kind == "directory":
            yield from _walk_files(storage, entry.path)
        else:
            yield entry.path


def rebuild_prompts(storage: FileStorage, store: ManifestStore, prompts_root: str,
                    on_progress: Optional[ProgressCallback] = None) -> RebuildReport:
    """
    Re-synchronize the prompt manifest with the prompt text files.

    Prompts whose text file is gone are removed. ``.txt`` files under the
    prompts root that no prompt references are added back as prompts titled
    ``Recovered: <file name>`` and tagged ``recovered``. A recovered file
    inside a folder named like an existing category is assigned to it.

    Returns:
        RebuildReport. Empty if no prompt manifest exists.
    """
    report = RebuildReport()
    if storage.read(store.manifest_path) is None:
        _progress(on_progress, "No prompt manifest to rebuild.")
        return report

    _progress(on_progress, "Indexing prompt library...", 0.0)
    manifest = store.load()

    kept = []
    for item in manifest.items:
        if item.paths and storage.read(item.paths[0]) is not None:
            kept.append(item)
        else:
            report.removed_items.append(item.id)
            logger.warning(f"Removing prompt {item.id}: text file is missing")

    _progress(on_progress, "Scanning for unregistered prompt files...", 0.5)
    known_paths = set()
    for item in kept:
        for path in item.paths:
            try:
                known_paths.add(normalize_path(path))
            except StorageError:
                continue
    known_ids = {item.id for item in kept}
    categories_by_name = {}
    for category in manifest.categories:
        categories_by_name.setdefault(category.name, category)

    root = normalize_path(prompts_root)
    recovered = []
    for path in _walk_files(storage, root):
        if not path.endswith(".txt") or path in known_paths:
            continue
        try:
            text = storage.read_text(path)
        except UnicodeDecodeError as e:
            logger.warning(f"Skipping prompt file {path}: not valid UTF-8 ({e})")
            continue
        if text is None:
            continue

        name = basename(path)
        prompt_id = name[:-len(".txt")]
        if not prompt_id or prompt_id in known_ids:
            prompt_id = generate_id("prompt")
        known_ids.add(prompt_id)

        relative_segments = path[len(root) + 1:].split("/")
        folder = relative_segments[-2] if len(relative_segments) > 1 else None
        category = categories_by_name.get(folder) if folder else None

        recovered.append(CatalogItem(
            id=prompt_id,
            created_at=now_ms(),
            category_id=category.id if category else None,
            paths=[path],
            kind="prompt",
            title=f"Recovered: {name}",
            tags=[RECOVERED_TAG],
            text=text,
        ))
        report.recovered_items.append(prompt_id)

    manifest.items = kept + recovered
    store.save(manifest)

    _progress(on_progress, "Prompt library synced.", 1.0)
    return report


def optimize_manifests(storage: FileStorage, names: Iterable[str],
                       on_progress: Optional[ProgressCallback] = None) -> int:
    """
    Rewrite each parsable document without indentation or extra whitespace.

    Missing and unparsable documents are left untouched.

    Returns:
        Number of documents rewritten
    """
    _progress(on_progress, "Compressing manifests...", 0.0)
    names = list(names)
    rewritten = 0

    for index, name in enumerate(names, start=1):
        raw = storage.read(name)
        if raw is None:
            continue
        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Skipping unparsable document {name}: {e}")
            continue
        storage.save_text(name, json.dumps(document, separators=(",", ":"), ensure_ascii=False))
        rewritten += 1
        _progress(on_progress, f"Optimized {name}", index / (len(names) or 1))

    _progress(on_progress, "Optimization complete.", 1.0)
    return rewritten

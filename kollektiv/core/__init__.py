"""
Core Catalog Components for Kollektiv

This package contains the catalog and category-tree storage engine:

- file_storage: Path-addressable storage over a single root directory
- category / item: Data structures persisted in the manifests
- validation: Cycle detection, order density and document schema checks
- category_tree: Pure operations over the flat category list
- manifest: One JSON document per domain, loaded and saved as a whole
- relocation: Keeps file locations in step with category names
- catalog: CRUD façade combining the above
- integrity: Repair, rebuild and compaction passes
"""

from .file_storage import (
    FileStorage,
    LocalDirectoryStorage,
    StorageEntry,
    StorageError,
    normalize_path,
    join_path,
)

from .category import (
    Category,
    CategoryError,
    CategoryValidationError,
    build_category_lookup,
)

from .item import (
    CatalogItem,
    CatalogError,
    ItemValidationError,
    RawContent,
    ReferenceCard,
    ReferenceSection,
    decode_data_url,
    encode_data_url,
    generate_id,
)

from .validation import (
    ValidationResult,
    detect_category_cycles,
    validate_category_structure,
    validate_category_collection,
    validate_item_structure,
    validate_document,
)

from .category_tree import (
    CategoryNode,
    insert_category,
    rename_category,
    set_category_flags,
    reorder_category,
    move_category,
    drag_reorder,
    sort_categories,
    delete_category,
    is_descendant,
    normalize_categories,
    siblings_of,
    get_category_path,
    build_tree,
    check_order_density,
)

from .manifest import (
    Manifest,
    ManifestStore,
    GalleryManifestStore,
    PromptManifestStore,
    ReferenceCardStore,
    StaleManifestError,
)

from .relocation import (
    AssetRelocator,
    RelocationReport,
    canonical_path,
)

from .catalog import (
    Catalog,
    GalleryCatalog,
    PromptCatalog,
    UNCATEGORIZED,
)

from .integrity import (
    RebuildReport,
    verify_and_repair,
    rebuild_gallery,
    rebuild_prompts,
    optimize_manifests,
)

__all__ = [
    # Storage
    "FileStorage",
    "LocalDirectoryStorage",
    "StorageEntry",
    "StorageError",
    "normalize_path",
    "join_path",

    # Data structures
    "Category",
    "CatalogItem",
    "RawContent",
    "ReferenceCard",
    "ReferenceSection",
    "decode_data_url",
    "encode_data_url",
    "generate_id",
    "build_category_lookup",

    # Exceptions
    "CategoryError",
    "CategoryValidationError",
    "CatalogError",
    "ItemValidationError",
    "StaleManifestError",

    # Validation
    "ValidationResult",
    "detect_category_cycles",
    "validate_category_structure",
    "validate_category_collection",
    "validate_item_structure",
    "validate_document",

    # Category tree
    "CategoryNode",
    "insert_category",
    "rename_category",
    "set_category_flags",
    "reorder_category",
    "move_category",
    "drag_reorder",
    "sort_categories",
    "delete_category",
    "is_descendant",
    "normalize_categories",
    "siblings_of",
    "get_category_path",
    "build_tree",
    "check_order_density",

    # Manifests
    "Manifest",
    "ManifestStore",
    "GalleryManifestStore",
    "PromptManifestStore",
    "ReferenceCardStore",

    # Relocation
    "AssetRelocator",
    "RelocationReport",
    "canonical_path",

    # Catalogs
    "Catalog",
    "GalleryCatalog",
    "PromptCatalog",
    "UNCATEGORIZED",

    # Maintenance
    "RebuildReport",
    "verify_and_repair",
    "rebuild_gallery",
    "rebuild_prompts",
    "optimize_manifests",
]

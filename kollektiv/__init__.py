"""
Kollektiv - catalog and category-tree storage engine

Stores gallery artifacts, prompts and reference sheets under one user-granted
root directory. Each domain keeps a JSON manifest of its items and of a
nested category tree, and files live in folders named after their category.

Package layout:
- core: Storage, data structures, tree operations, manifests and catalogs
- config: JSON config file validated with jsonschema
- api_routes: aiohttp REST API
"""

import logging

from .config import CatalogConfig, ConfigError, load_config, save_config
from .core import (
    Category,
    CatalogItem,
    Catalog,
    GalleryCatalog,
    PromptCatalog,
    LocalDirectoryStorage,
    StorageError,
)

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "__version__",
    "CatalogConfig",
    "ConfigError",
    "load_config",
    "save_config",
    "Category",
    "CatalogItem",
    "Catalog",
    "GalleryCatalog",
    "PromptCatalog",
    "LocalDirectoryStorage",
    "StorageError",
]

"""
API Routes for Kollektiv

REST endpoints over the gallery and prompt catalogs, the reference sheets and
the maintenance passes. Every response uses the same JSON envelope:
``{"success", "message", "data", "errors"}``.
"""

import json
import logging
from typing import Any, Dict, Optional

from aiohttp import web

from .config import CatalogConfig
from .core.catalog import SORT_OPTIONS, Catalog, GalleryCatalog, PromptCatalog
from .core.category import CategoryError
from .core.category_tree import REORDER_DIRECTIONS
from .core.file_storage import FileStorage, StorageError
from .core.integrity import optimize_manifests, rebuild_gallery, rebuild_prompts, verify_and_repair
from .core.item import CatalogError, fields_from_wire
from .core.manifest import ReferenceCardStore, StaleManifestError

logger = logging.getLogger(__name__)

MAINTENANCE_ACTIONS = ("verify", "rebuild-gallery", "rebuild-prompts", "optimize")
TRUE_VALUES = ("1", "true", "yes", "on")


class CatalogRegistry:
    """
    Storage, catalogs and reference stores built from one configuration.

    Args:
        config: Loaded configuration
        storage: Storage to use instead of the configured root directory
    """

    def __init__(self, config: CatalogConfig, storage: Optional[FileStorage] = None):
        self.config = config
        self.storage = storage or config.create_storage()
        self.gallery = GalleryCatalog(
            self.storage, config.gallery_store(self.storage), config.gallery_root, config.compare_and_swap
        )
        self.prompts = PromptCatalog(
            self.storage, config.prompt_store(self.storage), config.prompts_root, config.compare_and_swap
        )

    def catalog(self, domain: str) -> Optional[Catalog]:
        return {"gallery": self.gallery, "prompts": self.prompts}.get(domain)

    def reference_store(self, sheet: str) -> Optional[ReferenceCardStore]:
        if sheet not in self.config.reference_sheets:
            return None
        return self.config.reference_store(self.storage, sheet)


REGISTRY_KEY = web.AppKey("kollektiv_registry", CatalogRegistry)


def validate_request_json(request_data: Any) -> tuple[bool, Optional[str], Optional[list[str]]]:
    """
    Validate basic request JSON structure.

    Returns:
        Tuple of (is_valid, error_message, error_details)
    """
    if not isinstance(request_data, dict):
        return False, "Request body must be a JSON object", ["Invalid data format"]

    return True, None, None


def validate_name_field(data: Dict[str, Any], field_name: str = "name") -> tuple[bool, Optional[str], Optional[list[str]]]:
    if field_name not in data or not data[field_name]:
        return False, f"Missing required field: {field_name}", [f"Field '{field_name}' is required"]

    name = data[field_name].strip() if isinstance(data[field_name], str) else ""
    if not name or len(name) > 255:
        return False, "Invalid name", ["Name must be between 1 and 255 characters"]

    return True, None, None


def create_success_response(message: str, data: Any, status: int = 200) -> web.Response:
    """
    Create a standardized success response.

    Args:
        message: Success message
        data: Response data
        status: HTTP status code

    Returns:
        JSON response object
    """
    return web.json_response({
        "success": True,
        "message": message,
        "data": data,
        "errors": []
    }, status=status)


def create_error_response(message: str, errors: list[str], status: int = 400) -> web.Response:
    """
    Create a standardized error response.

    Args:
        message: Error message
        errors: List of error details
        status: HTTP status code

    Returns:
        JSON response object
    """
    return web.json_response({
        "success": False,
        "message": message,
        "errors": errors
    }, status=status)


def _exception_response(action: str, e: Exception) -> web.Response:
    """Map an exception raised by the catalog layer to an error response."""
    if isinstance(e, (CatalogError, CategoryError)):
        logger.warning(f"Validation error while trying to {action}: {e}")
        return create_error_response("Validation error", [str(e)], status=400)
    if isinstance(e, StaleManifestError):
        logger.warning(f"Conflicting write while trying to {action}: {e}")
        return create_error_response("Manifest changed since it was loaded", [str(e)], status=409)
    if isinstance(e, StorageError):
        logger.error(f"Storage error while trying to {action}: {e}")
        return create_error_response("Storage error", [str(e)], status=500)
    logger.error(f"Server error while trying to {action}: {e}")
    return create_error_response("Internal server error", ["An unexpected error occurred"], status=500)


async def _read_json_object(request: web.Request) -> tuple[Optional[Dict[str, Any]], Optional[web.Response]]:
    try:
        data = await request.json()
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in request to {request.path}: {e}")
        return None, create_error_response("Invalid JSON format", [str(e)], status=400)

    is_valid, message, errors = validate_request_json(data)
    if not is_valid:
        return None, create_error_response(message or "Validation error", errors or [], status=400)
    return data, None


def _get_registry(request: web.Request) -> CatalogRegistry:
    return request.app[REGISTRY_KEY]


def _get_catalog(request: web.Request) -> tuple[Optional[Catalog], Optional[web.Response]]:
    domain = request.match_info.get("domain")
    catalog = _get_registry(request).catalog(domain)
    if catalog is None:
        return None, create_error_response("Unknown domain", [f"Domain '{domain}' does not exist"], status=404)
    return catalog, None


def _query_flag(request: web.Request, name: str) -> bool:
    return str(request.query.get(name, "")).lower() in TRUE_VALUES


def _category_field(data: Dict[str, Any], camel: str, snake: str) -> Optional[str]:
    return data.get(camel, data.get(snake)) or None


# Items

async def get_items(request: web.Request) -> web.Response:
    """
    Search the items of a domain.

    Query parameters: category, q, kind, sort, include_nsfw, include_subcategories.
    """
    catalog, error = _get_catalog(request)
    if error:
        return error

    sort = request.query.get("sort", "newest")
    if sort not in SORT_OPTIONS:
        return create_error_response("Invalid sort order", [f"Sort must be one of: {', '.join(SORT_OPTIONS)}"])

    try:
        items = catalog.list_items(
            category=request.query.get("category") or None,
            query=request.query.get("q") or None,
            kind=request.query.get("kind") or None,
            sort=sort,
            include_nsfw=_query_flag(request, "include_nsfw"),
            include_subcategories=_query_flag(request, "include_subcategories"),
        )
        return create_success_response(f"Found {len(items)} item(s)", [item.to_dict() for item in items])
    except Exception as e:
        return _exception_response("list items", e)


async def get_item(request: web.Request) -> web.Response:
    catalog, error = _get_catalog(request)
    if error:
        return error

    item_id = request.match_info.get("id")
    try:
        item = catalog.get_item(item_id)
    except Exception as e:
        return _exception_response(f"get item {item_id}", e)

    if item is None:
        return create_error_response("Item not found", [f"Item with id '{item_id}' does not exist"], status=404)
    return create_success_response("Item retrieved successfully", item.to_dict())


async def create_item(request: web.Request) -> web.Response:
    """
    Create an item.

    Gallery body: ``{"kind", "contents": [...], "categoryId", "title", ...}``
    where contents are data URLs or existing storage paths.

    Prompts body: ``{"text", "title", "categoryId", "tags", ...}`` or
    ``{"prompts": [...]}`` for a batch.
    """
    catalog, error = _get_catalog(request)
    if error:
        return error

    data, error = await _read_json_object(request)
    if error:
        return error

    try:
        if isinstance(catalog, PromptCatalog):
            if "prompts" in data:
                if not isinstance(data["prompts"], list):
                    return create_error_response("Validation error", ["Field 'prompts' must be a list"])
                batch = [fields_from_wire(entry) for entry in data["prompts"] if isinstance(entry, dict)]
                created = catalog.add_prompts(batch)
                return create_success_response(
                    f"Added {len(created)} prompt(s)", [item.to_dict() for item in created], status=201
                )
            fields = fields_from_wire(data)
            if not isinstance(fields.get("text"), str):
                return create_error_response("Missing required field: text", ["Field 'text' is required"])
            item = catalog.add_prompt(**fields)
        else:
            fields = fields_from_wire(data)
            contents = fields.pop("contents", None) or fields.pop("paths", None)
            if not contents:
                return create_error_response("Missing required field: contents", ["Field 'contents' is required"])
            kind = fields.pop("kind", "image")
            category_id = fields.pop("category_id", None)
            item = catalog.add_item(kind, contents, category_id, **fields)

        return create_success_response("Item created successfully", item.to_dict(), status=201)
    except Exception as e:
        return _exception_response("create item", e)


async def update_item(request: web.Request) -> web.Response:
    catalog, error = _get_catalog(request)
    if error:
        return error

    data, error = await _read_json_object(request)
    if error:
        return error

    item_id = request.match_info.get("id")
    try:
        item = catalog.update_item(item_id, fields_from_wire(data))
    except Exception as e:
        return _exception_response(f"update item {item_id}", e)

    if item is None:
        return create_error_response("Item not found", [f"Item with id '{item_id}' does not exist"], status=404)
    return create_success_response("Item updated successfully", item.to_dict())


async def delete_item(request: web.Request) -> web.Response:
    catalog, error = _get_catalog(request)
    if error:
        return error

    item_id = request.match_info.get("id")
    try:
        deleted = catalog.delete_item(item_id)
    except Exception as e:
        return _exception_response(f"delete item {item_id}", e)

    if not deleted:
        return create_error_response("Item not found", [f"Item with id '{item_id}' does not exist"], status=404)
    return create_success_response("Item deleted successfully", {"id": item_id})


# Categories

async def get_categories(request: web.Request) -> web.Response:
    catalog, error = _get_catalog(request)
    if error:
        return error

    try:
        categories = catalog.list_categories()
        return create_success_response(
            f"Found {len(categories)} categories", [category.to_dict() for category in categories]
        )
    except Exception as e:
        return _exception_response("list categories", e)


async def create_category(request: web.Request) -> web.Response:
    catalog, error = _get_catalog(request)
    if error:
        return error

    data, error = await _read_json_object(request)
    if error:
        return error

    is_valid, message, errors = validate_name_field(data)
    if not is_valid:
        return create_error_response(message or "Validation error", errors or [], status=400)

    try:
        category = catalog.add_category(
            data["name"],
            parent_id=_category_field(data, "parentId", "parent_id"),
            is_nsfw=bool(data.get("isNsfw", data.get("is_nsfw", False))),
        )
    except Exception as e:
        return _exception_response("create category", e)

    if category is None:
        return create_error_response(
            "Invalid category", ["The name is not a valid folder name or the parent does not exist"]
        )
    return create_success_response("Category created successfully", category.to_dict(), status=201)


async def update_category(request: web.Request) -> web.Response:
    catalog, error = _get_catalog(request)
    if error:
        return error

    data, error = await _read_json_object(request)
    if error:
        return error

    if "name" in data:
        is_valid, message, errors = validate_name_field(data)
        if not is_valid:
            return create_error_response(message or "Validation error", errors or [], status=400)

    is_nsfw = data.get("isNsfw", data.get("is_nsfw"))
    category_id = request.match_info.get("id")
    try:
        category = catalog.update_category(
            category_id,
            name=data.get("name"),
            is_nsfw=bool(is_nsfw) if is_nsfw is not None else None,
        )
    except Exception as e:
        return _exception_response(f"update category {category_id}", e)

    if category is None:
        return create_error_response(
            "Category not found", [f"Category with id '{category_id}' does not exist"], status=404
        )
    return create_success_response("Category updated successfully", category.to_dict())


async def delete_category(request: web.Request) -> web.Response:
    catalog, error = _get_catalog(request)
    if error:
        return error

    category_id = request.match_info.get("id")
    try:
        deleted = catalog.delete_category(category_id)
    except Exception as e:
        return _exception_response(f"delete category {category_id}", e)

    if not deleted:
        return create_error_response(
            "Category not found", [f"Category with id '{category_id}' does not exist"], status=404
        )
    return create_success_response("Category deleted successfully", {"id": category_id})


async def reorder_category(request: web.Request) -> web.Response:
    """Move a category within its sibling group. Body: ``{"direction": "up"|"down"|"top"|"bottom"}``."""
    catalog, error = _get_catalog(request)
    if error:
        return error

    data, error = await _read_json_object(request)
    if error:
        return error

    direction = data.get("direction")
    if direction not in REORDER_DIRECTIONS:
        return create_error_response(
            "Invalid direction", [f"Direction must be one of: {', '.join(REORDER_DIRECTIONS)}"]
        )

    category_id = request.match_info.get("id")
    try:
        if catalog.load().find_category(category_id) is None:
            return create_error_response(
                "Category not found", [f"Category with id '{category_id}' does not exist"], status=404
            )
        categories = catalog.reorder_category(category_id, direction)
        return create_success_response(
            "Category reordered successfully", [category.to_dict() for category in categories]
        )
    except Exception as e:
        return _exception_response(f"reorder category {category_id}", e)


async def move_category(request: web.Request) -> web.Response:
    """
    Move a category.

    Body: ``{"targetId"}`` to drop the category onto another one, or
    ``{"parentId", "beforeId"}`` to place it explicitly (``parentId`` null for root).
    """
    catalog, error = _get_catalog(request)
    if error:
        return error

    data, error = await _read_json_object(request)
    if error:
        return error

    category_id = request.match_info.get("id")
    target_id = _category_field(data, "targetId", "target_id")
    has_parent = "parentId" in data or "parent_id" in data
    if not target_id and not has_parent:
        return create_error_response(
            "Missing move target", ["Provide either 'targetId' or 'parentId'"]
        )

    try:
        manifest = catalog.load()
        for referenced in (category_id, target_id, _category_field(data, "parentId", "parent_id")):
            if referenced and manifest.find_category(referenced) is None:
                return create_error_response(
                    "Category not found", [f"Category with id '{referenced}' does not exist"], status=404
                )

        if target_id:
            categories = catalog.move_category(category_id, target_id)
        else:
            categories = catalog.place_category(
                category_id,
                _category_field(data, "parentId", "parent_id"),
                before_id=_category_field(data, "beforeId", "before_id"),
            )
        return create_success_response(
            "Category moved successfully", [category.to_dict() for category in categories]
        )
    except Exception as e:
        return _exception_response(f"move category {category_id}", e)


async def sort_categories(request: web.Request) -> web.Response:
    catalog, error = _get_catalog(request)
    if error:
        return error

    try:
        categories = catalog.sort_categories()
        return create_success_response(
            "Categories sorted successfully", [category.to_dict() for category in categories]
        )
    except Exception as e:
        return _exception_response("sort categories", e)


async def get_category_tree(request: web.Request) -> web.Response:
    catalog, error = _get_catalog(request)
    if error:
        return error

    try:
        tree = catalog.category_tree(request.query.get("q") or None)
        return create_success_response("Category tree retrieved successfully", [node.to_dict() for node in tree])
    except Exception as e:
        return _exception_response("build category tree", e)


# Pins

async def get_pinned(request: web.Request) -> web.Response:
    try:
        return create_success_response("Pinned items retrieved successfully", _get_registry(request).gallery.pinned_ids())
    except Exception as e:
        return _exception_response("list pinned items", e)


async def set_pinned(request: web.Request) -> web.Response:
    """Replace the pin list. Body: ``{"pinnedIds": [...]}``."""
    data, error = await _read_json_object(request)
    if error:
        return error

    pinned_ids = data.get("pinnedIds", data.get("ids"))
    if not isinstance(pinned_ids, list):
        return create_error_response("Validation error", ["Field 'pinnedIds' must be a list"])

    try:
        pinned = _get_registry(request).gallery.set_pinned([pin for pin in pinned_ids if isinstance(pin, str)])
        return create_success_response("Pinned items updated successfully", pinned)
    except Exception as e:
        return _exception_response("update pinned items", e)


async def toggle_pin(request: web.Request) -> web.Response:
    gallery = _get_registry(request).gallery
    item_id = request.match_info.get("id")
    try:
        if gallery.get_item(item_id) is None:
            return create_error_response("Item not found", [f"Item with id '{item_id}' does not exist"], status=404)
        pinned = gallery.toggle_pin(item_id)
        return create_success_response("Item pinned" if pinned else "Item unpinned", {"id": item_id, "pinned": pinned})
    except Exception as e:
        return _exception_response(f"toggle pin of {item_id}", e)


# Reference sheets

def _get_reference_store(request: web.Request) -> tuple[Optional[ReferenceCardStore], Optional[web.Response]]:
    sheet = request.match_info.get("sheet")
    store = _get_registry(request).reference_store(sheet)
    if store is None:
        return None, create_error_response(
            "Unknown reference sheet", [f"Reference sheet '{sheet}' does not exist"], status=404
        )
    return store, None


async def get_reference_sheet(request: web.Request) -> web.Response:
    store, error = _get_reference_store(request)
    if error:
        return error

    try:
        sections = store.load()
        return create_success_response(
            "Reference sheet retrieved successfully", [section.to_dict() for section in sections]
        )
    except Exception as e:
        return _exception_response("load reference sheet", e)


async def update_reference_card(request: web.Request) -> web.Response:
    store, error = _get_reference_store(request)
    if error:
        return error

    data, error = await _read_json_object(request)
    if error:
        return error

    card_id = request.match_info.get("id")
    try:
        if store.find_card(card_id) is None:
            return create_error_response(
                "Reference card not found", [f"Card with id '{card_id}' does not exist"], status=404
            )
        sections = store.update_card(card_id, data)
        return create_success_response(
            "Reference card updated successfully", [section.to_dict() for section in sections]
        )
    except Exception as e:
        return _exception_response(f"update reference card {card_id}", e)


# Maintenance

async def run_maintenance(request: web.Request) -> web.Response:
    """
    Run a maintenance pass: verify, rebuild-gallery, rebuild-prompts or optimize.

    The response data carries the pass result and its progress messages.
    """
    action = request.match_info.get("action")
    if action not in MAINTENANCE_ACTIONS:
        return create_error_response(
            "Unknown maintenance action", [f"Action must be one of: {', '.join(MAINTENANCE_ACTIONS)}"], status=404
        )

    registry = _get_registry(request)
    config = registry.config
    storage = registry.storage
    messages = []

    def on_progress(message: str, progress: Optional[float]) -> None:
        messages.append(message)

    try:
        if action == "verify":
            result = {"healthy": verify_and_repair(storage, config.known_documents(storage), on_progress)}
        elif action == "rebuild-gallery":
            result = rebuild_gallery(storage, registry.gallery.store, config.gallery_root, on_progress).to_dict()
        elif action == "rebuild-prompts":
            result = rebuild_prompts(storage, registry.prompts.store, config.prompts_root, on_progress).to_dict()
        else:
            result = {"rewritten": optimize_manifests(storage, config.manifest_names(), on_progress)}
    except Exception as e:
        return _exception_response(f"run maintenance action {action}", e)

    result["log"] = messages
    return create_success_response(f"Maintenance action '{action}' completed", result)


def setup_api_routes(app: web.Application, registry: CatalogRegistry) -> None:
    """Register every Kollektiv endpoint on an existing application."""
    app[REGISTRY_KEY] = registry

    routes = web.RouteTableDef()

    # Fixed paths first so they are not captured by {domain}
    routes.get("/kollektiv/gallery/pinned")(get_pinned)
    routes.put("/kollektiv/gallery/pinned")(set_pinned)
    routes.post("/kollektiv/gallery/items/{id}/pin")(toggle_pin)

    routes.get("/kollektiv/references/{sheet}")(get_reference_sheet)
    routes.put("/kollektiv/references/{sheet}/cards/{id}")(update_reference_card)

    routes.post("/kollektiv/maintenance/{action}")(run_maintenance)

    routes.get("/kollektiv/{domain}/items")(get_items)
    routes.post("/kollektiv/{domain}/items")(create_item)
    routes.get("/kollektiv/{domain}/items/{id}")(get_item)
    routes.put("/kollektiv/{domain}/items/{id}")(update_item)
    routes.delete("/kollektiv/{domain}/items/{id}")(delete_item)

    routes.get("/kollektiv/{domain}/categories")(get_categories)
    routes.post("/kollektiv/{domain}/categories")(create_category)
    routes.post("/kollektiv/{domain}/categories/sort")(sort_categories)
    routes.put("/kollektiv/{domain}/categories/{id}")(update_category)
    routes.delete("/kollektiv/{domain}/categories/{id}")(delete_category)
    routes.post("/kollektiv/{domain}/categories/{id}/reorder")(reorder_category)
    routes.post("/kollektiv/{domain}/categories/{id}/move")(move_category)
    routes.get("/kollektiv/{domain}/tree")(get_category_tree)

    app.add_routes(routes)
    logger.info(f"Registered Kollektiv API routes for storage root {registry.config.root_directory}")


def create_app(config: Optional[CatalogConfig] = None, storage: Optional[FileStorage] = None) -> web.Application:
    """Build a standalone application serving the Kollektiv API."""
    app = web.Application()
    setup_api_routes(app, CatalogRegistry(config or CatalogConfig(), storage))
    return app

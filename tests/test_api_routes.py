"""
Unit tests for the Kollektiv API handlers.

Handlers are called directly with mocked requests backed by a real catalog
registry in a temporary directory.
"""

import base64
import json
from unittest.mock import AsyncMock, Mock, patch

import pytest
from aiohttp import web

from kollektiv.api_routes import (
    REGISTRY_KEY,
    CatalogRegistry,
    create_app,
    create_category,
    create_error_response,
    create_item,
    create_success_response,
    delete_category,
    delete_item,
    get_categories,
    get_category_tree,
    get_item,
    get_items,
    get_pinned,
    get_reference_sheet,
    move_category,
    reorder_category,
    run_maintenance,
    set_pinned,
    sort_categories,
    toggle_pin,
    update_category,
    update_item,
    update_reference_card,
    validate_name_field,
    validate_request_json,
)
from kollektiv.config import CatalogConfig
from kollektiv.core.manifest import StaleManifestError


@pytest.fixture
def registry(storage, tmp_path):
    return CatalogRegistry(CatalogConfig({"root_directory": str(tmp_path / "root")}), storage)


def make_request(registry, match_info=None, query=None, body=None, invalid_json=False):
    request = Mock()
    request.app = {REGISTRY_KEY: registry}
    request.match_info = match_info or {}
    request.query = query or {}
    request.path = "/kollektiv/test"
    if invalid_json:
        request.json = AsyncMock(side_effect=json.JSONDecodeError("Invalid JSON", "", 0))
    else:
        request.json = AsyncMock(return_value={} if body is None else body)
    return request


def read_body(response):
    return json.loads(response.body.decode())


class TestValidationHelpers:
    """Test validation helper functions."""

    def test_validate_request_json(self):
        assert validate_request_json({"name": "x"}) == (True, None, None)
        assert validate_request_json("not a dict") == (
            False, "Request body must be a JSON object", ["Invalid data format"]
        )

    def test_validate_name_field_missing(self):
        is_valid, message, errors = validate_name_field({})

        assert is_valid is False
        assert message == "Missing required field: name"
        assert errors == ["Field 'name' is required"]

    def test_validate_name_field_blank_or_too_long(self):
        for name in ("   ", "x" * 256):
            is_valid, message, errors = validate_name_field({"name": name})
            assert is_valid is False
            assert message == "Invalid name"
            assert errors == ["Name must be between 1 and 255 characters"]

    def test_validate_name_field_valid(self):
        assert validate_name_field({"name": "Landscapes"}) == (True, None, None)


class TestResponseHelpers:
    """Test response helper functions."""

    def test_create_success_response(self):
        response = create_success_response("Success", {"key": "value"}, status=201)

        assert isinstance(response, web.Response)
        assert response.status == 201
        assert response.content_type == "application/json"
        assert read_body(response) == {"success": True, "message": "Success", "data": {"key": "value"}, "errors": []}

    def test_create_error_response(self):
        response = create_error_response("Error occurred", ["Detail 1"], status=404)

        assert response.status == 404
        assert read_body(response) == {"success": False, "message": "Error occurred", "errors": ["Detail 1"]}


class TestRequestErrors:
    """Test errors shared by every handler."""

    @pytest.mark.asyncio
    async def test_unknown_domain(self, registry):
        response = await get_items(make_request(registry, {"domain": "videos"}))

        assert response.status == 404
        assert read_body(response)["message"] == "Unknown domain"

    @pytest.mark.asyncio
    async def test_invalid_json(self, registry):
        response = await create_category(make_request(registry, {"domain": "gallery"}, invalid_json=True))

        assert response.status == 400
        assert read_body(response)["message"] == "Invalid JSON format"

    @pytest.mark.asyncio
    async def test_body_must_be_object(self, registry):
        response = await create_category(make_request(registry, {"domain": "gallery"}, body=["Cats"]))

        assert response.status == 400
        assert read_body(response)["message"] == "Request body must be a JSON object"

    @pytest.mark.asyncio
    async def test_stale_write_is_a_conflict(self, registry):
        request = make_request(registry, {"domain": "prompts"}, body={"text": "castle"})
        with patch.object(registry.prompts, "add_prompt", side_effect=StaleManifestError("revision 3 != 2")):
            response = await create_item(request)

        assert response.status == 409
        assert read_body(response)["message"] == "Manifest changed since it was loaded"

    @pytest.mark.asyncio
    async def test_unexpected_error(self, registry):
        request = make_request(registry, {"domain": "gallery"})
        with patch.object(registry.gallery, "list_categories", side_effect=RuntimeError("boom")):
            response = await get_categories(request)

        assert response.status == 500
        body = read_body(response)
        assert body["message"] == "Internal server error"
        assert body["errors"] == ["An unexpected error occurred"]


class TestItemHandlers:
    """Test item CRUD endpoints."""

    @pytest.mark.asyncio
    async def test_create_prompt(self, registry, storage):
        request = make_request(registry, {"domain": "prompts"}, body={"text": "A castle\nat dusk", "tags": ["castle"]})

        response = await create_item(request)

        assert response.status == 201
        data = read_body(response)["data"]
        assert data["kind"] == "prompt"
        assert data["title"] == "A castle"
        assert data["tags"] == ["castle"]
        assert data["paths"] == [f"prompts/{data['id']}.txt"]
        assert storage.read_text(data["paths"][0]) == "A castle\nat dusk"

    @pytest.mark.asyncio
    async def test_create_prompt_requires_text(self, registry):
        response = await create_item(make_request(registry, {"domain": "prompts"}, body={"title": "No body"}))

        assert response.status == 400
        assert read_body(response)["message"] == "Missing required field: text"

    @pytest.mark.asyncio
    async def test_create_prompt_batch(self, registry):
        category = registry.prompts.add_category("Portraits")
        request = make_request(registry, {"domain": "prompts"}, body={
            "prompts": [{"text": "one"}, {"text": "two", "categoryId": category.id}],
        })

        response = await create_item(request)

        assert response.status == 201
        body = read_body(response)
        assert body["message"] == "Added 2 prompt(s)"
        assert [entry["text"] for entry in body["data"]] == ["one", "two"]
        assert body["data"][1]["categoryId"] == category.id
        assert body["data"][1]["paths"][0].startswith("prompts/Portraits/")

    @pytest.mark.asyncio
    async def test_create_gallery_item_from_data_url(self, registry, storage, png_bytes):
        category = registry.gallery.add_category("Cats")
        data_url = "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")
        request = make_request(registry, {"domain": "gallery"}, body={
            "contents": [data_url], "categoryId": category.id,
        })

        response = await create_item(request)

        assert response.status == 201
        data = read_body(response)["data"]
        assert data["kind"] == "image"
        assert data["title"] == "Untitled Group (1 image)"
        assert data["paths"][0].startswith("gallery/Cats/")
        assert data["paths"][0].endswith(".png")
        assert storage.read(data["paths"][0]) == png_bytes

    @pytest.mark.asyncio
    async def test_create_gallery_item_requires_contents(self, registry):
        response = await create_item(make_request(registry, {"domain": "gallery"}, body={"title": "Empty"}))

        assert response.status == 400
        assert read_body(response)["message"] == "Missing required field: contents"

    @pytest.mark.asyncio
    async def test_create_gallery_prompt_is_rejected(self, registry):
        request = make_request(registry, {"domain": "gallery"}, body={"kind": "prompt", "contents": ["prompts/x.txt"]})

        response = await create_item(request)

        assert response.status == 400
        assert read_body(response)["message"] == "Validation error"

    @pytest.mark.asyncio
    async def test_get_update_delete_item(self, registry):
        prompt = registry.prompts.add_prompt("old text")
        match_info = {"domain": "prompts", "id": prompt.id}

        response = await get_item(make_request(registry, match_info))
        assert response.status == 200
        assert read_body(response)["data"]["text"] == "old text"

        response = await update_item(make_request(registry, match_info, body={"title": "Renamed", "text": "new text"}))
        assert response.status == 200
        assert read_body(response)["data"]["title"] == "Renamed"
        assert registry.prompts.get_item(prompt.id).text == "new text"

        response = await delete_item(make_request(registry, match_info))
        assert response.status == 200
        assert read_body(response)["data"] == {"id": prompt.id}
        assert registry.prompts.get_item(prompt.id) is None

    @pytest.mark.asyncio
    async def test_unknown_item(self, registry):
        match_info = {"domain": "gallery", "id": "missing"}

        for handler in (get_item, update_item, delete_item):
            response = await handler(make_request(registry, match_info, body={"title": "x"}))
            assert response.status == 404
            assert read_body(response)["message"] == "Item not found"

    @pytest.mark.asyncio
    async def test_list_items(self, registry, png_bytes):
        first = registry.gallery.add_item("image", png_bytes, title="sunset")
        registry.gallery.add_item("image", png_bytes, title="forest")

        response = await get_items(make_request(registry, {"domain": "gallery"}, query={"q": "sun"}))

        body = read_body(response)
        assert response.status == 200
        assert body["message"] == "Found 1 item(s)"
        assert [item["id"] for item in body["data"]] == [first.id]

    @pytest.mark.asyncio
    async def test_list_items_invalid_sort(self, registry):
        response = await get_items(make_request(registry, {"domain": "gallery"}, query={"sort": "random"}))

        assert response.status == 400
        assert read_body(response)["message"] == "Invalid sort order"


class TestCategoryHandlers:
    """Test category endpoints."""

    @pytest.mark.asyncio
    async def test_create_and_list(self, registry):
        response = await create_category(make_request(registry, {"domain": "gallery"}, body={"name": "Cats"}))

        assert response.status == 201
        created = read_body(response)["data"]
        assert created["name"] == "Cats"
        assert created["order"] == 0

        response = await get_categories(make_request(registry, {"domain": "gallery"}))
        assert [category["id"] for category in read_body(response)["data"]] == [created["id"]]

    @pytest.mark.asyncio
    async def test_create_requires_name(self, registry):
        response = await create_category(make_request(registry, {"domain": "gallery"}, body={}))

        assert response.status == 400
        assert read_body(response)["message"] == "Missing required field: name"

    @pytest.mark.asyncio
    async def test_create_with_unknown_parent(self, registry):
        request = make_request(registry, {"domain": "gallery"}, body={"name": "Cats", "parentId": "missing"})

        response = await create_category(request)

        assert response.status == 400
        assert read_body(response)["message"] == "Invalid category"

    @pytest.mark.asyncio
    async def test_update_flags(self, registry):
        category = registry.gallery.add_category("Cats")
        request = make_request(registry, {"domain": "gallery", "id": category.id}, body={"isNsfw": True})

        response = await update_category(request)

        assert response.status == 200
        assert read_body(response)["data"]["isNsfw"] is True

    @pytest.mark.asyncio
    async def test_update_and_delete_unknown(self, registry):
        match_info = {"domain": "gallery", "id": "missing"}

        response = await update_category(make_request(registry, match_info, body={"name": "New"}))
        assert response.status == 404

        response = await delete_category(make_request(registry, match_info))
        assert response.status == 404
        assert read_body(response)["message"] == "Category not found"

    @pytest.mark.asyncio
    async def test_delete(self, registry):
        category = registry.prompts.add_category("Portraits")

        response = await delete_category(make_request(registry, {"domain": "prompts", "id": category.id}))

        assert response.status == 200
        assert registry.prompts.list_categories() == []

    @pytest.mark.asyncio
    async def test_reorder(self, registry):
        registry.gallery.add_category("A")
        second = registry.gallery.add_category("B")
        request = make_request(registry, {"domain": "gallery", "id": second.id}, body={"direction": "up"})

        response = await reorder_category(request)

        assert response.status == 200
        orders = {category["name"]: category["order"] for category in read_body(response)["data"]}
        assert orders == {"A": 1, "B": 0}

    @pytest.mark.asyncio
    async def test_reorder_errors(self, registry):
        category = registry.gallery.add_category("A")

        response = await reorder_category(
            make_request(registry, {"domain": "gallery", "id": category.id}, body={"direction": "sideways"})
        )
        assert response.status == 400
        assert read_body(response)["message"] == "Invalid direction"

        response = await reorder_category(
            make_request(registry, {"domain": "gallery", "id": "missing"}, body={"direction": "up"})
        )
        assert response.status == 404

    @pytest.mark.asyncio
    async def test_move_under_parent(self, registry):
        parent = registry.gallery.add_category("A")
        child = registry.gallery.add_category("B")
        request = make_request(registry, {"domain": "gallery", "id": child.id}, body={"parentId": parent.id})

        response = await move_category(request)

        assert response.status == 200
        moved = next(c for c in read_body(response)["data"] if c["id"] == child.id)
        assert moved["parentId"] == parent.id
        assert moved["order"] == 0

    @pytest.mark.asyncio
    async def test_move_to_root(self, registry):
        parent = registry.gallery.add_category("A")
        child = registry.gallery.add_category("B", parent_id=parent.id)
        request = make_request(registry, {"domain": "gallery", "id": child.id}, body={"parentId": None})

        response = await move_category(request)

        moved = next(c for c in read_body(response)["data"] if c["id"] == child.id)
        assert "parentId" not in moved
        assert moved["order"] == 1

    @pytest.mark.asyncio
    async def test_move_errors(self, registry):
        category = registry.gallery.add_category("A")

        response = await move_category(make_request(registry, {"domain": "gallery", "id": category.id}, body={}))
        assert response.status == 400
        assert read_body(response)["message"] == "Missing move target"

        response = await move_category(
            make_request(registry, {"domain": "gallery", "id": category.id}, body={"targetId": "missing"})
        )
        assert response.status == 404

    @pytest.mark.asyncio
    async def test_sort(self, registry):
        registry.gallery.add_category("beta")
        registry.gallery.add_category("Alpha")

        response = await sort_categories(make_request(registry, {"domain": "gallery"}))

        orders = {category["name"]: category["order"] for category in read_body(response)["data"]}
        assert orders == {"Alpha": 0, "beta": 1}

    @pytest.mark.asyncio
    async def test_tree(self, registry, png_bytes):
        parent = registry.gallery.add_category("Animals")
        child = registry.gallery.add_category("Cats", parent_id=parent.id)
        registry.gallery.add_item("image", png_bytes, child.id)

        response = await get_category_tree(make_request(registry, {"domain": "gallery"}))

        tree = read_body(response)["data"]
        assert [node["name"] for node in tree] == ["Animals"]
        assert tree[0]["totalCount"] == 1
        assert tree[0]["children"][0]["name"] == "Cats"
        assert tree[0]["children"][0]["itemCount"] == 1


class TestPinHandlers:
    """Test gallery pin endpoints."""

    @pytest.mark.asyncio
    async def test_toggle_and_list(self, registry, png_bytes):
        item = registry.gallery.add_item("image", png_bytes)
        match_info = {"id": item.id}

        response = await toggle_pin(make_request(registry, match_info))
        body = read_body(response)
        assert body["message"] == "Item pinned"
        assert body["data"] == {"id": item.id, "pinned": True}

        response = await get_pinned(make_request(registry))
        assert read_body(response)["data"] == [item.id]

        response = await toggle_pin(make_request(registry, match_info))
        assert read_body(response)["message"] == "Item unpinned"
        assert registry.gallery.pinned_ids() == []

    @pytest.mark.asyncio
    async def test_toggle_unknown(self, registry):
        response = await toggle_pin(make_request(registry, {"id": "missing"}))
        assert response.status == 404

    @pytest.mark.asyncio
    async def test_set_pinned(self, registry, png_bytes):
        item = registry.gallery.add_item("image", png_bytes)

        response = await set_pinned(make_request(registry, body={"pinnedIds": [item.id, "missing", item.id]}))
        assert response.status == 200
        assert read_body(response)["data"] == [item.id]

        response = await set_pinned(make_request(registry, body={"pinnedIds": item.id}))
        assert response.status == 400


class TestReferenceHandlers:
    """Test reference sheet endpoints."""

    @pytest.fixture
    def cheatsheet(self, storage):
        storage.save_text("cheatsheet.json", json.dumps([
            {"category": "Lighting", "items": [{"id": "k1", "name": "Rim light"}]},
        ]))

    @pytest.mark.asyncio
    async def test_get_sheet(self, registry, cheatsheet):
        response = await get_reference_sheet(make_request(registry, {"sheet": "cheatsheet"}))

        assert response.status == 200
        sections = read_body(response)["data"]
        assert sections[0]["category"] == "Lighting"
        assert sections[0]["items"][0]["name"] == "Rim light"

    @pytest.mark.asyncio
    async def test_unknown_sheet(self, registry):
        response = await get_reference_sheet(make_request(registry, {"sheet": "poses"}))

        assert response.status == 404
        assert read_body(response)["message"] == "Unknown reference sheet"

    @pytest.mark.asyncio
    async def test_update_card(self, registry, cheatsheet):
        request = make_request(registry, {"sheet": "cheatsheet", "id": "k1"}, body={"description": "Backlit edge"})

        response = await update_reference_card(request)

        assert response.status == 200
        assert read_body(response)["data"][0]["items"][0]["description"] == "Backlit edge"

    @pytest.mark.asyncio
    async def test_update_unknown_card(self, registry, cheatsheet):
        request = make_request(registry, {"sheet": "cheatsheet", "id": "missing"}, body={"name": "x"})

        response = await update_reference_card(request)

        assert response.status == 404
        assert read_body(response)["message"] == "Reference card not found"


class TestMaintenanceHandler:
    """Test the maintenance endpoint."""

    @pytest.mark.asyncio
    async def test_verify(self, registry, storage):
        response = await run_maintenance(make_request(registry, {"action": "verify"}))

        body = read_body(response)
        assert response.status == 200
        assert body["message"] == "Maintenance action 'verify' completed"
        assert body["data"]["healthy"] is True
        assert "Registry healthy." in body["data"]["log"]
        assert storage.read("kollektiv_gallery_manifest.json") is not None

    @pytest.mark.asyncio
    async def test_rebuild_without_manifest(self, registry):
        response = await run_maintenance(make_request(registry, {"action": "rebuild-gallery"}))

        data = read_body(response)["data"]
        assert data["relocated"] == 0
        assert data["removedItems"] == []

    @pytest.mark.asyncio
    async def test_optimize(self, registry):
        registry.prompts.add_category("Portraits")

        response = await run_maintenance(make_request(registry, {"action": "optimize"}))

        assert read_body(response)["data"]["rewritten"] == 1

    @pytest.mark.asyncio
    async def test_unknown_action(self, registry):
        response = await run_maintenance(make_request(registry, {"action": "defrag"}))

        assert response.status == 404
        assert read_body(response)["message"] == "Unknown maintenance action"


class TestCreateApp:
    def test_registers_routes(self, tmp_path):
        app = create_app(CatalogConfig({"root_directory": str(tmp_path)}))

        assert isinstance(app[REGISTRY_KEY], CatalogRegistry)
        paths = {route.resource.canonical for route in app.router.routes()}
        assert "/kollektiv/{domain}/items" in paths
        assert "/kollektiv/gallery/pinned" in paths
        assert "/kollektiv/maintenance/{action}" in paths

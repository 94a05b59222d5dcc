import json

import httpx
import pytest

from catalog_sync.errors import (
    ConflictError,
    ConflictMatcher,
    FatalError,
    NotFoundError,
    RemoteError,
    TransientError,
    classify_response,
)
from catalog_sync.woocommerce import CATEGORIES, MEDIA, PRODUCTS, WooClient


def make_client(handler, **kw):
    kw.setdefault("per_page", 2)
    return WooClient("https://shop.test/", "ck_1", "cs_1", transport=httpx.MockTransport(handler), **kw)


@pytest.mark.asyncio
async def test_list_all_products_paginates_until_short_page():
    pages = {1: [{"id": 1}, {"id": 2}], 2: [{"id": 3}, {"id": 4}], 3: [{"id": 5}]}
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == PRODUCTS
        page = int(request.url.params["page"])
        seen.append((page, request.url.params["per_page"]))
        return httpx.Response(200, json=pages[page])

    async with make_client(handler) as client:
        products = await client.list_all_products()

    assert [p["id"] for p in products] == [1, 2, 3, 4, 5]
    assert seen == [(1, "2"), (2, "2"), (3, "2")]


@pytest.mark.asyncio
async def test_requests_use_basic_auth_and_json():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["auth"] = request.headers.get("authorization", "")
        captured["method"] = request.method
        captured["path"] = request.url.path
        captured["json"] = json.loads(request.content)
        return httpx.Response(201, json={"id": 9, **captured["json"]})

    async with make_client(handler) as client:
        created = await client.create_category("Acme", parent=4)

    assert created["id"] == 9
    assert captured["auth"].startswith("Basic ")
    assert (captured["method"], captured["path"]) == ("POST", CATEGORIES)
    assert captured["json"] == {"name": "Acme", "parent": 4}


@pytest.mark.asyncio
async def test_delete_is_forced():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = request.url
        return httpx.Response(200, json={"id": 5})

    async with make_client(handler) as client:
        await client.delete_product(5)

    assert captured["url"].path == f"{PRODUCTS}/5"
    assert captured["url"].params["force"] == "true"


@pytest.mark.asyncio
async def test_get_product_by_sku():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["sku"] == "A1":
            return httpx.Response(200, json=[{"id": 1, "sku": "A1"}])
        return httpx.Response(200, json=[])

    async with make_client(handler) as client:
        assert (await client.get_product_by_sku("A1"))["id"] == 1
        assert await client.get_product_by_sku("nope") is None


@pytest.mark.asyncio
async def test_processing_conflict_is_typed():
    body = {"code": "product_invalid_sku", "message": "Stok kodu zaten işleniyor.", "data": {"status": 400}}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json=body)

    async with make_client(handler) as client:
        with pytest.raises(ConflictError) as exc:
            await client.create_product({"sku": "A1"})

    assert exc.value.status_code == 400
    assert exc.value.code == "product_invalid_sku"


@pytest.mark.asyncio
async def test_term_exists_carries_resource_id():
    body = {"code": "term_exists", "message": "A term with the name provided already exists.",
            "data": {"status": 400, "resource_id": 31}}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json=body)

    async with make_client(handler) as client:
        with pytest.raises(RemoteError) as exc:
            await client.create_tag("Bosch")

    assert exc.value.existing_term_id == 31


@pytest.mark.asyncio
@pytest.mark.parametrize("status, err_type", [
    (401, FatalError),
    (404, NotFoundError),
    (429, TransientError),
    (503, TransientError),
    (400, RemoteError),
])
async def test_status_classification(status, err_type):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"code": "x", "message": "nope"})

    async with make_client(handler) as client:
        with pytest.raises(err_type) as exc:
            await client.update_product(1, {"name": "x"})
    assert type(exc.value) is err_type


@pytest.mark.asyncio
async def test_transport_failure_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with make_client(handler) as client:
        with pytest.raises(TransientError):
            await client.list_all_tags()


@pytest.mark.asyncio
async def test_html_error_page_is_summarized():
    page = "<!DOCTYPE html><html><head><title>Site Maintenance</title></head><body>" + "x" * 5000 + "</body></html>"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, text=page, headers={"content-type": "text/html"})

    async with make_client(handler) as client:
        with pytest.raises(RemoteError) as exc:
            await client.list_all_categories()

    assert "Site Maintenance" in str(exc.value)
    assert len(str(exc.value)) < 300


@pytest.mark.asyncio
async def test_find_media_by_filename_filters_fuzzy_search():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["search"] = request.url.params["search"]
        return httpx.Response(200, json=[
            {"id": 1, "slug": "pump-2", "source_url": "https://shop.test/wp-content/uploads/pump-2.jpg"},
            {"id": 2, "slug": "pump", "source_url": "https://shop.test/wp-content/uploads/pump.jpg"},
        ])

    async with make_client(handler) as client:
        media = await client.find_media_by_filename("pump.jpg")

    assert media["id"] == 2
    assert captured == {"path": MEDIA, "search": "pump"}


@pytest.mark.asyncio
async def test_find_media_by_filename_requires_matching_extension():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[
            {"id": 2, "slug": "pump", "source_url": "https://shop.test/wp-content/uploads/pump.jpg"},
        ])

    async with make_client(handler) as client:
        assert await client.find_media_by_filename("pump.png") is None
        assert (await client.find_media_by_filename("PUMP.JPG"))["id"] == 2


def test_missing_configuration_is_fatal():
    with pytest.raises(FatalError):
        WooClient("", "ck", "cs")


def test_default_conflict_phrases():
    matcher = ConflictMatcher.from_phrases()
    assert matcher.matches("SKU already in use")
    assert matcher.matches("Stok kodu zaten işleniyor")
    assert matcher.matches('{"message":"i\\u015fleniyor"}')
    assert matcher.matches("Request is IN-PROGRESS")
    assert not matcher.matches("Invalid price")
    assert not matcher.matches(None)


def test_conflict_pattern_is_overridable():
    matcher = ConflictMatcher.from_settings(r"duplicate entry")
    assert matcher.matches("Duplicate entry for key sku")
    assert not matcher.matches("already exists")
    assert ConflictMatcher.from_settings("").matches("already exists")


def test_classify_prefers_conflict_over_status():
    err = classify_response(500, "Internal Server Error", "processing lock claimed", ConflictMatcher.from_phrases())
    assert isinstance(err, ConflictError)
    assert err.message.startswith("WooCommerce API error: 500 Internal Server Error - ")


def test_image_related_errors():
    assert RemoteError("woocommerce_product_image_upload_error").image_related
    assert RemoteError("Görsel indirilemedi").image_related
    assert not RemoteError("invalid price").image_related

from __future__ import annotations

import json

import httpx
import pytest

from assistant.core.config import settings
from assistant.core.exceptions import UpstreamError
from assistant.services.cache.ttl_cache import ManualClock, TTLCache
from assistant.services.catalog.loader import (
    CatalogLoader,
    infer_vendor,
    normalize_product,
    normalize_products,
)


def _file_record(pid: str = "6895f3b1ef1ca6239ac8b94b", **overrides):
    record = {
        "id": pid,
        "name": "Microsoft 365 E3",
        "vendor": "Microsoft",
        "category": "Software",
        "subCategory": "Collaboration Tools",
        "subCategoryId": "6942ac61d91c1f7c88d02b9f",
        "description": "Office apps and Teams.",
        "pricing": {"monthly": 3200, "yearly": 36000},
        "url": f"https://shop.skysecure.ai/products/m365-e3--{pid}",
        "createdAt": "2025-08-08T10:12:01Z",
    }
    record.update(overrides)
    return record


def _config(tmp_path, **overrides):
    update = {"DATA_DIR": str(tmp_path), "CATALOG_SOURCE": "file"}
    update.update(overrides)
    return settings.model_copy(update=update)


def test_normalize_file_shape_prefers_yearly_price() -> None:
    product = normalize_product(_file_record())
    assert product is not None
    assert product.price == 36000
    assert product.billing_cycle == "Yearly"
    assert product.category_path == "Software > Collaboration Tools"
    assert product.created_at is not None and product.created_at.tzinfo is not None


def test_normalize_api_shape_reads_detail_arrays_and_flags() -> None:
    record = {
        "_id": "68a0000000000000000000aa",
        "name": "Defender for Endpoint P2",
        "oemDetails": [{"_id": "68931b8d7874310ffca28d65", "title": "Microsoft"}],
        "categoryDetails": [{"_id": "c1", "name": "Software"}],
        "subCategoryDetails": [{"_id": "s1", "name": "Security"}],
        "subscriptions": [{"plan": "yearly", "sellingPrice": "4,500"}],
        "isFeatured": True,
        "isBestSelling": True,
    }
    product = normalize_product(record)
    assert product.id == "68a0000000000000000000aa"
    assert product.vendor == "Microsoft"
    assert product.oem_id == "68931b8d7874310ffca28d65"
    assert product.sub_category_id == "s1"
    assert (product.price, product.billing_cycle) == (4500, "Yearly")
    assert product.api_featured and product.api_top_selling and not product.api_latest


def test_normalize_falls_back_to_defaults_and_price_hint() -> None:
    product = normalize_product({"id": "x1", "price": "99", "raw": {"subscriptionHint": "annual"}})
    assert product.name == "Unnamed Product"
    assert product.vendor == "Unknown Vendor"
    assert product.category == "Uncategorized"
    assert (product.price, product.billing_cycle) == (99, "Yearly")


def test_records_without_id_are_skipped_and_duplicates_dropped() -> None:
    products = normalize_products([_file_record("a"), {"name": "no id"}, "junk", _file_record("a"), _file_record("b")])
    assert [p.id for p in products] == ["a", "b"]


def test_infer_vendor_uses_first_keyword_in_order() -> None:
    assert infer_vendor("Dynamics 365 Sales", "") == "Microsoft"
    assert infer_vendor("Endpoint suite", "by Sophos") == "Sophos"
    assert infer_vendor("Something", "else") is None


@pytest.mark.asyncio
async def test_load_products_reads_file_once_within_ttl(tmp_path) -> None:
    path = tmp_path / "products_normalized.json"
    path.write_text(json.dumps([_file_record("a"), _file_record("b")]), encoding="utf-8")
    clock = ManualClock()
    loader = CatalogLoader(TTLCache(clock=clock), config=_config(tmp_path))

    first = await loader.load_products()
    path.write_text(json.dumps([_file_record("c")]), encoding="utf-8")
    second = await loader.load_products()

    assert [p.id for p in first] == ["a", "b"]
    assert second is first

    clock.advance(settings.CATALOG_TTL_SECONDS)
    third = await loader.load_products()
    assert [p.id for p in third] == ["c"]


@pytest.mark.asyncio
async def test_load_products_serves_stale_catalog_when_file_breaks(tmp_path) -> None:
    path = tmp_path / "products_normalized.json"
    path.write_text(json.dumps([_file_record("a")]), encoding="utf-8")
    clock = ManualClock()
    loader = CatalogLoader(TTLCache(clock=clock), config=_config(tmp_path))

    await loader.load_products()
    path.write_text("{not json", encoding="utf-8")
    clock.advance(settings.CATALOG_TTL_SECONDS + 1)

    assert [p.id for p in await loader.load_products()] == ["a"]


@pytest.mark.asyncio
async def test_load_products_without_any_data_is_empty(tmp_path) -> None:
    loader = CatalogLoader(TTLCache(clock=ManualClock()), config=_config(tmp_path))
    assert await loader.load_products() == []


@pytest.mark.asyncio
async def test_fetch_products_from_api_decodes_docs_envelope(tmp_path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/products/public/products")
        return httpx.Response(200, json={"data": {"docs": [_file_record("a"), _file_record("b")], "totalDocs": 2}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        loader = CatalogLoader(TTLCache(), config=_config(tmp_path, CATALOG_SOURCE="api"), http_client=client)
        products = await loader.load_products()

    assert [p.id for p in products] == ["a", "b"]


@pytest.mark.asyncio
async def test_fetch_products_from_api_raises_on_error_status(tmp_path) -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503, text="unavailable"))
    async with httpx.AsyncClient(transport=transport) as client:
        loader = CatalogLoader(TTLCache(), config=_config(tmp_path, CATALOG_SOURCE="api"))
        with pytest.raises(UpstreamError) as excinfo:
            await loader.fetch_products_from_api(client)

    assert excinfo.value.status_code == 503

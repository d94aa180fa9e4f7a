from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from assistant.core.config import settings
from assistant.schemas.product import Product
from assistant.services.cache.ttl_cache import ManualClock, TTLCache
from assistant.services.catalog.signals import (
    CreatedWithinStrategy,
    KeywordBestSellerStrategy,
    MarketplaceSignals,
    SignalsLoader,
    apply_signals,
    resolve_products_by_ids,
)

NOW = datetime(2025, 11, 1, tzinfo=timezone.utc)


def _product(pid: str, name: str = "Generic Tool", **kw) -> Product:
    return Product(id=pid, name=name, **kw)


def test_signals_accept_aliases_and_product_id_objects() -> None:
    signals = MarketplaceSignals.model_validate(
        {"bestSelling": [{"productId": "a"}, {"productId": {"_id": "b"}}, 7, None], "featured": "not-a-list"}
    )
    assert signals.best_selling == ["a", "b", "7"]
    assert signals.featured == []


def test_resolve_products_by_ids_keeps_signal_order_and_skips_unknown() -> None:
    products = [_product("a"), _product("b"), _product("c")]
    resolved = resolve_products_by_ids(["c", "zzz", "a"], products)
    assert [p.id for p in resolved] == ["c", "a"]


def test_api_flags_take_priority_over_signal_list() -> None:
    products = [_product("a", api_featured=True), _product("b")]
    decided = apply_signals(products, MarketplaceSignals(featured=["b"]), now=NOW)
    assert [p.is_featured for p in products] == [True, False]
    assert decided["is_featured"] == "api_flag"


def test_signal_list_used_when_no_api_flags() -> None:
    products = [_product("a"), _product("b")]
    decided = apply_signals(products, MarketplaceSignals(featured=["b", "missing"]), now=NOW)
    assert [p.is_featured for p in products] == [False, True]
    assert decided["is_featured"] == "signal_list"


def test_top_selling_falls_back_to_keyword_heuristic() -> None:
    products = [
        _product("e3", "Microsoft 365 E3"),
        _product("sec", "Microsoft 365 E5 Security"),
        _product("other", "Adobe Acrobat Pro"),
    ]
    decided = apply_signals(products, MarketplaceSignals(), now=NOW)
    assert {p.id for p in products if p.is_top_selling} == {"e3"}
    assert decided["is_top_selling"] == "keyword_heuristic"


def test_keyword_heuristic_respects_limit() -> None:
    products = [_product(str(i), f"Microsoft 365 Business {i}") for i in range(5)]
    assert KeywordBestSellerStrategy(limit=2).decide(products, NOW) == {"0", "1"}


def test_created_within_uses_most_recent_when_nothing_is_new() -> None:
    products = [
        _product("old", created_at=NOW - timedelta(days=400)),
        _product("older", created_at=NOW - timedelta(days=500)),
        _product("undated"),
    ]
    assert CreatedWithinStrategy(days=30, limit=1).decide(products, NOW) == {"old"}
    assert CreatedWithinStrategy(days=30).decide([_product("undated")], NOW) is None


def test_latest_uses_created_date_window() -> None:
    products = [
        _product("new", created_at=NOW - timedelta(days=3)),
        _product("old", created_at=NOW - timedelta(days=90)),
    ]
    apply_signals(products, MarketplaceSignals(), now=NOW)
    assert [p.is_latest for p in products] == [True, False]


def test_applying_signals_twice_gives_same_flags() -> None:
    products = [_product("a", api_latest=True), _product("b", "Microsoft 365 E3")]
    signals = MarketplaceSignals(featured=["a"])
    apply_signals(products, signals, now=NOW)
    first = [(p.is_featured, p.is_top_selling, p.is_latest) for p in products]
    apply_signals(products, signals, now=NOW)
    assert [(p.is_featured, p.is_top_selling, p.is_latest) for p in products] == first
    assert [p.id for p in products] == ["a", "b"]


@pytest.mark.asyncio
async def test_loader_reads_bundle_from_data_dir(tmp_path) -> None:
    (tmp_path / "marketplace_signals.json").write_text(
        json.dumps({"featured": ["a"], "bestSelling": [{"productId": "b"}], "recentlyAdded": []}),
        encoding="utf-8",
    )
    (tmp_path / "category_rankings.json").write_text(json.dumps({"Data Management": ["b"]}), encoding="utf-8")
    (tmp_path / "oem_rankings.json").write_text(json.dumps({"Microsoft": ["a", "b"]}), encoding="utf-8")

    config = settings.model_copy(update={"DATA_DIR": str(tmp_path)})
    bundle = await SignalsLoader(TTLCache(clock=ManualClock()), config=config).load()

    assert bundle.signals.featured == ["a"]
    assert bundle.signals.best_selling == ["b"]
    assert bundle.category_rankings == {"Data Management": ["b"]}
    assert bundle.oem_rankings == {"Microsoft": ["a", "b"]}
    assert not bundle.is_empty


@pytest.mark.asyncio
async def test_loader_returns_empty_bundle_when_files_are_missing(tmp_path) -> None:
    config = settings.model_copy(update={"DATA_DIR": str(tmp_path)})
    bundle = await SignalsLoader(TTLCache(clock=ManualClock()), config=config).load()
    assert bundle.is_empty

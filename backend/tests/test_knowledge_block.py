from __future__ import annotations

from datetime import datetime, timezone

from assistant.schemas.product import Pricing, Product, Subscription
from assistant.services.catalog.formatter import (
    NO_PRODUCTS_STATEMENT,
    catalog_fingerprint,
    format_price_details,
    format_products_for_knowledge_base,
)
from assistant.services.catalog.signals import MarketplaceSignals, SignalsBundle
from assistant.services.context.augmentation import augment_with_signals
from assistant.services.context.assembler import TRUNCATION_MARKER, bound_sections


def _catalog():
    return [
        Product(
            id="a",
            name="Azure SQL Edge",
            vendor="Microsoft",
            category="Software",
            sub_category="Data Management",
            price=5400,
            billing_cycle="Yearly",
            url="https://shop.skysecure.ai/products/azure-sql-edge--a",
            is_featured=True,
            created_at=datetime(2025, 9, 14, tzinfo=timezone.utc),
            is_latest=True,
        ),
        Product(
            id="b",
            name="Power BI Premium Per User",
            vendor="Microsoft",
            category="Software",
            sub_category="Data Management",
            price=1650,
            is_top_selling=True,
            created_at=datetime(2025, 10, 1, tzinfo=timezone.utc),
            is_latest=True,
        ),
        Product(id="c", name="Teams Phone", vendor="Microsoft", category="Software", sub_category="Communication", price=680),
    ]


def test_empty_catalog_is_stated_plainly() -> None:
    assert format_products_for_knowledge_base([]) == NO_PRODUCTS_STATEMENT


def test_listing_sections_appear_in_order() -> None:
    block = format_products_for_knowledge_base(_catalog())
    markers = [
        "=== SKYSECURE MARKETPLACE PRODUCTS ===",
        "Total Products Available: 3",
        "=== MARKETPLACE CATEGORIES (Simple List) ===",
        "DATA MANAGEMENT PRODUCTS (2 products):",
        "=== FEATURED PRODUCTS (1 products) ===",
        "=== TOP SELLING / BEST SELLING PRODUCTS (1 products) ===",
        "=== RECENTLY ADDED PRODUCTS (2 products) ===",
        "Most Expensive in Software: Azure SQL Edge",
        "=== END PRODUCT DATA ===",
    ]
    positions = [block.index(m) for m in markers]
    assert positions == sorted(positions)
    assert "ALL PRODUCTS LIST" not in block


def test_recently_added_is_newest_first_and_full_list_is_optional() -> None:
    block = format_products_for_knowledge_base(_catalog(), include_full_list=True)
    recent = block[block.index("=== RECENTLY ADDED PRODUCTS") :]
    assert recent.index("Power BI Premium Per User") < recent.index("Azure SQL Edge")
    assert "Added: October 1, 2025" in recent
    assert "ALL PRODUCTS LIST:" in block


def test_price_details_join_every_cycle() -> None:
    product = Product(id="x", name="Plan", pricing=Pricing(monthly=100, yearly=1000, triennial=2500))
    assert format_price_details(product) == "₹100.00/Monthly | ₹1,000.00/Yearly | ₹2,500.00/3 Years"
    with_subs = Product(id="y", name="Plan", subscriptions=[Subscription(plan="Yearly", price=1200)])
    assert format_price_details(with_subs) == "₹1,200.00/Yearly"
    assert format_price_details(Product(id="z", name="Free")) == "₹0.00/Monthly"


def test_fingerprint_tracks_flags_and_prices() -> None:
    catalog = _catalog()
    before = catalog_fingerprint(catalog)
    assert catalog_fingerprint(_catalog()) == before
    catalog[2].is_featured = True
    assert catalog_fingerprint(catalog) != before


def test_fingerprint_tracks_rendered_text_fields() -> None:
    before = catalog_fingerprint(_catalog())

    renamed = _catalog()
    renamed[0].name = "Azure SQL Edge Developer"
    assert catalog_fingerprint(renamed) != before

    moved = _catalog()
    moved[0].url = "https://shop.skysecure.ai/products/azure-sql-edge--a2"
    assert catalog_fingerprint(moved) != before

    recategorised = _catalog()
    recategorised[2].sub_category = "Collaboration"
    assert catalog_fingerprint(recategorised) != before


def _bundle():
    return SignalsBundle(
        signals=MarketplaceSignals(best_selling=["b", "a"]),
        category_rankings={"Data Management": ["a", "b"], "Communication": ["c"]},
        oem_rankings={"Microsoft": ["a", "b", "c"]},
    )


def test_augmentation_best_sellers_follow_signal_order() -> None:
    section = augment_with_signals("what are your best selling products", _catalog(), _bundle())
    assert "=== TOP SELLING / BEST SELLING PRODUCTS (2 products) ===" in section
    assert section.index("Power BI Premium Per User") < section.index("Azure SQL Edge")


def test_augmentation_expands_first_named_category_only() -> None:
    section = augment_with_signals("compare data-management and communication options", _catalog(), _bundle())
    assert "PRODUCTS IN CATEGORY: Data Management" in section
    assert "PRODUCTS IN CATEGORY: Communication" not in section


def test_augmentation_category_overview_and_oem() -> None:
    section = augment_with_signals("which categories does microsoft cover", _catalog(), _bundle())
    assert "=== CATEGORY OVERVIEW ===" in section
    assert "- **Data Management**: 2 products" in section
    assert "PRODUCTS BY OEM/VENDOR: Microsoft (3 products)" in section


def test_augmentation_needs_products_and_signals() -> None:
    assert augment_with_signals("best selling", [], _bundle()) == ""
    assert augment_with_signals("best selling", _catalog(), SignalsBundle.empty()) == ""
    assert augment_with_signals("hello there", _catalog(), _bundle()) == ""


def test_bound_sections_drops_trailing_sections_with_marker() -> None:
    sections = ["A" * 40 + "\n", "B" * 40 + "\n", "C" * 40 + "\n"]
    limit = 41 + len(TRUNCATION_MARKER) + 10
    bounded = bound_sections(sections, limit)
    assert bounded == sections[0] + TRUNCATION_MARKER
    assert len(bounded) <= limit


def test_bound_sections_cuts_oversized_first_section_at_line_break() -> None:
    section = "".join(f"line {i}\n" for i in range(100))
    limit = len(TRUNCATION_MARKER) + 30
    bounded = bound_sections([section], limit)
    assert bounded.endswith(TRUNCATION_MARKER)
    assert len(bounded) <= limit
    assert bounded[: -len(TRUNCATION_MARKER)].endswith("\n")


def test_bound_sections_passes_small_blocks_through() -> None:
    assert bound_sections(["a", "", "b"], 100) == "ab"


def test_bound_sections_keeps_pinned_text_after_cut_listing() -> None:
    listing = "".join(f"line {i}\n" for i in range(200))
    pinned = "=== BEST SELLERS ===\nPower BI\n"
    limit = len(TRUNCATION_MARKER) + len(pinned) + 60

    bounded = bound_sections(["", listing], limit, pinned=[pinned])

    assert len(bounded) <= limit
    assert bounded.startswith("line 0\n")
    assert bounded.endswith(TRUNCATION_MARKER + pinned)


def test_bound_sections_caps_pinned_text_at_half_the_limit() -> None:
    listing = "".join(f"line {i}\n" for i in range(200))
    pinned = "".join(f"pin {i}\n" for i in range(200))
    limit = len(TRUNCATION_MARKER) * 3

    bounded = bound_sections([listing], limit, pinned=[pinned])

    assert len(bounded) <= limit
    assert bounded.startswith("line 0\n")
    head, tail = bounded.split(TRUNCATION_MARKER)
    assert tail.startswith("pin 0\n")
    assert tail.endswith("\n")
    assert len(tail) <= limit // 2
    assert head.endswith("\n")


def test_bound_sections_small_blocks_keep_pinned_text_last() -> None:
    assert bound_sections(["a", "b"], 100, pinned=["c"]) == "abc"

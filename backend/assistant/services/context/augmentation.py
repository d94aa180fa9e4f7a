"""Query-triggered sections appended to the knowledge block.

Policies run in a fixed order and each one short-circuits within itself: only
the first category (or OEM) named in the query is expanded, even if the query
names several. This is first-match, not best-match.
"""

from __future__ import annotations

from typing import Callable, Sequence, Tuple

from assistant.core.config import settings
from assistant.schemas.product import Product
from assistant.services.catalog.formatter import format_amount
from assistant.services.catalog.signals import SignalsBundle, resolve_products_by_ids

BEST_SELLER_TRIGGERS = ("best selling", "top selling", "popular products")
CATEGORY_OVERVIEW_TRIGGERS = ("categories", "domains", "segments")


def _price_line(product: Product) -> str:
    return f"   Price: {format_amount(product.price or 0.0)}/{product.billing_cycle or 'Monthly'}\n"


def _description_line(product: Product) -> str:
    if not product.description:
        return ""
    return f"   Description: {product.description[: settings.AUGMENT_DESCRIPTION_CHARS]}...\n"


def best_sellers_section(query_lower: str, products: Sequence[Product], bundle: SignalsBundle) -> str:
    if not any(t in query_lower for t in BEST_SELLER_TRIGGERS):
        return ""
    resolved = resolve_products_by_ids(bundle.signals.best_selling, products)
    if not resolved:
        return ""
    parts = [
        f"\n=== TOP SELLING / BEST SELLING PRODUCTS ({len(resolved)} products) ===\n",
        "These are the best selling products in SkySecure Marketplace based on marketplace signals:\n\n",
    ]
    for i, p in enumerate(resolved, start=1):
        parts.append(f"{i}. **{p.name}**\n   Vendor: {p.vendor}\n")
        parts.append(_price_line(p))
        parts.append(f"   Category: {p.category_path}\n")
        parts.append(_description_line(p))
        parts.append("\n")
    parts.append("=== END TOP SELLING / BEST SELLING PRODUCTS ===\n\n")
    return "".join(parts)


def category_overview_section(query_lower: str, products: Sequence[Product], bundle: SignalsBundle) -> str:
    if not any(t in query_lower for t in CATEGORY_OVERVIEW_TRIGGERS):
        return ""
    if not bundle.category_rankings:
        return ""
    parts = [
        "\n=== CATEGORY OVERVIEW ===\n",
        "SkySecure Marketplace offers Software products under these domains:\n\n",
    ]
    for name, ids in bundle.category_rankings.items():
        parts.append(f"- **{name}**: {len(ids)} products\n")
    parts.append("=== END CATEGORY OVERVIEW ===\n\n")
    return "".join(parts)


def _category_named(query_lower: str, name_lower: str) -> bool:
    return name_lower in query_lower or "-".join(name_lower.split()) in query_lower


def _oem_named(query_lower: str, name_lower: str) -> bool:
    return name_lower in query_lower


def category_products_section(query_lower: str, products: Sequence[Product], bundle: SignalsBundle) -> str:
    for name, ids in bundle.category_rankings.items():
        if not ids or not _category_named(query_lower, name.lower()):
            continue
        resolved = resolve_products_by_ids(ids, products)
        if not resolved:
            continue
        parts = [
            f"\n=== PRODUCTS IN CATEGORY: {name} ({len(resolved)} products) ===\n",
            f"These are all products in the {name} category:\n\n",
        ]
        for i, p in enumerate(resolved, start=1):
            parts.append(f"{i}. **{p.name}**\n   Vendor: {p.vendor}\n")
            parts.append(_price_line(p))
            parts.append(_description_line(p))
            parts.append("\n")
        parts.append(f"=== END PRODUCTS IN CATEGORY: {name} ===\n\n")
        return "".join(parts)
    return ""


def oem_products_section(query_lower: str, products: Sequence[Product], bundle: SignalsBundle) -> str:
    for name, ids in bundle.oem_rankings.items():
        if not ids or not _oem_named(query_lower, name.lower()):
            continue
        resolved = resolve_products_by_ids(ids, products)
        if not resolved:
            continue
        parts = [
            f"\n=== PRODUCTS BY OEM/VENDOR: {name} ({len(resolved)} products) ===\n",
            f"These are all products from {name}:\n\n",
        ]
        for i, p in enumerate(resolved, start=1):
            parts.append(f"{i}. **{p.name}**\n")
            parts.append(_price_line(p))
            parts.append(f"   Category: {p.category_path}\n")
            parts.append(_description_line(p))
            parts.append("\n")
        parts.append(f"=== END PRODUCTS BY OEM/VENDOR: {name} ===\n\n")
        return "".join(parts)
    return ""


AugmentationPolicy = Callable[[str, Sequence[Product], SignalsBundle], str]

AUGMENTATION_POLICIES: Tuple[AugmentationPolicy, ...] = (
    best_sellers_section,
    category_overview_section,
    category_products_section,
    oem_products_section,
)


def augment_with_signals(query_lower: str, products: Sequence[Product], bundle: SignalsBundle) -> str:
    if not products or bundle.is_empty:
        return ""
    return "".join(policy(query_lower, products, bundle) for policy in AUGMENTATION_POLICIES)

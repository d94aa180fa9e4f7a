from __future__ import annotations

import hashlib
import json
from collections import OrderedDict
from datetime import datetime
from typing import List, Sequence

from assistant.schemas.product import Product

NO_PRODUCTS_STATEMENT = (
    "No product information available at this time. "
    "Unable to fetch live marketplace data from the API."
)

FULL_LIST_LIMIT = 100
TOP_SELLING_LIMIT = 50


def format_amount(value: float) -> str:
    return f"₹{value:,.2f}"


def _mentions_three_years(product: Product) -> bool:
    for text in (product.name, product.subscription_hint or "", product.billing_cycle):
        if "3 year" in text.lower():
            return True
    return False


def format_price_details(product: Product) -> str:
    """Every known price/billing combination joined with ` | `."""
    details: List[str] = []
    if product.subscriptions:
        for sub in product.subscriptions:
            details.append(f"{format_amount(sub.price)}/{sub.plan}")
    elif not product.pricing.is_empty():
        pricing = product.pricing
        if pricing.monthly:
            details.append(f"{format_amount(pricing.monthly)}/Monthly")
        if pricing.yearly:
            details.append(f"{format_amount(pricing.yearly)}/Yearly")
        if pricing.triennial:
            details.append(f"{format_amount(pricing.triennial)}/3 Years")
        elif pricing.one_time and _mentions_three_years(product):
            details.append(f"{format_amount(pricing.one_time)}/3 Years")
        elif pricing.one_time:
            details.append(f"{format_amount(pricing.one_time)}/One Time")

    if not details:
        return f"{format_amount(product.price or 0.0)}/{product.billing_cycle or 'Monthly'}"
    return " | ".join(details)


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def format_added_date(value: datetime) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def _product_entry(index: int, product: Product, *, show_added: bool = False) -> str:
    lines = [
        f"{index}. {product.name}",
        f"   Vendor: {product.vendor}",
        f"   Price: {format_price_details(product)}",
        f"   Category: {product.category_path}",
    ]
    if product.url:
        lines.append(f"   Link: {product.url}")
    if show_added and product.created_at is not None:
        lines.append(f"   Added: {format_added_date(product.created_at)}")
    if product.description:
        lines.append(f"   Description: {product.description[:150]}...")
    return "\n".join(lines) + "\n\n"


def _group(products: Sequence[Product], attr: str, default: str) -> "OrderedDict[str, List[Product]]":
    groups: "OrderedDict[str, List[Product]]" = OrderedDict()
    for product in products:
        key = getattr(product, attr) or default
        groups.setdefault(key, []).append(product)
    return groups


def format_products_for_knowledge_base(products: Sequence[Product], include_full_list: bool = False) -> str:
    """Render the base catalog listing fed to the completion prompt.

    Output depends only on `products` (order and flags) and the variant, so the
    same catalog always yields the same text.
    """
    if not products:
        return NO_PRODUCTS_STATEMENT

    parts: List[str] = ["\n\n=== SKYSECURE MARKETPLACE PRODUCTS ===\n\n"]
    parts.append(f"Total Products Available: {len(products)}\n\n")

    by_category = _group(products, "category", "Uncategorized")
    by_sub_category = _group(products, "sub_category", "General")

    parts.append("=== MARKETPLACE CATEGORIES (Simple List) ===\n")
    # Stable sort keeps first-seen order for equal counts.
    for category, items in sorted(by_category.items(), key=lambda kv: -len(kv[1])):
        parts.append(f"- {category}: {len(items)} products\n")
    parts.append("=== END SIMPLE CATEGORIES ===\n\n")
    parts.append(
        'NOTE: For detailed category hierarchy with sub-categories and sub-sub-categories, '
        'see the "MARKETPLACE CATEGORY HIERARCHY" section below.\n\n'
    )

    for sub_category, items in by_sub_category.items():
        if sub_category == "General":
            continue
        parts.append(f"{sub_category.upper()} PRODUCTS ({len(items)} products):\n")
        for product in sorted(items, key=lambda p: -(p.price or 0.0)):
            parts.append(f"  - {product.name} ({product.vendor}): {format_price_details(product)}\n")
            if product.url:
                parts.append(f"    Link: {product.url}\n")
        parts.append("\n")

    if include_full_list:
        parts.append("\nALL PRODUCTS LIST:\n")
        for index, product in enumerate(products[:FULL_LIST_LIMIT], start=1):
            parts.append(f"{index}. {product.name} ({product.vendor})\n")
            parts.append(f"   Category: {product.category_path}\n")
            parts.append(f"   Price: {format_price_details(product)}\n")
            if product.url:
                parts.append(f"   Link: {product.url}\n")
            if product.description:
                parts.append(f"   Description: {product.description[:100]}...\n")
            parts.append("\n")
        if len(products) > FULL_LIST_LIMIT:
            parts.append(f"... and {len(products) - FULL_LIST_LIMIT} more products\n\n")
    else:
        parts.append(
            "\nNOTE: The comprehensive product list is omitted for brevity. "
            "Use semantic search results to find specific products.\n\n"
        )

    featured = [p for p in products if p.is_featured]
    parts.append(f"\n=== FEATURED PRODUCTS ({len(featured)} products) ===\n")
    if featured:
        parts.append("These are the FEATURED products in SkySecure Marketplace:\n\n")
        parts.extend(_product_entry(i, p) for i, p in enumerate(featured, start=1))
    else:
        parts.append('Note: No products are currently marked as "featured" in the system.\n')
    parts.append("=== END FEATURED PRODUCTS ===\n\n")

    top_selling = [p for p in products if p.is_top_selling]
    parts.append(f"\n=== TOP SELLING / BEST SELLING PRODUCTS ({len(top_selling)} products) ===\n")
    if top_selling:
        parts.append("These are the BEST SELLING products in SkySecure Marketplace:\n\n")
        parts.extend(_product_entry(i, p) for i, p in enumerate(top_selling[:TOP_SELLING_LIMIT], start=1))
        if len(top_selling) > TOP_SELLING_LIMIT:
            parts.append(f"... and {len(top_selling) - TOP_SELLING_LIMIT} more best selling products\n\n")
    else:
        parts.append('Note: No products are currently marked as "best selling" in the system.\n')
    parts.append("=== END BEST SELLING PRODUCTS ===\n\n")

    recent = [p for p in products if p.is_latest]
    # Newest first; undated entries last in their original order.
    recent.sort(key=lambda p: (p.created_at is None, -(p.created_at.timestamp() if p.created_at else 0.0)))
    parts.append(f"\n=== RECENTLY ADDED PRODUCTS ({len(recent)} products) ===\n")
    if recent:
        parts.append("These are the RECENTLY ADDED products in SkySecure Marketplace:\n\n")
        parts.extend(_product_entry(i, p, show_added=True) for i, p in enumerate(recent, start=1))
    else:
        parts.append('Note: No products are currently marked as "recently added" in the system.\n')
    parts.append("=== END RECENTLY ADDED PRODUCTS ===\n\n")

    for category, items in by_category.items():
        priced = [p for p in items if p.price > 0]
        if priced:
            top = max(priced, key=lambda p: p.price)
            parts.append(f"Most Expensive in {category}: {top.name} - {format_price_details(top)}\n")

    parts.append("\n=== END PRODUCT DATA ===\n")
    return "".join(parts)


def catalog_fingerprint(products: Sequence[Product]) -> str:
    """Short digest over every rendered field of every product."""
    payload = [p.model_dump(mode="json") for p in products]
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]

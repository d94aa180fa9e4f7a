from typing import List, Sequence

from assistant.schemas.product import Product
from assistant.services.catalog.formatter import format_amount, truncate


def _pricing_line(product: Product) -> str:
    pricing = product.pricing
    prices: List[str] = []
    if pricing.monthly:
        prices.append(f"{format_amount(pricing.monthly)} / Monthly")
    if pricing.yearly:
        prices.append(f"{format_amount(pricing.yearly)} / Yearly")
    if pricing.one_time:
        prices.append(f"{format_amount(pricing.one_time)} / One Time")
    if pricing.triennial:
        prices.append(f"{format_amount(pricing.triennial)} / 3 Years")
    for sub in product.subscriptions:
        prices.append(f"{format_amount(sub.price)} / {sub.plan}")
    if prices:
        return f"Pricing: {' | '.join(prices)}\n"
    if product.price > 0:
        return f"Price: {format_amount(product.price)} / {product.billing_cycle}\n"
    return ""


def product_to_chunk(product: Product, max_description_chars: int = 500) -> str:
    """One self-contained retrieval chunk per catalog entry."""
    chunk = f"Product: {product.name}\n"
    if product.category:
        chunk += f"Category: {product.category}\n"
    if product.sub_category:
        chunk += f"SubCategory: {product.sub_category}\n"
    if product.vendor:
        chunk += f"Vendor: {product.vendor}\n"
    chunk += _pricing_line(product)
    if product.description:
        chunk += f"Description: {truncate(product.description, max_description_chars)}\n"
    if product.features:
        chunk += f"Features: {', '.join(product.features)}\n"
    if product.url:
        chunk += f"URL: {product.url}\n"
    chunk += f"\nFull Product Name: {product.name}"
    return chunk


def products_to_text_chunks(products: Sequence[Product], max_description_chars: int = 500) -> List[str]:
    return [product_to_chunk(p, max_description_chars) for p in products]

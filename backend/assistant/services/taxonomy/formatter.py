from typing import Callable, List, Sequence

from assistant.schemas.product import Product
from assistant.schemas.taxonomy import CategoryNode, Oem, Taxonomy

TAXONOMY_UNAVAILABLE_BLOCK = (
    "\n=== MARKETPLACE CATEGORY HIERARCHY ===\n"
    "Unable to fetch category hierarchy from API at this time.\n"
    "=== END CATEGORY HIERARCHY ===\n\n"
)


def _count(products: Sequence[Product], predicate: Callable[[Product], bool]) -> int:
    return sum(1 for p in products if predicate(p))


def _matches(node: CategoryNode) -> Callable[[Product], bool]:
    if node.level == 1:
        return lambda p: p.category == node.name or (bool(node.id) and p.category_id == node.id)
    if node.level == 2:
        return lambda p: p.sub_category == node.name or (bool(node.id) and p.sub_category_id == node.id)
    return lambda p: p.sub_sub_category == node.name or (bool(node.id) and p.sub_sub_category_id == node.id)


def _oem_matches(oem: Oem) -> Callable[[Product], bool]:
    return lambda p: p.vendor == oem.name or (bool(oem.id) and p.oem_id == oem.id)


def format_category_hierarchy(taxonomy: Taxonomy, products: Sequence[Product]) -> str:
    lines: List[str] = [
        "\n=== MARKETPLACE CATEGORY HIERARCHY (Live Data from API) ===\n\n",
        "This section shows the COMPLETE hierarchical structure of categories in SkySecure Marketplace.\n",
        "Main categories are numbered (1., 2., etc.), sub-categories are indented (1.1, 1.2, etc.), "
        "and sub-sub-categories are further indented (1.1.1, 1.1.2, etc.).\n\n",
    ]

    if not taxonomy.categories:
        lines.append("No category hierarchy available from API.\n\n")
    for i, category in enumerate(taxonomy.categories, start=1):
        lines.append(f"{i}. {category.name} ({_count(products, _matches(category))} products)\n")
        for j, sub in enumerate(category.children, start=1):
            lines.append(f"   {i}.{j} {sub.name} ({_count(products, _matches(sub))} products)\n")
            for k, leaf in enumerate(sub.children, start=1):
                lines.append(f"      {i}.{j}.{k} {leaf.name} ({_count(products, _matches(leaf))} products)\n")
        lines.append("\n")
    lines.append("=== END CATEGORY HIERARCHY ===\n\n")

    lines.append("\n=== ORIGINAL EQUIPMENT MANUFACTURERS (OEMs) ===\n\n")
    lines.append(
        "OEMs (Original Equipment Manufacturers) are vendors/brands that provide products "
        "in SkySecure Marketplace.\n"
    )
    if not taxonomy.oems:
        lines.append("No OEMs available from API.\n\n")
    else:
        lines.append("Available OEMs:\n")
        for i, oem in enumerate(taxonomy.oems, start=1):
            lines.append(f"{i}. {oem.name} ({_count(products, _oem_matches(oem))} products)\n")
    lines.append("=== END OEMs ===\n\n")
    return "".join(lines)

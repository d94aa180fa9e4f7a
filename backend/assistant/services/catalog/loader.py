from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from assistant.core.config import Settings, settings as default_settings
from assistant.core.exceptions import UpstreamError
from assistant.core.logging import get_logger
from assistant.schemas.product import Pricing, Product, Subscription
from assistant.services.cache.ttl_cache import TTLCache
from assistant.services.taxonomy.envelopes import UnrecognizedEnvelope, decode_envelope

logger = get_logger(__name__)

CATALOG_CACHE_KEY = "catalog:products"

# Ordered: the first keyword found in name or description wins.
VENDOR_KEYWORDS = (
    ("dynamics", "Microsoft"),
    ("office 365", "Microsoft"),
    ("microsoft", "Microsoft"),
    ("google", "Google"),
    ("adobe", "Adobe"),
    ("oracle", "Oracle"),
    ("intel", "Intel"),
    ("aws", "AWS"),
    ("amazon web services", "AWS"),
    ("azure", "Microsoft"),
    ("vmware", "VMware"),
    ("cisco", "Cisco"),
    ("sophos", "Sophos"),
    ("tally", "Tally"),
    ("kaspersky", "Kaspersky"),
    ("bitdefender", "Bitdefender"),
    ("autodesk", "Autodesk"),
    ("veeam", "Veeam"),
    ("veritas", "Veritas"),
    ("acronis", "Acronis"),
    ("trend micro", "Trend Micro"),
    ("symantec", "Symantec"),
    ("mcafee", "McAfee"),
    ("skysecure", "SkySecure"),
    ("crowdstrike", "CrowdStrike"),
    ("sentinelone", "SentinelOne"),
    ("fortinet", "Fortinet"),
    ("palo alto", "Palo Alto Networks"),
    ("checkpoint", "Check Point"),
    ("zscaler", "Zscaler"),
    ("okta", "Okta"),
    ("sailpoint", "SailPoint"),
    ("cyberark", "CyberArk"),
    ("netapp", "NetApp"),
    ("dell", "Dell"),
    ("lenovo", "Lenovo"),
    ("ibm", "IBM"),
    ("red hat", "Red Hat"),
    ("ubuntu", "Canonical"),
    ("suse", "SUSE"),
    ("zoom", "Zoom"),
    ("slack", "Slack"),
    ("atlassian", "Atlassian"),
    ("jira", "Atlassian"),
    ("confluence", "Atlassian"),
    ("salesforce", "Salesforce"),
    ("servicenow", "ServiceNow"),
    ("workday", "Workday"),
    ("dropbox", "Dropbox"),
    ("docusign", "DocuSign"),
)

_PLAN_LABELS = {
    "monthly": "Monthly",
    "yearly": "Yearly",
    "annual": "Yearly",
    "onetime": "One Time",
    "one_time": "One Time",
    "one time": "One Time",
}


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.replace(",", "").replace("₹", "").strip()
        try:
            return float(cleaned)
        except ValueError:
            return 0.0
    return 0.0


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    return ""


def _as_str_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, list):
        return []
    out: List[str] = []
    for item in value:
        if isinstance(item, str) and item.strip():
            out.append(item.strip())
        elif isinstance(item, dict):
            label = _as_text(item.get("name") or item.get("title") or item.get("value"))
            if label:
                out.append(label)
    return out


def _first_detail(record: Dict[str, Any], key: str) -> Dict[str, Any]:
    details = record.get(key)
    if isinstance(details, list) and details and isinstance(details[0], dict):
        return details[0]
    return {}


def _detail_id(detail: Dict[str, Any]) -> Optional[str]:
    value = detail.get("_id") or detail.get("id")
    return str(value) if value else None


def _plan_label(value: Any) -> Optional[str]:
    text = _as_text(value)
    if not text:
        return None
    return _PLAN_LABELS.get(text.lower(), text)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _description(record: Dict[str, Any]) -> str:
    raw = record.get("description")
    if isinstance(raw, dict):
        return _as_text(raw.get("clean")) or _as_text(raw.get("raw"))
    return _as_text(raw) or _as_text(record.get("overview"))


def _pricing(record: Dict[str, Any]) -> Pricing:
    raw = record.get("pricing")
    if not isinstance(raw, dict):
        return Pricing()
    return Pricing(
        monthly=_as_float(raw.get("monthly")) or None,
        yearly=_as_float(raw.get("yearly")) or None,
        one_time=_as_float(raw.get("oneTime") or raw.get("one_time")) or None,
        triennial=_as_float(raw.get("triennial")) or None,
    )


def _subscriptions(record: Dict[str, Any]) -> List[Subscription]:
    raw = record.get("subscriptions")
    if not isinstance(raw, list):
        return []
    subs: List[Subscription] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        subs.append(
            Subscription(
                plan=_plan_label(item.get("plan")) or "Monthly",
                price=_as_float(item.get("sellingPrice") or item.get("price")),
            )
        )
    return subs


def _price_and_cycle(record: Dict[str, Any], pricing: Pricing, subs: List[Subscription]) -> Tuple[float, str]:
    if pricing.yearly:
        return pricing.yearly, "Yearly"
    if pricing.monthly:
        return pricing.monthly, "Monthly"
    if pricing.one_time:
        return pricing.one_time, "One Time"
    if subs:
        return subs[0].price, subs[0].plan

    raw = record.get("raw")
    hint = raw.get("subscriptionHint") if isinstance(raw, dict) else None
    price = _as_float(record.get("price"))
    cycle = (
        _plan_label(record.get("billingCycle"))
        or _plan_label(record.get("defaultPlan"))
        or _plan_label(hint)
        or "Monthly"
    )
    return price, cycle


def infer_vendor(name: str, description: str) -> Optional[str]:
    name_lower = name.lower()
    desc_lower = description.lower()
    for keyword, vendor in VENDOR_KEYWORDS:
        if keyword in name_lower or keyword in desc_lower:
            return vendor
    return None


def normalize_product(record: Any) -> Optional[Product]:
    """Map a raw product record (file or API shape) onto `Product`.

    Missing or malformed fields fall back to defaults. Returns None only when
    the record is not a mapping or carries no id at all.
    """
    if not isinstance(record, dict):
        return None
    product_id = _as_text(record.get("id") or record.get("_id"))
    if not product_id:
        return None

    name = _as_text(record.get("name")) or "Unnamed Product"
    description = _description(record)
    pricing = _pricing(record)
    subs = _subscriptions(record)
    price, cycle = _price_and_cycle(record, pricing, subs)

    oem = _first_detail(record, "oemDetails")
    category_detail = _first_detail(record, "categoryDetails")
    sub_detail = _first_detail(record, "subCategoryDetails")
    sub_sub_detail = _first_detail(record, "subSubCategoryDetails")

    vendor = (
        _as_text(record.get("vendor"))
        or _as_text(oem.get("title") or oem.get("name"))
        or infer_vendor(name, description)
        or "Unknown Vendor"
    )
    category = (
        _as_text(record.get("category"))
        or _as_text(category_detail.get("name"))
        or "Uncategorized"
    )
    sub_category = (
        _as_text(record.get("subCategory"))
        or _as_text(sub_detail.get("name"))
        or category
    )

    raw = record.get("raw") if isinstance(record.get("raw"), dict) else {}
    return Product(
        id=product_id,
        name=name,
        vendor=vendor,
        category=category,
        category_id=_as_text(record.get("categoryId")) or _detail_id(category_detail),
        sub_category=sub_category,
        sub_category_id=_as_text(record.get("subCategoryId")) or _detail_id(sub_detail),
        sub_sub_category=_as_text(record.get("subSubCategory") or sub_sub_detail.get("name")) or None,
        sub_sub_category_id=_as_text(record.get("subSubCategoryId")) or _detail_id(sub_sub_detail),
        oem_id=_as_text(record.get("oemId")) or _detail_id(oem),
        price=price,
        billing_cycle=cycle,
        currency=_as_text(record.get("currency")) or "INR",
        description=description,
        features=_as_str_list(record.get("features")),
        tags=_as_str_list(record.get("tags")),
        pricing=pricing,
        subscriptions=subs,
        subscription_hint=_as_text(record.get("subscriptionHint") or raw.get("subscriptionHint")) or None,
        url=_as_text(record.get("url")),
        created_at=_parse_datetime(record.get("createdAt") or record.get("created_at")),
        api_featured=record.get("isFeatured") is True,
        api_top_selling=any(record.get(k) is True for k in ("isTopSelling", "topSelling", "isBestSelling")),
        api_latest=record.get("isLatest") is True,
    )


def normalize_products(records: Iterable[Any]) -> List[Product]:
    products: List[Product] = []
    seen = set()
    skipped = 0
    for record in records:
        product = normalize_product(record)
        if product is None or product.id in seen:
            skipped += 1
            continue
        seen.add(product.id)
        products.append(product)
    if skipped:
        logger.debug(f"Skipped {skipped} catalog records without usable id")
    return products


class CatalogLoader:
    """Loads the product collection through the shared TTL cache.

    The file source is the default; `CATALOG_SOURCE=api` switches to the live
    product API. Either way a failed refresh keeps serving the last good
    catalog, and with nothing cached the result is an empty list.
    """

    def __init__(
        self,
        cache: TTLCache,
        *,
        config: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.cache = cache
        self.config = config or default_settings
        self.http_client = http_client

    @property
    def products_path(self) -> Path:
        return self.config.data_path / self.config.PRODUCTS_FILE

    async def load_products(self) -> List[Product]:
        try:
            return await self.cache.get_or_fetch(
                CATALOG_CACHE_KEY,
                self.config.CATALOG_TTL_SECONDS,
                self._fetch,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(f"Catalog unavailable, continuing without products: {exc}")
            return []

    async def _fetch(self) -> List[Product]:
        if (self.config.CATALOG_SOURCE or "file").lower() == "api":
            return await self.fetch_products_from_api()
        return await asyncio.to_thread(self._read_file, self.products_path)

    @staticmethod
    def _read_file(path: Path) -> List[Product]:
        with path.open("r", encoding="utf-8") as f:
            payload = json.load(f)
        envelope = decode_envelope(payload, source=str(path.name))
        if isinstance(envelope, UnrecognizedEnvelope):
            raise ValueError(f"{path.name} does not contain a product list")
        products = normalize_products(envelope.items)
        logger.info(f"Loaded {len(products)} products from {path.name}")
        return products

    async def fetch_products_from_api(self, client: Optional[httpx.AsyncClient] = None) -> List[Product]:
        client = client or self.http_client
        base_url = self.config.PRODUCT_SERVICE_BACKEND_URL.rstrip("/")
        url = f"{base_url}/products/public/products"
        params = {"page": 1, "limit": 500, "sortBy": "createdAt", "sortOrder": "desc"}

        owns_client = client is None
        if owns_client:
            client = httpx.AsyncClient(timeout=self.config.CATALOG_FETCH_TIMEOUT)
        try:
            response = await client.get(url, params=params, timeout=self.config.CATALOG_FETCH_TIMEOUT)
            if response.status_code != 200:
                raise UpstreamError("products", f"HTTP {response.status_code}", response.status_code)
            try:
                payload = response.json()
            except ValueError as exc:
                raise UpstreamError("products", f"invalid JSON body: {exc}") from exc
        finally:
            if owns_client:
                await client.aclose()

        envelope = decode_envelope(payload, source="products")
        products = normalize_products(envelope.items)
        if not products:
            # Treat an empty live catalog as a failed refresh so the cache keeps the last one.
            raise UpstreamError("products", "no products in response")
        logger.info(f"Fetched {len(products)} products from product API")
        return products

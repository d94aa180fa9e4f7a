from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from assistant.core.config import Settings, settings as default_settings
from assistant.core.exceptions import UpstreamError
from assistant.core.logging import get_logger
from assistant.schemas.taxonomy import CategoryNode, Oem, Taxonomy
from assistant.services.cache.ttl_cache import TTLCache
from assistant.services.taxonomy.envelopes import decode_envelope

logger = get_logger(__name__)

TAXONOMY_CACHE_KEY = "taxonomy:live"

_SUB_KEYS = ("subcategories", "subCategories")
_SUB_SUB_KEYS = ("subSubcategories", "subSubCategories")


def _node_id(raw: Dict[str, Any]) -> str:
    value = raw.get("_id") or raw.get("id")
    return str(value) if value else ""


def _node_name(raw: Dict[str, Any], fallback: str) -> str:
    name = raw.get("name") or raw.get("title")
    return name.strip() if isinstance(name, str) and name.strip() else fallback


def _children(raw: Dict[str, Any], keys: Tuple[str, ...]) -> List[Dict[str, Any]]:
    for key in keys:
        value = raw.get(key)
        if isinstance(value, list):
            return [v for v in value if isinstance(v, dict)]
    return []


def parse_category(raw: Dict[str, Any], index: int) -> CategoryNode:
    category_id = _node_id(raw)
    node = CategoryNode(id=category_id, name=_node_name(raw, f"Category {index + 1}"), level=1)
    for sub_index, sub_raw in enumerate(_children(raw, _SUB_KEYS)):
        sub = CategoryNode(
            id=_node_id(sub_raw),
            name=_node_name(sub_raw, f"Sub-category {sub_index + 1}"),
            parent_id=category_id or None,
            level=2,
        )
        for leaf_index, leaf_raw in enumerate(_children(sub_raw, _SUB_SUB_KEYS)):
            sub.children.append(
                CategoryNode(
                    id=_node_id(leaf_raw),
                    name=_node_name(leaf_raw, f"Sub-sub-category {leaf_index + 1}"),
                    parent_id=sub.id or None,
                    level=3,
                )
            )
        node.children.append(sub)
    return node


def parse_oem(raw: Dict[str, Any], index: int) -> Oem:
    keywords = raw.get("keywords")
    return Oem(
        id=_node_id(raw),
        name=_node_name(raw, f"OEM {index + 1}"),
        keywords=[k for k in keywords if isinstance(k, str)] if isinstance(keywords, list) else [],
    )


class TaxonomyFetcher:
    """Live category/OEM hierarchy behind the shared TTL cache."""

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
    def categories_url(self) -> str:
        return f"{self.config.PRODUCT_SERVICE_BACKEND_URL.rstrip('/')}/categories/get-grouped-categories"

    @property
    def oems_url(self) -> str:
        return f"{self.config.PRODUCT_SERVICE_BACKEND_URL.rstrip('/')}/oems/public/get-all-oems"

    async def fetch(self) -> Taxonomy:
        """Cached taxonomy; stale on refresh failure; empty when nothing was ever fetched."""
        try:
            return await self.cache.get_or_fetch(
                TAXONOMY_CACHE_KEY,
                self.config.TAXONOMY_TTL_SECONDS,
                self.fetch_live,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Taxonomy unavailable, using empty taxonomy: {e}")
            return Taxonomy(source="empty")

    async def fetch_live(self) -> Taxonomy:
        limit = self.config.TAXONOMY_PAGE_LIMIT
        if self.http_client is not None:
            categories, oems = await self._fetch_both(self.http_client, limit)
        else:
            async with httpx.AsyncClient(timeout=self.config.TAXONOMY_FETCH_TIMEOUT) as client:
                categories, oems = await self._fetch_both(client, limit)

        if not categories and not oems:
            raise UpstreamError("taxonomy", "no categories or OEMs returned")

        logger.info(f"Fetched taxonomy: {len(categories)} categories, {len(oems)} OEMs")
        return Taxonomy(
            categories=[parse_category(raw, i) for i, raw in enumerate(categories)],
            oems=[parse_oem(raw, i) for i, raw in enumerate(oems)],
            fetched_at=datetime.now(timezone.utc),
            source="live",
        )

    async def _fetch_both(self, client: httpx.AsyncClient, limit: int):
        return await asyncio.gather(
            self._get_items(
                client,
                self.categories_url,
                {"page": 1, "limit": limit, "subCategoryLimit": limit},
                source="categories",
            ),
            self._get_items(client, self.oems_url, {"page": 1, "limit": limit}, source="oems"),
        )

    async def _get_items(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Dict[str, Any],
        *,
        source: str,
    ) -> List[Dict[str, Any]]:
        # Transport errors propagate so the cache can fall back to its last value.
        response = await client.get(url, params=params, timeout=self.config.TAXONOMY_FETCH_TIMEOUT)
        if response.status_code != 200:
            logger.warning(f"{source} API returned status {response.status_code}: {response.text[:200]}")
            return []
        try:
            payload = response.json()
        except ValueError:
            logger.warning(f"{source} API returned a non-JSON body")
            return []
        return decode_envelope(payload, source=source).items

"""Repair truncated product links in completion output using the catalog."""

from __future__ import annotations

import re
from typing import Dict, Optional, Sequence

from assistant.core.logging import get_logger
from assistant.schemas.product import Product

logger = get_logger(__name__)

PRODUCT_ID_LENGTH = 24
ID_SUFFIX_LENGTH = 12

_PRODUCT_URL_SLUG = re.compile(r"/products/(.*)--[a-f0-9]{24}", re.IGNORECASE)

# Names the completion model tends to shorten.
SLUG_ALIASES: Dict[str, str] = {
    "power-bi-premium": "power-bi-premium-per-user",
    "power-bi-premium-add-on": "power-bi-premium-per-user-add-on",
    "azure-sql-edge": "azure-sql-edge-1-year",
}


def _link_pattern(base_url: str) -> "re.Pattern[str]":
    origin = re.escape(base_url.rstrip("/"))
    return re.compile(origin + r"/products/([^\s\"')]*)--([a-f0-9]+)", re.IGNORECASE)


class _LinkIndex:
    def __init__(self, products: Sequence[Product]):
        self.by_id: Dict[str, str] = {}
        self.by_suffix: Dict[str, str] = {}
        self.by_slug: Dict[str, str] = {}
        self.by_segment: Dict[str, str] = {}
        for p in products:
            if not p.id or not p.url:
                continue
            pid = p.id.lower()
            self.by_id[pid] = p.url
            if len(pid) == PRODUCT_ID_LENGTH:
                self.by_suffix[pid[ID_SUFFIX_LENGTH:]] = p.url
            m = _PRODUCT_URL_SLUG.search(p.url)
            if m and m.group(1):
                slug = m.group(1).lower()
                self.by_slug.setdefault(slug, p.url)
                self.by_segment.setdefault(slug.split("--")[-1], p.url)

    def repair(self, slug: str, pid: str) -> Optional[str]:
        if slug in self.by_slug:
            return self.by_slug[slug]

        segment = slug.split("--")[-1]
        target = SLUG_ALIASES.get(segment, segment)
        if target in self.by_segment:
            return self.by_segment[target]
        if segment:
            for known, url in self.by_segment.items():
                if known.startswith(segment) or segment.startswith(known):
                    return url

        if len(pid) >= 10:
            suffix = pid[-ID_SUFFIX_LENGTH:] if len(pid) > ID_SUFFIX_LENGTH else pid
            if suffix in self.by_suffix:
                return self.by_suffix[suffix]
        return None


def repair_product_links(text: str, products: Sequence[Product], base_url: str) -> str:
    """Rewrite product URLs whose trailing id is missing or wrong.

    Valid links are left alone; links nothing matches are left as written.
    """
    if not text or not products:
        return text
    index = _LinkIndex(products)
    if not index.by_id:
        return text

    def _fix(match: "re.Match[str]") -> str:
        slug = (match.group(1) or "").lower()
        pid = match.group(2).lower()
        if len(pid) == PRODUCT_ID_LENGTH and pid in index.by_id:
            return match.group(0)
        repaired = index.repair(slug, pid)
        if repaired:
            logger.info(f"Repaired product link {match.group(0)} -> {repaired}")
            return repaired
        logger.warning(f"No repair found for product link {match.group(0)}")
        return match.group(0)

    return _link_pattern(base_url).sub(_fix, text)

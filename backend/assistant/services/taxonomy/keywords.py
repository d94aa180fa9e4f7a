from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from assistant.core.config import Settings, settings as default_settings
from assistant.core.logging import get_logger
from assistant.schemas.taxonomy import Taxonomy
from assistant.services.cache.ttl_cache import TTLCache
from assistant.services.taxonomy.fetcher import TaxonomyFetcher

logger = get_logger(__name__)

KEYWORD_TABLE_CACHE_KEY = "taxonomy:keyword_table"


@dataclass(frozen=True)
class KeywordEntry:
    id: str
    label: str
    keywords: Tuple[str, ...]


@dataclass(frozen=True)
class KeywordTable:
    categories: Tuple[KeywordEntry, ...]
    oems: Tuple[KeywordEntry, ...]
    source: str = "live"


STATIC_CATEGORY_ENTRIES: Tuple[KeywordEntry, ...] = (
    KeywordEntry(
        "6942ac81d91c1f7c88d02bbb",
        "Cloud services",
        ("cloud management", "cloud services", "cloud", "azure", "aws", "cloud platform"),
    ),
    KeywordEntry(
        "6942ac70d91c1f7c88d02bad",
        "Data Management",
        ("data management", "data", "database", "data products", "storage", "data storage", "sql", "nosql"),
    ),
    KeywordEntry(
        "6942ac61d91c1f7c88d02b9f",
        "Collaboration Tools",
        ("collaboration", "collaboration tools", "teams", "chat", "sharepoint", "onedrive", "teamwork"),
    ),
    KeywordEntry(
        "6942ac51d91c1f7c88d02b91",
        "Enterprise Applications",
        ("enterprise applications", "enterprise apps", "erp", "crm", "business apps"),
    ),
    KeywordEntry(
        "6942ac3ed91c1f7c88d02b83",
        "Governance and Compliance",
        ("governance", "compliance", "governance and compliance", "regulatory", "audit"),
    ),
    KeywordEntry(
        "6942ac2dd91c1f7c88d02b75",
        "Identity and Access Management",
        ("identity", "identity and access", "iam", "security", "authentication", "access management"),
    ),
    KeywordEntry(
        "6942ab6ad91c1f7c88d02b5a",
        "Communication",
        ("communication", "communication tools", "calling", "video", "conferencing"),
    ),
)

STATIC_OEM_ENTRIES: Tuple[KeywordEntry, ...] = (
    KeywordEntry("68931b8d7874310ffca28d65", "Microsoft", ("microsoft", "office", "azure", "ms")),
)

STATIC_KEYWORD_TABLE = KeywordTable(STATIC_CATEGORY_ENTRIES, STATIC_OEM_ENTRIES, source="static")

# (triggers found in the lowercased name, synonyms appended)
CATEGORY_SYNONYMS: Tuple[Tuple[Tuple[str, ...], Tuple[str, ...]], ...] = (
    (("data", "database"), ("sql", "nosql", "data products", "data storage")),
    (("cloud",), ("azure", "aws", "cloud platform", "cloud management")),
    (("collaboration",), ("teams", "sharepoint", "onedrive", "teamwork", "chat")),
    (("enterprise",), ("erp", "crm", "business apps", "enterprise apps")),
    (("governance", "compliance"), ("regulatory", "audit")),
    (("identity", "access"), ("iam", "security", "authentication", "access management")),
    (("communication",), ("calling", "video", "conferencing")),
)

OEM_SYNONYMS: Tuple[Tuple[Tuple[str, ...], Tuple[str, ...]], ...] = (
    (("microsoft",), ("office", "azure", "ms", "microsoft 365", "office 365")),
)

_WORD_SPLIT = re.compile(r"[\s-]+")


def _dedupe(values: Iterable[str]) -> Tuple[str, ...]:
    seen = set()
    out: List[str] = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            out.append(value)
    return tuple(out)


def expand_keywords(
    name: str,
    synonyms: Sequence[Tuple[Tuple[str, ...], Tuple[str, ...]]],
    extra: Iterable[str] = (),
) -> Tuple[str, ...]:
    lowered = name.strip().lower()
    words = [w for w in _WORD_SPLIT.split(lowered) if len(w) > 2]
    keywords: List[str] = [lowered, *words]
    for triggers, additions in synonyms:
        if any(t in lowered for t in triggers):
            keywords.extend(additions)
    keywords.extend(k.strip().lower() for k in extra)
    return _dedupe(keywords)


def build_keyword_table(taxonomy: Taxonomy) -> KeywordTable:
    """Keyword table from the live taxonomy, or the static table when it yields nothing.

    Entry order follows the taxonomy order; the intent resolver relies on it
    as its tie-break.
    """
    categories: List[KeywordEntry] = []
    for _category, sub in taxonomy.iter_subcategories():
        if not sub.id or not sub.name:
            continue
        categories.append(KeywordEntry(sub.id, sub.name, expand_keywords(sub.name, CATEGORY_SYNONYMS)))

    oems: List[KeywordEntry] = []
    for oem in taxonomy.oems:
        if not oem.id or not oem.name:
            continue
        oems.append(KeywordEntry(oem.id, oem.name, expand_keywords(oem.name, OEM_SYNONYMS, oem.keywords)))

    if not categories and not oems:
        return STATIC_KEYWORD_TABLE
    return KeywordTable(
        categories=tuple(categories) or STATIC_CATEGORY_ENTRIES,
        oems=tuple(oems) or STATIC_OEM_ENTRIES,
        source="live",
    )


class KeywordTableProvider:
    """Caches the built table for the taxonomy TTL. Never raises for missing data."""

    def __init__(
        self,
        fetcher: TaxonomyFetcher,
        cache: TTLCache,
        *,
        config: Optional[Settings] = None,
    ):
        self.fetcher = fetcher
        self.cache = cache
        self.config = config or default_settings

    async def get_table(self) -> KeywordTable:
        try:
            return await self.cache.get_or_fetch(
                KEYWORD_TABLE_CACHE_KEY,
                self.config.TAXONOMY_TTL_SECONDS,
                self._build,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Keyword table build failed, using static table: {e}")
            return STATIC_KEYWORD_TABLE

    async def _build(self) -> KeywordTable:
        taxonomy = await self.fetcher.fetch()
        table = build_keyword_table(taxonomy)
        if table.source == "static":
            # Do not pin the static table for a whole TTL; retry on the next call.
            raise LookupError("live taxonomy produced no keyword entries")
        logger.info(f"Built keyword table: {len(table.categories)} sub-categories, {len(table.oems)} OEMs")
        return table

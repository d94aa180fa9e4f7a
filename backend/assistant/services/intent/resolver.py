from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from assistant.core.logging import get_logger
from assistant.services.taxonomy.keywords import (
    STATIC_KEYWORD_TABLE,
    KeywordEntry,
    KeywordTable,
    KeywordTableProvider,
)

logger = get_logger(__name__)

EXACT_CONFIDENCE = 0.95
FUZZY_CONFIDENCE = 0.85
OEM_CONFIDENCE = 0.8


@dataclass(frozen=True)
class Intent:
    sub_category_id: Optional[str] = None
    category_name: Optional[str] = None
    oem_id: Optional[str] = None
    confidence: float = 0.0
    listing_urls: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def none(cls) -> "Intent":
        return cls()

    @property
    def has_category(self) -> bool:
        return bool(self.sub_category_id)

    @property
    def is_empty(self) -> bool:
        return not self.sub_category_id and not self.oem_id


def _site_origin(base_url: str) -> Optional[str]:
    parts = urlsplit(base_url or "")
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


def build_listing_urls(base_url: str, sub_category_id: Optional[str], oem_id: Optional[str]) -> Tuple[str, ...]:
    origin = _site_origin(base_url)
    if origin is None:
        return ()
    urls: List[str] = []
    if sub_category_id:
        urls.append(f"{origin}/products?subCategoryId={sub_category_id}")
    if oem_id:
        urls.append(f"{origin}/products?oemId={oem_id}")
    return tuple(urls)


def _match_entry(text: str, entry: KeywordEntry) -> Optional[float]:
    if any(keyword in text for keyword in entry.keywords):
        return EXACT_CONFIDENCE
    for keyword in entry.keywords:
        words = keyword.split()
        if words and all(word in text for word in words):
            return FUZZY_CONFIDENCE
    return None


class IntentResolver:
    """Maps free text onto one sub-category and one OEM.

    Matching is first-match over the keyword table order, not best-match.
    """

    def __init__(self, keyword_provider: Optional[KeywordTableProvider], base_url: str):
        self.keyword_provider = keyword_provider
        self.base_url = base_url

    def resolve_with_table(
        self,
        message: str,
        categories: Sequence[KeywordEntry],
        oems: Sequence[KeywordEntry],
    ) -> Intent:
        text = (message or "").lower()
        if not text.strip():
            return Intent.none()

        sub_category_id: Optional[str] = None
        category_name: Optional[str] = None
        oem_id: Optional[str] = None
        confidence = 0.0

        for entry in categories:
            matched = _match_entry(text, entry)
            if matched is not None:
                sub_category_id, category_name, confidence = entry.id, entry.label, matched
                break

        for entry in oems:
            if any(keyword in text for keyword in entry.keywords):
                oem_id = entry.id
                confidence = max(confidence, OEM_CONFIDENCE)
                break

        if sub_category_id is None and oem_id is None:
            return Intent.none()
        return Intent(
            sub_category_id=sub_category_id,
            category_name=category_name,
            oem_id=oem_id,
            confidence=confidence,
            listing_urls=build_listing_urls(self.base_url, sub_category_id, oem_id),
        )

    async def resolve(self, message: str) -> Intent:
        try:
            table = await self._table()
            intent = self.resolve_with_table(message, table.categories, table.oems)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Intent resolution failed, continuing without intent: {e}")
            return Intent.none()
        if intent.is_empty:
            logger.debug("No specific intent matched")
        else:
            logger.info(
                f"Intent resolved: category={intent.category_name} oem={intent.oem_id} "
                f"confidence={intent.confidence} (table={table.source})"
            )
        return intent

    async def _table(self) -> KeywordTable:
        if self.keyword_provider is None:
            return STATIC_KEYWORD_TABLE
        return await self.keyword_provider.get_table()


_GREETING = re.compile(
    r"^(hi|hii+|hello|hey|hiya|howdy|greetings|namaste|good\s+(morning|afternoon|evening)|yo)\b"
)

DOMAIN_KEYWORDS = (
    "software", "license", "licence", "subscription", "product", "plan", "price", "pricing",
    "cost", "buy", "purchase", "order", "checkout", "marketplace", "skysecure", "microsoft",
    "office", "azure", "cloud", "security", "email", "backup", "antivirus", "vendor", "oem",
    "category", "categories", "best selling", "best seller", "featured", "recommend",
    "compare", "team", "business", "enterprise", "user", "seat", "it ",
)

OFF_TOPIC_MARKERS = (
    "weather", "cricket", "football", "match score", "poem", "joke", "recipe", "movie",
    "politics", "election", "horoscope", "song", "lyrics", "homework", "solve this",
)


def is_greeting(message: str) -> bool:
    """Short salutation with nothing else of substance."""
    text = re.sub(r"[^\w\s]", " ", (message or "").lower()).strip()
    if not text or len(text.split()) > 4:
        return False
    return bool(_GREETING.match(text))


def is_domain_related(message: str, intent: Optional[Intent] = None) -> bool:
    """False only for messages that are clearly about something else."""
    if intent is not None and not intent.is_empty:
        return True
    text = f"{(message or '').lower()} "
    if any(keyword in text for keyword in DOMAIN_KEYWORDS):
        return True
    return not any(marker in text for marker in OFF_TOPIC_MARKERS)

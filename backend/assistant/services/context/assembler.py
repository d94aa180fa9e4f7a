"""Per-request knowledge assembly.

Sources are started together and awaited in a fixed order so a slow one only
costs its own budget. Every source has a fallback, so `assemble` always returns
a usable context.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from assistant.core.config import Settings, settings as default_settings
from assistant.core.logging import get_logger
from assistant.schemas.chat import ChatMessage
from assistant.schemas.product import Product
from assistant.schemas.taxonomy import Taxonomy
from assistant.services.cache.ttl_cache import TTLCache
from assistant.services.catalog.formatter import (
    NO_PRODUCTS_STATEMENT,
    catalog_fingerprint,
    format_products_for_knowledge_base,
)
from assistant.services.catalog.loader import CATALOG_CACHE_KEY, CatalogLoader
from assistant.services.catalog.signals import (
    SIGNALS_CACHE_KEY,
    SignalsBundle,
    SignalsLoader,
    apply_signals,
)
from assistant.services.context.augmentation import augment_with_signals
from assistant.services.context.timeouts import (
    STATUS_SKIPPED,
    RaceResult,
    SourceOutcome,
    race_with_timeout,
)
from assistant.services.conversation.guidance import (
    extract_user_preferences,
    guiding_question,
    quick_replies,
    stage_prompt,
)
from assistant.services.conversation.stage_tracker import ConversationState, track_conversation_state
from assistant.services.intent.resolver import Intent, IntentResolver
from assistant.services.search.chunking import products_to_text_chunks
from assistant.services.search.semantic_index import SemanticIndex, format_relevant_content
from assistant.services.taxonomy.fetcher import TAXONOMY_CACHE_KEY, TaxonomyFetcher
from assistant.services.taxonomy.formatter import TAXONOMY_UNAVAILABLE_BLOCK, format_category_hierarchy
from assistant.utils.debug_log import debug_log

logger = get_logger(__name__)

TRUNCATION_MARKER = "\n=== CONTEXT TRUNCATED: further sections omitted to stay within the size limit ===\n"


@dataclass
class AssembledContext:
    knowledge_block: str
    stage_instructions: str
    intent: Intent
    state: ConversationState
    quick_replies: List[str]
    outcomes: List[SourceOutcome] = field(default_factory=list)
    degraded: List[str] = field(default_factory=list)
    products: List[Product] = field(default_factory=list)


@dataclass
class SourceFetches:
    """The three per-request loads, started before anything awaits them."""

    catalog: "asyncio.Future[List[Product]]"
    signals: "asyncio.Future[SignalsBundle]"
    taxonomy: "asyncio.Future[Taxonomy]"

    def cancel(self) -> None:
        for task in (self.catalog, self.signals, self.taxonomy):
            if not task.done():
                task.cancel()


def _cut_at_line(text: str, limit: int) -> str:
    head = text[:limit]
    cut = head.rfind("\n")
    return head[: cut + 1] if cut > 0 else ""


def bound_sections(sections: Sequence[str], max_chars: int, pinned: Sequence[str] = ()) -> str:
    """Join sections in order and keep the result within `max_chars`.

    `pinned` text (query-triggered sections) is appended last and gets its room
    first, up to half the limit. The first section that no longer fits is cut at
    a line break; later ones are dropped and the truncation marker is added.
    """
    body = [s for s in sections if s]
    tail = "".join(s for s in pinned if s)
    joined = "".join(body) + tail
    if max_chars <= 0 or len(joined) <= max_chars:
        return joined

    if len(tail) > max_chars // 2:
        tail = _cut_at_line(tail, max_chars // 2)
    budget = max_chars - len(tail) - len(TRUNCATION_MARKER)
    if budget <= 0:
        return _cut_at_line(joined, max_chars) or joined[:max_chars]

    kept: List[str] = []
    used = 0
    for section in body:
        room = budget - used
        if len(section) <= room:
            kept.append(section)
            used += len(section)
            continue
        partial = _cut_at_line(section, room)
        if not partial and not kept:
            partial = section[:room]
        kept.append(partial)
        break

    return "".join(kept) + TRUNCATION_MARKER + tail


class ContextAssembler:
    def __init__(
        self,
        *,
        catalog: CatalogLoader,
        signals: SignalsLoader,
        taxonomy: TaxonomyFetcher,
        intent_resolver: IntentResolver,
        semantic_index: SemanticIndex,
        cache: TTLCache,
        config: Optional[Settings] = None,
    ):
        self.catalog = catalog
        self.signals = signals
        self.taxonomy = taxonomy
        self.intent_resolver = intent_resolver
        self.semantic_index = semantic_index
        self.cache = cache
        self.config = config or default_settings

    def _stale(self, key: str, default):
        # Expired entries are still better than nothing when a source times out.
        entry = self.cache.peek(key)
        return entry.value if entry is not None else default

    def start_sources(self) -> SourceFetches:
        return SourceFetches(
            catalog=asyncio.ensure_future(self.catalog.load_products()),
            signals=asyncio.ensure_future(self.signals.load()),
            taxonomy=asyncio.ensure_future(self.taxonomy.fetch()),
        )

    async def assemble(
        self,
        message: str,
        history: Optional[Sequence[ChatMessage]] = None,
        include_full_catalog: bool = False,
        intent: Optional[Intent] = None,
        sources: Optional[SourceFetches] = None,
    ) -> AssembledContext:
        cfg = self.config
        history = list(history or [])
        started = time.monotonic()
        outcomes: List[SourceOutcome] = []

        sources = sources or self.start_sources()
        catalog_task, signals_task, taxonomy_task = sources.catalog, sources.signals, sources.taxonomy

        try:
            if intent is None:
                intent = await self.resolve_intent(message, outcomes)

            state = track_conversation_state(history, message, intent)

            catalog_result = await race_with_timeout(
                catalog_task, cfg.CATALOG_FETCH_TIMEOUT, self._stale(CATALOG_CACHE_KEY, []), label="catalog"
            )
            outcomes.append(catalog_result.outcome)
            products: List[Product] = list(catalog_result.value or [])

            semantic_section = await self._semantic_section(message, products, outcomes)

            signals_result = await race_with_timeout(
                signals_task,
                cfg.SIGNALS_TIMEOUT,
                self._stale(SIGNALS_CACHE_KEY, SignalsBundle.empty()),
                label="signals",
            )
            outcomes.append(signals_result.outcome)
            bundle: SignalsBundle = signals_result.value

            taxonomy_result = await race_with_timeout(
                taxonomy_task, cfg.TAXONOMY_RACE_TIMEOUT, self._stale(TAXONOMY_CACHE_KEY, None), label="taxonomy"
            )
            outcomes.append(taxonomy_result.outcome)
            taxonomy: Optional[Taxonomy] = taxonomy_result.value
        finally:
            sources.cancel()

        if products:
            apply_signals(products, bundle.signals, config=cfg)
            variant = "full" if (include_full_catalog or cfg.INCLUDE_FULL_PRODUCT_LIST) else "base"
            base_block = await self._catalog_block(products, variant)
        else:
            base_block = NO_PRODUCTS_STATEMENT

        if taxonomy is None or taxonomy.is_empty:
            hierarchy = TAXONOMY_UNAVAILABLE_BLOCK
        else:
            hierarchy = format_category_hierarchy(taxonomy, products)

        augmented = augment_with_signals(message.lower(), products, bundle)

        knowledge_block = bound_sections(
            [semantic_section, hierarchy, base_block],
            cfg.CONTEXT_MAX_CHARS,
            pinned=[augmented],
        )

        context = AssembledContext(
            knowledge_block=knowledge_block,
            stage_instructions=self._stage_instructions(state, intent, history),
            intent=intent,
            state=state,
            quick_replies=quick_replies(state.stage),
            outcomes=outcomes,
            degraded=[o.label for o in outcomes if o.degraded],
            products=products,
        )

        elapsed_ms = int((time.monotonic() - started) * 1000)
        if context.degraded:
            logger.warning(f"Context assembled with degraded sources: {', '.join(context.degraded)}")
        logger.info(
            f"Context assembled in {elapsed_ms}ms: {len(knowledge_block)} chars, "
            f"{len(products)} products, stage={state.stage.value}"
        )
        debug_log(
            {
                "sessionId": "context-assembly",
                "runId": uuid.uuid4().hex,
                "location": "context_assembler.assemble",
                "message": "context assembled",
                "data": {
                    "elapsed_ms": elapsed_ms,
                    "knowledge_chars": len(knowledge_block),
                    "product_count": len(products),
                    "stage": state.stage.value,
                    "intent_sub_category_id": intent.sub_category_id,
                    "intent_oem_id": intent.oem_id,
                    "outcomes": [
                        {"label": o.label, "status": o.status, "elapsed_ms": o.elapsed_ms} for o in outcomes
                    ],
                },
                "timestamp": int(time.time() * 1000),
            }
        )
        return context

    async def resolve_intent(self, message: str, outcomes: Optional[List[SourceOutcome]] = None) -> Intent:
        result: RaceResult[Intent] = await race_with_timeout(
            self.intent_resolver.resolve(message), self.config.INTENT_TIMEOUT, Intent.none(), label="intent"
        )
        if outcomes is not None:
            outcomes.append(result.outcome)
        return result.value

    async def _semantic_section(self, message: str, products: List[Product], outcomes: List[SourceOutcome]) -> str:
        cfg = self.config
        if not products:
            outcomes.append(SourceOutcome(label="semantic_search", status=STATUS_SKIPPED, elapsed_ms=0))
            return ""

        if not self.semantic_index.ready:
            chunks = products_to_text_chunks(products, cfg.CHUNK_DESCRIPTION_MAX_CHARS)
            await self.semantic_index.ensure_indexed(chunks, timeout=cfg.INDEXING_TIMEOUT)
            if self.semantic_index.needs_refresh() and not self.semantic_index.store.is_empty:
                logger.info("Vector index is older than its refresh interval")

        if self.semantic_index.store.is_empty:
            outcomes.append(SourceOutcome(label="semantic_search", status=STATUS_SKIPPED, elapsed_ms=0))
            return ""

        result = await race_with_timeout(
            self.semantic_index.query(message, cfg.SEMANTIC_TOP_K),
            cfg.SEMANTIC_SEARCH_TIMEOUT,
            [],
            label="semantic_search",
        )
        outcomes.append(result.outcome)
        return format_relevant_content(message, result.value)

    async def _catalog_block(self, products: List[Product], variant: str) -> str:
        full = variant == "full"

        async def render() -> str:
            return format_products_for_knowledge_base(products, include_full_list=full)

        key = f"knowledge:{variant}:{catalog_fingerprint(products)}"
        return await self.cache.get_or_fetch(key, self.config.KNOWLEDGE_BLOCK_TTL_SECONDS, render)

    @staticmethod
    def _stage_instructions(state: ConversationState, intent: Intent, history: Sequence[ChatMessage]) -> str:
        parts = [stage_prompt(state.stage).strip()]
        prefs = extract_user_preferences(history)
        if not prefs.is_empty():
            parts.append(f"KNOWN USER PREFERENCES: {prefs.summary()}")
        parts.append(f"SUGGESTED FOLLOW-UP QUESTION: {guiding_question(state.stage, intent)}")
        return "\n\n".join(parts)

"""Process-wide service graph. Everything shares one cache and one semantic index."""

from functools import lru_cache

from assistant.core.config import settings
from assistant.services.cache.ttl_cache import TTLCache
from assistant.services.catalog.loader import CatalogLoader
from assistant.services.catalog.signals import SignalsLoader
from assistant.services.chat.service import ChatService
from assistant.services.context.assembler import ContextAssembler
from assistant.services.intent.resolver import IntentResolver
from assistant.services.llm_service import LLMService
from assistant.services.search.semantic_index import SemanticIndex
from assistant.services.taxonomy.fetcher import TaxonomyFetcher
from assistant.services.taxonomy.keywords import KeywordTableProvider


@lru_cache
def get_cache() -> TTLCache:
    return TTLCache()


@lru_cache
def get_llm_service() -> LLMService:
    return LLMService(settings)


@lru_cache
def get_taxonomy_fetcher() -> TaxonomyFetcher:
    return TaxonomyFetcher(get_cache(), config=settings)


@lru_cache
def get_semantic_index() -> SemanticIndex:
    return SemanticIndex(get_llm_service(), clock=get_cache().clock, config=settings)


@lru_cache
def get_catalog_loader() -> CatalogLoader:
    return CatalogLoader(get_cache(), config=settings)


@lru_cache
def get_context_assembler() -> ContextAssembler:
    cache = get_cache()
    fetcher = get_taxonomy_fetcher()
    return ContextAssembler(
        catalog=get_catalog_loader(),
        signals=SignalsLoader(cache, config=settings),
        taxonomy=fetcher,
        intent_resolver=IntentResolver(
            KeywordTableProvider(fetcher, cache, config=settings),
            settings.KNOWLEDGE_BASE_URL,
        ),
        semantic_index=get_semantic_index(),
        cache=cache,
        config=settings,
    )


@lru_cache
def get_chat_service() -> ChatService:
    return ChatService(get_context_assembler(), get_llm_service(), settings)

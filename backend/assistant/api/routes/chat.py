from fastapi import APIRouter, Depends, HTTPException, status

from assistant.core.config import settings
from assistant.core.exceptions import AssistantNotConfiguredException
from assistant.core.logging import get_logger
from assistant.dependencies import get_cache, get_catalog_loader, get_chat_service, get_semantic_index
from assistant.schemas.chat import ChatRequest, ChatResponse, ContextResponse, ReindexResponse, SourceOutcomeInfo
from assistant.services.cache.ttl_cache import TTLCache
from assistant.services.catalog.loader import CATALOG_CACHE_KEY, CatalogLoader
from assistant.services.chat.service import ChatService, intent_info
from assistant.services.search.chunking import products_to_text_chunks
from assistant.services.search.semantic_index import SemanticIndex

router = APIRouter()
logger = get_logger(__name__)


def _require_message(request: ChatRequest) -> None:
    if not request.message or not request.message.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Message is required",
        )


@router.post("/", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    """
    Main chat endpoint.

    Handles:
    1. Greeting / off-topic fast path
    2. Intent resolution and conversation stage
    3. Catalog, signals and taxonomy context assembly
    4. Completion and product link repair
    """
    _require_message(request)
    if not settings.completion_configured:
        raise AssistantNotConfiguredException()
    try:
        return await chat_service.process_chat(request)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Chat error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error processing chat: {str(e)}",
        )


@router.post("/context", response_model=ContextResponse)
async def chat_context(
    request: ChatRequest,
    chat_service: ChatService = Depends(get_chat_service),
):
    """Assembled knowledge context for a message, without calling the completion service."""
    _require_message(request)
    try:
        context = await chat_service.build_context(request)
    except Exception as e:
        logger.error(f"Context assembly error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error assembling context: {str(e)}",
        )
    return ContextResponse(
        knowledge_block=context.knowledge_block,
        stage_instructions=context.stage_instructions,
        conversation_stage=context.state.stage.value,
        stage_confidence=context.state.confidence,
        stage_context=dict(context.state.context),
        intent=intent_info(context.intent),
        quick_replies=context.quick_replies,
        degraded=context.degraded,
        outcomes=[
            SourceOutcomeInfo(label=o.label, status=o.status, elapsed_ms=o.elapsed_ms) for o in context.outcomes
        ],
    )


@router.post("/reindex", response_model=ReindexResponse)
async def reindex(
    cache: TTLCache = Depends(get_cache),
    catalog: CatalogLoader = Depends(get_catalog_loader),
    index: SemanticIndex = Depends(get_semantic_index),
):
    """Reload the catalog and rebuild the semantic index."""
    try:
        cache.invalidate(CATALOG_CACHE_KEY)
        products = await catalog.load_products()
        index.invalidate()
        chunks = products_to_text_chunks(products, settings.CHUNK_DESCRIPTION_MAX_CHARS)
        ready = await index.ensure_indexed(chunks, timeout=settings.INDEXING_TIMEOUT)
    except Exception as e:
        logger.error(f"Reindex error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Error rebuilding index: {str(e)}",
        )
    return ReindexResponse(indexed_chunks=index.store.size, ready=ready)

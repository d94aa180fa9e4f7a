from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from assistant.core.config import Settings, settings as default_settings
from assistant.core.logging import get_logger
from assistant.prompts.system_prompts import build_system_prompt, greeting_prompt, off_topic_prompt
from assistant.schemas.chat import ChatMessage, ChatRequest, ChatResponse, IntentInfo
from assistant.services.chat.link_fixer import repair_product_links
from assistant.services.context.assembler import AssembledContext, ContextAssembler
from assistant.services.conversation.guidance import GREETING_QUICK_REPLIES, detect_restart_intent
from assistant.services.conversation.stage_tracker import ConversationStage
from assistant.services.intent.resolver import Intent, is_domain_related, is_greeting
from assistant.services.llm_service import LLMService

logger = get_logger(__name__)

EMPTY_COMPLETION_FALLBACK = "I apologize, but I couldn't generate a response. Please try again."
FAST_PATH_FALLBACK = "How can I help you today?"


def to_completion_messages(history: Sequence[ChatMessage], window: int) -> List[Dict[str, str]]:
    recent = list(history)[-window:] if window > 0 else []
    return [{"role": msg.role, "content": msg.text} for msg in recent if msg.text]


def intent_info(intent: Intent) -> IntentInfo:
    return IntentInfo(
        sub_category_id=intent.sub_category_id,
        category_name=intent.category_name,
        oem_id=intent.oem_id,
        confidence=intent.confidence,
        listing_urls=list(intent.listing_urls),
    )


class ChatService:
    """Chat orchestration (intent -> context -> completion -> link repair)."""

    def __init__(self, assembler: ContextAssembler, llm: LLMService, config: Optional[Settings] = None):
        self.assembler = assembler
        self.llm = llm
        self.config = config or default_settings

    async def process_chat(self, req: ChatRequest) -> ChatResponse:
        message = req.message.strip()
        history = req.conversation_history or []
        if history and detect_restart_intent(message):
            logger.info(f"Restart requested, dropping {len(history)} history messages")
            history = []

        # Catalog, signals and taxonomy load while intent resolves.
        sources = self.assembler.start_sources()
        try:
            intent = await self.assembler.resolve_intent(message)
            greeting = is_greeting(message)
            if greeting or not is_domain_related(message, intent):
                sources.cancel()
                return await self._fast_path(message, history, greeting=greeting, intent=intent)

            context = await self.assembler.assemble(
                message,
                history,
                include_full_catalog=req.include_full_catalog,
                intent=intent,
                sources=sources,
            )
        finally:
            sources.cancel()

        reply = await self._complete(message, history, context)
        return ChatResponse(
            success=True,
            message=reply,
            quick_replies=context.quick_replies,
            conversation_stage=context.state.stage.value,
            intent=intent_info(context.intent),
        )

    async def build_context(self, req: ChatRequest) -> AssembledContext:
        return await self.assembler.assemble(
            req.message.strip(),
            req.conversation_history or [],
            include_full_catalog=req.include_full_catalog,
        )

    async def _fast_path(
        self,
        message: str,
        history: Sequence[ChatMessage],
        *,
        greeting: bool,
        intent: Intent,
    ) -> ChatResponse:
        logger.info(f"Fast-tracking {'greeting' if greeting else 'off-topic'} message")
        messages = [{"role": "system", "content": greeting_prompt() if greeting else off_topic_prompt()}]
        messages.extend(to_completion_messages(history, self.config.FAST_PATH_HISTORY_WINDOW))
        messages.append({"role": "user", "content": message})

        reply = await self.llm.generate_chat_response(messages, max_tokens=self.config.FAST_PATH_MAX_TOKENS)
        return ChatResponse(
            success=True,
            message=reply or FAST_PATH_FALLBACK,
            quick_replies=list(GREETING_QUICK_REPLIES) if greeting else [],
            conversation_stage=ConversationStage.DISCOVERY.value,
            intent=intent_info(intent),
        )

    async def _complete(self, message: str, history: Sequence[ChatMessage], context: AssembledContext) -> str:
        base_url = self.config.KNOWLEDGE_BASE_URL
        messages = [{"role": "system", "content": build_system_prompt(context, base_url)}]
        messages.extend(to_completion_messages(history, self.config.HISTORY_WINDOW))
        messages.append({"role": "user", "content": message})

        reply = await self.llm.generate_chat_response(messages)
        if not reply:
            logger.warning("Completion returned no content")
            return EMPTY_COMPLETION_FALLBACK
        return repair_product_links(reply, context.products, base_url)

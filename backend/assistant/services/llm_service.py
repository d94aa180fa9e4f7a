import asyncio
import hashlib
from typing import List, Optional, Union

from openai import AsyncAzureOpenAI, AsyncOpenAI, OpenAIError

from assistant.core.config import Settings, settings as default_settings
from assistant.core.exceptions import (
    CompletionServiceException,
    CompletionTimeoutException,
    EmbeddingServiceError,
)
from assistant.core.logging import get_logger
from assistant.services.cache.ttl_cache import TTLCache

logger = get_logger(__name__)


class LLMService:
    """Completion and embedding calls against OpenAI or an Azure OpenAI deployment."""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or default_settings
        self.model = self.config.OPENAI_MODEL
        self.embedding_model = self.config.EMBEDDING_MODEL
        self._client: Optional[Union[AsyncOpenAI, AsyncAzureOpenAI]] = None
        # Query embeddings only; index batches are built once per catalog.
        self._embedding_cache: Optional[TTLCache] = None
        if self.config.EMBEDDING_CACHE_MAX_ITEMS > 0:
            self._embedding_cache = TTLCache(maxsize=self.config.EMBEDDING_CACHE_MAX_ITEMS)

    @property
    def client(self) -> Union[AsyncOpenAI, AsyncAzureOpenAI]:
        if self._client is None:
            if self.config.AZURE_OPENAI_ENDPOINT:
                self._client = AsyncAzureOpenAI(
                    api_key=self.config.OPENAI_API_KEY,
                    azure_endpoint=self.config.AZURE_OPENAI_ENDPOINT,
                    api_version=self.config.AZURE_OPENAI_API_VERSION,
                )
            else:
                self._client = AsyncOpenAI(
                    api_key=self.config.OPENAI_API_KEY,
                    base_url=self.config.OPENAI_BASE_URL or None,
                )
        return self._client

    @property
    def configured(self) -> bool:
        return self.config.completion_configured

    def _embedding_cache_key(self, text: str) -> str:
        if text is None:
            text = ""
        payload = f"{self.embedding_model}:{text}"
        digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
        return f"{self.embedding_model}:{digest}"

    async def generate_embedding(self, text: str) -> List[float]:
        """Generate embedding for a text."""
        cache_key = self._embedding_cache_key(text)
        if self._embedding_cache is not None:
            cached = self._embedding_cache.get(cache_key)
            if cached is not None:
                return cached
        vectors = await self.generate_embeddings_batch([text])
        if not vectors:
            raise EmbeddingServiceError("empty embedding response")
        if self._embedding_cache is not None:
            self._embedding_cache.set(cache_key, vectors[0], self.config.EMBEDDING_CACHE_TTL_SECONDS)
        return vectors[0]

    async def generate_embeddings_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts."""
        try:
            response = await asyncio.wait_for(
                self.client.embeddings.create(model=self.embedding_model, input=texts),
                timeout=self.config.EMBEDDING_TIMEOUT_SECONDS,
            )
            return [item.embedding for item in response.data]
        except asyncio.TimeoutError as e:
            logger.error(f"Embedding request timed out after {self.config.EMBEDDING_TIMEOUT_SECONDS}s")
            raise EmbeddingServiceError("embedding request timed out") from e
        except OpenAIError as e:
            logger.error(f"Error generating batch embeddings: {e}")
            raise EmbeddingServiceError(str(e)) from e

    async def generate_chat_response(
        self,
        messages: List[dict],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> str:
        """Generate a chat response using the LLM."""
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=model or self.model,
                    messages=messages,
                    temperature=self.config.COMPLETION_TEMPERATURE if temperature is None else temperature,
                    max_tokens=max_tokens or self.config.COMPLETION_MAX_TOKENS,
                ),
                timeout=self.config.COMPLETION_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Chat completion timed out after {self.config.COMPLETION_TIMEOUT_SECONDS}s")
            raise CompletionTimeoutException() from e
        except OpenAIError as e:
            logger.error(f"Error generating chat response: {e}")
            raise CompletionServiceException(f"Completion service error: {e}") from e

        if not response.choices:
            raise CompletionServiceException("Invalid response from completion service")
        return response.choices[0].message.content or ""

from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

BACKEND_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    PROJECT_NAME: str = "Marketplace Sales Assistant"
    API_V1_STR: str = "/api/v1"

    # CORS
    ALLOWED_ORIGINS: str = "*"
    ENVIRONMENT: str = "development"

    # Completion / embedding service (OpenAI or Azure OpenAI deployments)
    OPENAI_API_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("OPENAI_API_KEY", "AZURE_OPENAI_API_KEY"),
    )
    OPENAI_BASE_URL: Optional[str] = None
    AZURE_OPENAI_ENDPOINT: Optional[str] = None
    AZURE_OPENAI_API_VERSION: str = "2024-02-15-preview"
    OPENAI_MODEL: str = Field(
        default="gpt-4o",
        validation_alias=AliasChoices("OPENAI_MODEL", "AZURE_AI_AGENT_MODEL_DEPLOYMENT_NAME"),
    )
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-large",
        validation_alias=AliasChoices("EMBEDDING_MODEL", "AZURE_OPENAI_EMBEDDING_MODEL"),
    )
    EMBEDDING_CACHE_MAX_ITEMS: int = 512
    EMBEDDING_CACHE_TTL_SECONDS: int = 3600
    COMPLETION_TIMEOUT_SECONDS: float = 120.0
    COMPLETION_MAX_TOKENS: int = 4096
    COMPLETION_TEMPERATURE: float = 0.7
    FAST_PATH_MAX_TOKENS: int = 500
    EMBEDDING_TIMEOUT_SECONDS: float = 30.0

    # Upstream marketplace APIs
    PRODUCT_SERVICE_BACKEND_URL: str = Field(
        default="https://devshop-backend.skysecure.ai/api/product",
        validation_alias=AliasChoices(
            "PRODUCT_SERVICE_BACKEND_URL", "NEXT_PUBLIC_PRODUCT_SERVICE_BACKEND_URL"
        ),
    )
    KNOWLEDGE_BASE_URL: str = "https://shop.skysecure.ai/"
    TAXONOMY_PAGE_LIMIT: int = 100
    CATALOG_SOURCE: str = "file"  # file | api

    # Local data files
    DATA_DIR: str = str(BACKEND_ROOT / "assistant" / "data")
    PRODUCTS_FILE: str = "products_normalized.json"
    SIGNALS_FILE: str = "marketplace_signals.json"
    CATEGORY_RANKINGS_FILE: str = "category_rankings.json"
    OEM_RANKINGS_FILE: str = "oem_rankings.json"

    # Cache TTLs (seconds)
    CATALOG_TTL_SECONDS: float = 300
    TAXONOMY_TTL_SECONDS: float = 600
    SIGNALS_TTL_SECONDS: float = 3600
    KNOWLEDGE_BLOCK_TTL_SECONDS: float = 300
    VECTOR_INDEX_STALE_SECONDS: float = 3600

    # Timeout budgets (seconds), longest for the primary catalog call
    CATALOG_FETCH_TIMEOUT: float = 20.0
    SIGNALS_TIMEOUT: float = 5.0
    TAXONOMY_FETCH_TIMEOUT: float = 15.0
    TAXONOMY_RACE_TIMEOUT: float = 2.5
    INTENT_TIMEOUT: float = 3.0
    INDEXING_TIMEOUT: float = 30.0
    SEMANTIC_SEARCH_TIMEOUT: float = 5.0

    # Semantic index
    EMBEDDING_BATCH_SIZE: int = 5
    EMBEDDING_BATCH_DELAY_SECONDS: float = 0.1
    MAX_INDEX_CHUNKS: int = 2000
    CHUNK_DESCRIPTION_MAX_CHARS: int = 500
    SEMANTIC_TOP_K: int = 15

    # Context assembly
    CONTEXT_MAX_CHARS: int = 60000
    HISTORY_WINDOW: int = 10
    FAST_PATH_HISTORY_WINDOW: int = 3
    INCLUDE_FULL_PRODUCT_LIST: bool = False
    RECENTLY_ADDED_FALLBACK_DAYS: int = 30
    RECENTLY_ADDED_FALLBACK_LIMIT: int = 20
    AUGMENT_DESCRIPTION_CHARS: int = 150

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"
    DEBUG_LOG_FILE: str = "context_debug.log"
    DEBUG_LOG_ENABLED: bool = False

    # Load backend-local .env regardless of current working directory.
    model_config = SettingsConfigDict(
        env_file=str(BACKEND_ROOT / ".env"),
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def data_path(self) -> Path:
        return Path(self.DATA_DIR)

    @property
    def completion_configured(self) -> bool:
        return bool(self.OPENAI_API_KEY)


settings = Settings()

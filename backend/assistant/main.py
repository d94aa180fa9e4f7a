import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assistant.api.routes.chat import router as chat_router
from assistant.api.routes.health import router as health_router
from assistant.core.config import settings
from assistant.core.logging import configure_logging, get_logger
from assistant.dependencies import get_context_assembler

configure_logging()
logger = get_logger(__name__)


async def _warm_taxonomy() -> None:
    assembler = get_context_assembler()
    taxonomy = await assembler.taxonomy.fetch()
    provider = assembler.intent_resolver.keyword_provider
    if provider is not None:
        await provider.get_table()
    logger.info(f"Taxonomy warm-up done: {len(taxonomy.categories)} categories, {len(taxonomy.oems)} OEMs")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: fetch the taxonomy in the background so the first request finds it cached
    logger.info(f"{settings.PROJECT_NAME} is starting up...")
    warmup = asyncio.create_task(_warm_taxonomy())
    yield
    # Shutdown
    if not warmup.done():
        warmup.cancel()
    logger.info(f"{settings.PROJECT_NAME} is shutting down...")


app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

# Set all CORS enabled origins
allowed_origins = ["http://localhost:5173", "http://localhost:8080", "http://localhost:3000"]
if settings.ALLOWED_ORIGINS and settings.ALLOWED_ORIGINS != "*":
    allowed_origins = [str(origin).strip() for origin in settings.ALLOWED_ORIGINS.split(",")] + allowed_origins
elif settings.ALLOWED_ORIGINS == "*":
    allowed_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Include routers with proper prefixes
app.include_router(health_router, tags=["Health"])
app.include_router(chat_router, prefix=f"{settings.API_V1_STR}/chat", tags=["Chat"])

# app/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.api.v1.router import api_router
from app.middleware.error_handler import add_error_handlers
from app.services.batch_service import BatchService
from app.services.credits import CreditLedger
from app.services.dispatcher import DurableDispatcher, InProcessDispatcher
from app.services.generation import HttpCaptionWriter, HttpImageGenerator
from app.services.presets import StyleResolver
from app.services.store import StudioStore
from app.services.worker import BatchWorker

logger = get_logger(__name__)


def build_dispatcher(store: StudioStore, worker: BatchWorker):
    """Dispatcher for the configured backend"""
    if settings.DISPATCHER_BACKEND == "durable":
        # Jobs are run by scripts/start_batch_worker.py
        return DurableDispatcher(store)
    return InProcessDispatcher(worker.run, worker.give_up)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    store = StudioStore(str(settings.database_path))
    await store.connect()

    ledger = CreditLedger(store)
    generator = HttpImageGenerator(
        settings.GENERATION_API_URL,
        settings.GENERATION_API_KEY,
        timeout=settings.GENERATION_TIMEOUT_SECONDS,
    )
    caption_writer = (
        HttpCaptionWriter(settings.CAPTION_API_URL, settings.GENERATION_API_KEY)
        if settings.CAPTION_API_URL else None
    )
    service = BatchService(store, ledger)
    worker = BatchWorker(store, service, ledger, generator, caption_writer)
    dispatcher = build_dispatcher(store, worker)
    service.dispatcher = dispatcher

    app.state.store = store
    app.state.ledger = ledger
    app.state.style_resolver = StyleResolver()
    app.state.batch_service = service
    app.state.worker = worker
    app.state.dispatcher = dispatcher

    logger.info(f"Startup complete (dispatcher: {dispatcher.backend})")
    yield
    logger.info("Shutting down")

    await app.state.dispatcher.close()
    await generator.close()
    if caption_writer is not None:
        await caption_writer.close()
    await store.close()

# Initialize app
app = FastAPI(
    title=settings.APP_NAME,
    description="Batch product photo generation: one style, many products, tracked item by item",
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Setup logging first
setup_logging()

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Error handlers
add_error_handlers(app)

# API Router
app.include_router(api_router, prefix="/api/v1")

# Root
@app.get("/")
async def root():
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "api": "/api/v1"
    }

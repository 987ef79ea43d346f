"""Main FastAPI application."""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, WebSocket, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from openai import AsyncOpenAI

from database.connection import DatabaseConnection, get_db, get_redis
from database.repositories.article_repo import ArticleRepository
from database.repositories.job_repo import JobRepository
from database.repositories.settings_repo import TenantSettingsRepository
from database.repositories.source_repo import SourceRepository
from api.models.job import JobTypeEnum
from api.routes import cron_router, curation_router, jobs_router
from api.services.orchestrator import JobOrchestrator
from api.services.publisher import ProgressPublisher
from api.websocket import websocket_endpoint, redis_subscriber
from curation.embeddings import OpenAIEmbeddingService
from curation.pipeline import CurationPipeline
from curation.scoring import OpenAIScoringService
from curation.sources import FeedSourceAdapter
from shared.config import settings
from shared.errors import AlreadyRunning, InvalidState, JobNotFound, JobRunning, NotRunning, OrchestratorError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


# Background task for Redis subscriber
subscriber_task = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global subscriber_task

    # Startup
    db = await get_db()
    redis_client = await get_redis()

    openai_client = AsyncOpenAI(api_key=settings.openai_api_key, timeout=settings.openai_timeout)
    source_repo = SourceRepository(db)
    pipeline = CurationPipeline(
        source_repo=source_repo,
        article_repo=ArticleRepository(db),
        settings_repo=TenantSettingsRepository(db, settings),
        source_adapter=FeedSourceAdapter(),
        scoring_service=OpenAIScoringService(openai_client, settings.openai_chat_model),
        embedding_service=OpenAIEmbeddingService(openai_client, settings.openai_embedding_model)
    )
    publisher = ProgressPublisher(redis_client)
    orchestrator = JobOrchestrator(
        JobRepository(db),
        publisher,
        pipelines={JobTypeEnum.CURATION: pipeline.run}
    )
    app.state.publisher = publisher
    app.state.orchestrator = orchestrator
    app.state.source_repo = source_repo

    await orchestrator.reconcile_orphans()

    # Start Redis subscriber for WebSocket updates
    subscriber_task = asyncio.create_task(redis_subscriber(redis_client))
    logger.info("API started")

    yield

    # Shutdown
    await orchestrator.shutdown()

    if subscriber_task:
        subscriber_task.cancel()
        try:
            await subscriber_task
        except asyncio.CancelledError:
            pass

    await openai_client.close()
    await DatabaseConnection.close_connections()
    logger.info("API stopped")


# Create FastAPI app
app = FastAPI(
    title="Curation Job Orchestrator",
    description="Background job orchestration for multi-tenant content curation",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


ERROR_STATUS = {
    AlreadyRunning: status.HTTP_409_CONFLICT,
    JobNotFound: status.HTTP_404_NOT_FOUND,
    NotRunning: status.HTTP_409_CONFLICT,
    JobRunning: status.HTTP_409_CONFLICT,
    InvalidState: status.HTTP_400_BAD_REQUEST,
}


# Exception handlers
@app.exception_handler(OrchestratorError)
async def orchestrator_exception_handler(request: Request, exc: OrchestratorError):
    """Map job admission errors to HTTP responses."""
    return JSONResponse(
        status_code=ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST),
        content={"error": exc.message, "job_id": exc.job_id}
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": str(exc)}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)}
    )


# Include routers
app.include_router(curation_router)
app.include_router(jobs_router)
app.include_router(cron_router)


# WebSocket endpoints
@app.websocket("/ws")
async def websocket_all(websocket: WebSocket):
    """WebSocket endpoint for all job updates."""
    await websocket_endpoint(websocket)


@app.websocket("/ws/jobs/{job_id}")
async def websocket_job(websocket: WebSocket, job_id: str):
    """WebSocket endpoint for specific job updates."""
    await websocket_endpoint(websocket, job_id)


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Curation Job Orchestrator",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug
    )

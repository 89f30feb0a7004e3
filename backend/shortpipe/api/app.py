"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging

import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from shortpipe import configure_logging
from shortpipe.config import settings
from shortpipe.db import JobRepository, create_engine, create_session_factory, init_database
from shortpipe.orchestrator.checkpoint import CheckpointStore
from shortpipe.orchestrator.progress import ProgressPublisher
from shortpipe.orchestrator.status import StatusReader
from shortpipe.api.routes import router
from shortpipe.workers.tasks import enqueue_job

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Connect Redis and the database, create tables
        - Wire the status reader and job queue onto app.state

    Shutdown:
        - Close Redis and database connections
    """
    configure_logging()
    logger.info("Starting shortpipe API...")
    client = redis.from_url(settings.redis.url, decode_responses=True)
    engine = create_engine(settings.storage.database_url)
    await init_database(engine)

    jobs = JobRepository(create_session_factory(engine))
    app.state.jobs = jobs
    app.state.enqueue = enqueue_job
    app.state.status_reader = StatusReader(
        ProgressPublisher(
            client,
            ttl=settings.redis.progress_ttl_seconds,
            key_prefix=settings.redis.progress_prefix,
        ),
        CheckpointStore(
            client,
            ttl=settings.redis.checkpoint_ttl_seconds,
            key_prefix=settings.redis.checkpoint_prefix,
        ),
        jobs,
    )
    logger.info("API startup complete")

    yield

    logger.info("Shutting down shortpipe API...")
    await client.aclose()
    await engine.dispose()
    logger.info("API shutdown complete")


app = FastAPI(
    title="shortpipe API",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/health")
async def health():
    return {"status": "ok"}


# Generated media must be reachable by the transcription and render services
settings.storage.media_dir.mkdir(parents=True, exist_ok=True)
app.mount("/media", StaticFiles(directory=str(settings.storage.media_dir)), name="media")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler to prevent stack traces in API responses."""
    logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )

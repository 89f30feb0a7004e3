"""Per-process worker resources.

Celery prefork children each build one WorkerContext when they start: a
private asyncio event loop plus the Redis client, database engine and vendor
clients bound to it. Tasks run their coroutine on that loop.
"""

import asyncio
import logging
from functools import partial
from typing import Awaitable, Optional, TypeVar

import redis.asyncio as redis
from celery.signals import worker_process_init, worker_process_shutdown

from shortpipe import configure_logging
from shortpipe.config import Settings, settings
from shortpipe.db import JobRepository, create_engine, create_session_factory, init_database
from shortpipe.orchestrator.checkpoint import CheckpointStore
from shortpipe.orchestrator.lease import JobLease
from shortpipe.orchestrator.pipeline import PipelineDriver
from shortpipe.orchestrator.progress import ProgressPublisher
from shortpipe.orchestrator.retry import RetryCoordinator
from shortpipe.pipeline import build_stage_executors
from shortpipe.services.llm import VertexAIAdapter
from shortpipe.services.media_storage import MediaStorage
from shortpipe.services.render_client import RenderClient
from shortpipe.services.transcription_client import AssemblyAIClient
from shortpipe.services.tts_client import ElevenLabsClient
from shortpipe.services.vertex_client import create_vertex_client

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerContext:
    """Everything one worker process needs to run job attempts."""

    def __init__(self, config: Settings = settings):
        self.config = config
        self.loop = asyncio.new_event_loop()

        self.redis = redis.from_url(config.redis.url, decode_responses=True)
        self.engine = create_engine(config.storage.database_url)
        self.jobs = JobRepository(create_session_factory(self.engine))

        self.checkpoints = CheckpointStore(
            self.redis,
            ttl=config.redis.checkpoint_ttl_seconds,
            key_prefix=config.redis.checkpoint_prefix,
        )
        self.progress = ProgressPublisher(
            self.redis,
            ttl=config.redis.progress_ttl_seconds,
            key_prefix=config.redis.progress_prefix,
        )

        providers = config.providers
        genai_client = create_vertex_client()
        self.tts = ElevenLabsClient(
            providers.elevenlabs_api_key,
            providers.elevenlabs_base_url,
            timeout=providers.http_timeout_seconds,
        )
        self.transcription = AssemblyAIClient(
            providers.assemblyai_api_key,
            providers.assemblyai_base_url,
            timeout=providers.http_timeout_seconds,
            poll_interval=config.pipeline.transcription_poll_interval,
            max_wait=config.pipeline.transcription_max_wait,
        )
        self.render = RenderClient(
            providers.render_base_url,
            providers.render_api_key,
            timeout=providers.http_timeout_seconds,
        )

        executors = build_stage_executors(
            jobs=self.jobs,
            llm=VertexAIAdapter(genai_client, config.models.script_llm),
            image_client=genai_client,
            tts=self.tts,
            transcription=self.transcription,
            render=self.render,
            storage=MediaStorage(config.storage.media_dir, config.storage.public_base_url),
            pipeline_config=config.pipeline,
            models_config=config.models,
        )
        self.coordinator = RetryCoordinator(
            PipelineDriver(self.checkpoints, self.progress, executors),
            self.checkpoints,
            self.progress,
            self.jobs,
            max_attempts=config.queue.max_attempts,
            retry_delay_seconds=config.queue.retry_delay_seconds,
            lease_factory=partial(
                JobLease,
                self.redis,
                ttl=config.redis.lease_ttl_seconds,
                key_prefix=config.redis.lease_prefix,
            ),
        )

        self.run(init_database(self.engine))

    def run(self, coro: Awaitable[T]) -> T:
        return self.loop.run_until_complete(coro)

    async def _aclose(self) -> None:
        await self.tts.close()
        await self.transcription.close()
        await self.render.close()
        await self.redis.aclose()
        await self.engine.dispose()

    def close(self) -> None:
        try:
            self.run(self._aclose())
        finally:
            self.loop.close()


_context: Optional[WorkerContext] = None


def get_worker_context() -> WorkerContext:
    """Return this process's context, building it on first use."""
    global _context
    if _context is None:
        _context = WorkerContext()
    return _context


@worker_process_init.connect
def _init_worker_process(**kwargs):
    configure_logging()
    get_worker_context()
    logger.info("Worker process ready")


@worker_process_shutdown.connect
def _shutdown_worker_process(**kwargs):
    global _context
    if _context is not None:
        _context.close()
        _context = None

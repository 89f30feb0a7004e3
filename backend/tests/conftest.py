"""Shared fixtures: in-process Redis, a throwaway SQLite job store, fake stages."""

import fakeredis
import pytest

from shortpipe.db import JobRepository, create_engine, create_session_factory, init_database
from shortpipe.orchestrator.checkpoint import CheckpointStore
from shortpipe.orchestrator.pipeline import StageExecutors
from shortpipe.orchestrator.progress import ProgressPublisher
from shortpipe.orchestrator.state import STAGES

VIDEO_URL = "https://cdn.example.com/renders/abc/out.mp4"


class RecordingProgress(ProgressPublisher):
    """Progress publisher that also keeps every record it was given."""

    def __init__(self, client, **kwargs):
        super().__init__(client, **kwargs)
        self.records = []

    async def publish(self, job_id, record):
        self.records.append(record)
        await super().publish(job_id, record)

    @property
    def statuses(self):
        return [r.status for r in self.records]


class FakeStages:
    """Stage collaborators that record calls and fail on demand.

    ``fail`` maps a stage to an exception raised on its next call, or to a
    list of exceptions raised on successive calls.
    """

    def __init__(self, fail=None, jobs=None, video_url=VIDEO_URL):
        self.calls = []
        self.fail = {k: (list(v) if isinstance(v, list) else [v]) for k, v in (fail or {}).items()}
        self.jobs = jobs
        self.video_url = video_url

    def _make(self, stage):
        async def _run(job_id):
            self.calls.append(stage)
            pending = self.fail.get(stage)
            if pending:
                raise pending.pop(0)
            if stage == "render":
                if self.jobs is not None:
                    await self.jobs.mark_complete(job_id, self.video_url)
                return self.video_url
            return None
        return _run

    def executors(self) -> StageExecutors:
        return StageExecutors(**{stage: self._make(stage) for stage in STAGES})


@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def checkpoints(redis_client):
    return CheckpointStore(redis_client)


@pytest.fixture
def progress(redis_client):
    return RecordingProgress(redis_client)


@pytest.fixture
async def jobs(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
    await init_database(engine)
    yield JobRepository(create_session_factory(engine))
    await engine.dispose()


@pytest.fixture
async def job(jobs):
    return await jobs.create("user-1", "Why octopuses have three hearts")

"""Tests for job submission and the queue task's retry hand-off."""

import asyncio

import pytest
from celery.exceptions import Retry
from celery.utils.time import get_exponential_backoff_interval

from shortpipe.config import settings
from shortpipe.db.models import JOB_FAILED
from shortpipe.errors import AttemptFailed, InvalidPromptError, LeaseBusy
from shortpipe.orchestrator.pipeline import PipelineDriver
from shortpipe.orchestrator.retry import RetryCoordinator
from shortpipe.workers import tasks
from shortpipe.workers.tasks import process_job, submit_job, validate_prompt
from tests.conftest import FakeStages
from tests.test_retry_coordinator import RecordingSleep


class TestValidatePrompt:
    def test_trims(self):
        assert validate_prompt("   How volcanoes form  ") == "How volcanoes form"

    @pytest.mark.parametrize("prompt", ["", "   ", "too short", "x" * 501])
    def test_rejects(self, prompt):
        with pytest.raises(InvalidPromptError):
            validate_prompt(prompt)

    def test_length_bounds_are_inclusive(self):
        assert validate_prompt("x" * 10) == "x" * 10
        assert validate_prompt("x" * 500) == "x" * 500


class TestSubmitJob:
    async def test_creates_processing_job_and_enqueues(self, jobs):
        enqueued = []

        job_id = await submit_job(
            jobs, "How volcanoes form", "user-1",
            enqueue=lambda j, o: enqueued.append((j, o)),
        )

        assert enqueued == [(job_id, "user-1")]
        assert (await jobs.get(job_id)).status == "processing"

    async def test_invalid_prompt_creates_nothing(self, jobs):
        with pytest.raises(InvalidPromptError):
            await submit_job(jobs, "short", "user-1", enqueue=lambda j, o: None)
        assert list(await jobs.list_jobs()) == []


class FakeCoordinator:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = []

    async def run_attempt(self, job_id, owner_id, attempts_made):
        self.calls.append((job_id, owner_id, attempts_made))
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


class FakeContext:
    def __init__(self, coordinator):
        self.coordinator = coordinator

    def run(self, coro):
        return asyncio.run(coro)


def _use_coordinator(monkeypatch, outcome):
    coordinator = FakeCoordinator(outcome)
    monkeypatch.setattr(tasks, "get_worker_context", lambda: FakeContext(coordinator))
    return coordinator


class TestProcessJob:
    def test_success_returns_video_url(self, monkeypatch):
        coordinator = _use_coordinator(monkeypatch, "https://cdn.test/out.mp4")

        assert process_job.run("job-1", "user-1") == "https://cdn.test/out.mp4"
        assert coordinator.calls == [("job-1", "user-1", 0)]

    def test_terminal_failure_raises_original_error(self, monkeypatch):
        error = ValueError("unusable script")
        _use_coordinator(monkeypatch, AttemptFailed(error, should_retry=False, attempt_number=1, failed_stage="script"))

        with pytest.raises(ValueError) as exc_info:
            process_job.run("job-1", "user-1")
        assert exc_info.value is error

    def test_retryable_failure_hands_original_error_to_queue(self, monkeypatch):
        """Called outside a worker, Celery's retry re-raises the given error."""
        error = ConnectionResetError("read ECONNRESET")
        _use_coordinator(monkeypatch, AttemptFailed(error, should_retry=True, attempt_number=1, failed_stage="audio"))

        with pytest.raises(ConnectionResetError) as exc_info:
            process_job.run("job-1", "user-1")
        assert exc_info.value is error


class TestLeaseBusy:
    def test_deferred_attempt_keeps_its_attempt_number(self, monkeypatch):
        coordinator = _use_coordinator(monkeypatch, LeaseBusy("job-1"))
        requeued = []
        monkeypatch.setattr(
            tasks, "requeue_job",
            lambda job_id, owner_id, *, countdown, retries: requeued.append((job_id, owner_id, countdown, retries)),
        )

        process_job.push_request(retries=1)
        try:
            assert process_job.run("job-1", "user-1") is None
        finally:
            process_job.pop_request()

        assert coordinator.calls == [("job-1", "user-1", 1)]
        assert requeued == [("job-1", "user-1", settings.queue.lease_busy_countdown, 1)]


def _backoff(retries):
    return get_exponential_backoff_interval(
        factor=settings.queue.backoff_factor,
        retries=retries,
        maximum=settings.queue.backoff_max_seconds,
        full_jitter=False,
    )


def _run_as_delivery(job_id, owner_id, retries):
    """Run the task body as if the queue delivered it with ``retries`` prior attempts."""
    process_job.push_request(retries=retries, called_directly=False, is_eager=True)
    try:
        return process_job.run(job_id, owner_id)
    finally:
        process_job.pop_request()


class TestAttemptCeiling:
    def test_queue_allows_one_delivery_per_attempt(self):
        assert process_job.max_retries == settings.queue.max_attempts - 1

    @pytest.mark.parametrize("retries", [0, 1])
    def test_retryable_failure_schedules_redelivery(self, monkeypatch, retries):
        error = ConnectionResetError("read ECONNRESET")
        coordinator = _use_coordinator(
            monkeypatch,
            AttemptFailed(error, should_retry=True, attempt_number=retries + 1, failed_stage="audio"),
        )

        with pytest.raises(Retry) as exc_info:
            _run_as_delivery("job-1", "user-1", retries)

        assert coordinator.calls == [("job-1", "user-1", retries)]
        assert isinstance(exc_info.value.exc, ConnectionResetError)
        assert exc_info.value.when == _backoff(retries)

    def test_queue_refuses_redelivery_past_ceiling(self, monkeypatch):
        error = ConnectionResetError("read ECONNRESET")
        ceiling = process_job.max_retries
        _use_coordinator(
            monkeypatch,
            AttemptFailed(error, should_retry=True, attempt_number=ceiling + 1, failed_stage="audio"),
        )

        with pytest.raises(ConnectionResetError) as exc_info:
            _run_as_delivery("job-1", "user-1", ceiling)
        assert exc_info.value is error

    async def test_three_deliveries_then_job_failed(self, checkpoints, progress, jobs, job, monkeypatch):
        """Attempts 1 and 2 are redelivered; attempt 3 surfaces the stage error."""
        error = TimeoutError("timed out")
        stages = FakeStages(fail={"script": [error, error, error]})
        coordinator = RetryCoordinator(
            PipelineDriver(checkpoints, progress, stages.executors()),
            checkpoints,
            progress,
            jobs,
            max_attempts=settings.queue.max_attempts,
            sleep=RecordingSleep(),
        )
        loop = asyncio.get_running_loop()
        monkeypatch.setattr(tasks, "get_worker_context", lambda: LoopContext(coordinator, loop))

        outcomes = []
        for retries in range(settings.queue.max_attempts):
            try:
                await asyncio.to_thread(_run_as_delivery, job.id, job.owner_id, retries)
            except Retry as retry:
                outcomes.append(("retry", retry.when))
            except TimeoutError as e:
                outcomes.append(("failed", e))

        assert outcomes == [("retry", _backoff(0)), ("retry", _backoff(1)), ("failed", error)]
        assert stages.calls == ["script", "script", "script"]
        assert (await jobs.get(job.id)).status == JOB_FAILED
        assert progress.records[-1].status == "error"


class LoopContext:
    """Worker context that runs coroutines on the test's event loop from a worker thread."""

    def __init__(self, coordinator, loop):
        self.coordinator = coordinator
        self.loop = loop

    def run(self, coro):
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result()

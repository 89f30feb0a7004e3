"""Tests for job-level attempts: retry decisions, ceilings and resume."""

import asyncio

import pytest

from shortpipe.db.models import JOB_COMPLETE, JOB_FAILED
from shortpipe.errors import AttemptFailed, InvalidPromptError, LeaseBusy
from shortpipe.orchestrator.checkpoint import CheckpointStore
from shortpipe.orchestrator.lease import JobLease
from shortpipe.orchestrator.pipeline import PipelineDriver
from shortpipe.orchestrator.retry import RetryCoordinator
from tests.conftest import VIDEO_URL, FakeStages


class FakeJobs:
    def __init__(self, fail_with=None):
        self.failed = []
        self.fail_with = fail_with

    async def mark_failed(self, job_id):
        self.failed.append(job_id)
        if self.fail_with is not None:
            raise self.fail_with


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class LossyFailureCheckpoints(CheckpointStore):
    """Checkpoint store whose failure writes never land, as during a Redis blip."""

    async def mark_failed(self, job_id, owner_id, stage):
        return None


def _coordinator(checkpoints, progress, stages, jobs, **kwargs):
    kwargs.setdefault("sleep", RecordingSleep())
    return RetryCoordinator(
        PipelineDriver(checkpoints, progress, stages.executors()),
        checkpoints,
        progress,
        jobs,
        **kwargs,
    )


class TestRetryDecision:
    async def test_success_returns_video_url(self, checkpoints, progress):
        coordinator = _coordinator(checkpoints, progress, FakeStages(), FakeJobs())

        assert await coordinator.run_attempt("job-1", "user-1", 0) == VIDEO_URL
        assert progress.records[-1].status == "completed"

    async def test_retryable_failure_requests_requeue(self, checkpoints, progress):
        error = ConnectionResetError("read ECONNRESET")
        jobs = FakeJobs()
        coordinator = _coordinator(checkpoints, progress, FakeStages(fail={"images": error}), jobs)

        with pytest.raises(AttemptFailed) as exc_info:
            await coordinator.run_attempt("job-1", "user-1", 0)

        failure = exc_info.value
        assert failure.should_retry is True
        assert failure.attempt_number == 1
        assert failure.failed_stage == "images"
        assert failure.error is error
        assert failure.__cause__ is error
        assert jobs.failed == []

        last = progress.records[-1]
        assert last.status == "error"
        assert last.retry_count == 1
        assert last.max_retries == 3
        assert last.error.endswith("Attempt 1 of 3.")

    async def test_fatal_failure_fails_job_on_first_attempt(self, checkpoints, progress):
        jobs = FakeJobs()
        stages = FakeStages(fail={"script": InvalidPromptError("Invalid prompt: too short.")})
        coordinator = _coordinator(checkpoints, progress, stages, jobs)

        with pytest.raises(AttemptFailed) as exc_info:
            await coordinator.run_attempt("job-1", "user-1", 0)

        assert exc_info.value.should_retry is False
        assert jobs.failed == ["job-1"]
        assert progress.records[-1].retry_count is None

    async def test_ceiling_of_three_attempts(self, checkpoints, progress):
        """Requeue after attempts 1 and 2, permanent failure on 3."""
        error = TimeoutError("timed out")
        jobs = FakeJobs()
        stages = FakeStages(fail={"script": [error, error, error, error]})
        coordinator = _coordinator(checkpoints, progress, stages, jobs, max_attempts=3)

        decisions = []
        for attempts_made in range(3):
            with pytest.raises(AttemptFailed) as exc_info:
                await coordinator.run_attempt("job-1", "user-1", attempts_made)
            decisions.append(exc_info.value.should_retry)

        assert decisions == [True, True, False]
        assert stages.calls == ["script", "script", "script"]
        assert jobs.failed == ["job-1"]
        final = progress.records[-1]
        assert final.status == "error"
        assert final.retry_count is None
        assert final.max_retries is None

    async def test_failure_to_mark_job_does_not_mask_stage_error(self, checkpoints, progress):
        error = ValueError("unusable script")
        jobs = FakeJobs(fail_with=RuntimeError("database is locked"))
        coordinator = _coordinator(checkpoints, progress, FakeStages(fail={"script": error}), jobs)

        with pytest.raises(AttemptFailed) as exc_info:
            await coordinator.run_attempt("job-1", "user-1", 0)

        assert exc_info.value.error is error
        assert jobs.failed == ["job-1"]

    def test_max_attempts_must_be_positive(self, checkpoints, progress):
        with pytest.raises(ValueError):
            _coordinator(checkpoints, progress, FakeStages(), FakeJobs(), max_attempts=0)

    async def test_failed_stage_named_even_when_checkpoint_write_is_lost(self, redis_client, progress):
        """A stale lastFailedStep from an earlier attempt is not reported for a new failure."""
        checkpoints = LossyFailureCheckpoints(redis_client)
        await checkpoints.mark_completed("job-1", "user-1", "script")
        await CheckpointStore.mark_failed(checkpoints, "job-1", "user-1", "images")
        for stage in ("images", "audio"):
            await checkpoints.mark_completed("job-1", "user-1", stage)
        stages = FakeStages(fail={"captions": ConnectionResetError("read ECONNRESET")})
        coordinator = _coordinator(checkpoints, progress, stages, FakeJobs())

        with pytest.raises(AttemptFailed) as exc_info:
            await coordinator.run_attempt("job-1", "user-1", 0)

        assert (await checkpoints.get("job-1")).last_failed_step == "images"
        assert exc_info.value.failed_stage == "captions"
        assert progress.records[-1].current_step_id == "captions"


class TestRetryAnnouncement:
    async def test_retry_names_resumed_stage_and_delays_linearly(self, checkpoints, progress):
        sleep = RecordingSleep()
        stages = FakeStages(fail={"audio": ConnectionResetError("read ECONNRESET")})
        coordinator = _coordinator(checkpoints, progress, stages, FakeJobs(), sleep=sleep)

        with pytest.raises(AttemptFailed):
            await coordinator.run_attempt("job-1", "user-1", 0)
        await coordinator.run_attempt("job-1", "user-1", 1)

        retrying = [r for r in progress.records if r.status == "retrying"]
        assert len(retrying) == 1
        assert retrying[0].current_step_id == "audio"
        assert retrying[0].retry_count == 1
        assert retrying[0].max_retries == 3
        assert retrying[0].last_error == "ConnectionResetError: read ECONNRESET"
        assert "audio" in retrying[0].step
        assert sleep.delays == [2.0]

    async def test_no_announcement_on_first_attempt(self, checkpoints, progress):
        sleep = RecordingSleep()
        coordinator = _coordinator(checkpoints, progress, FakeStages(), FakeJobs(), sleep=sleep)

        await coordinator.run_attempt("job-1", "user-1", 0)

        assert "retrying" not in progress.statuses
        assert sleep.delays == []


class TestLeasedAttempts:
    async def test_attempt_deferred_while_another_holds_the_lease(self, redis_client, checkpoints, progress):
        stages = FakeStages()
        jobs = FakeJobs()
        coordinator = _coordinator(
            checkpoints,
            progress,
            stages,
            jobs,
            lease_factory=lambda job_id: JobLease(redis_client, job_id),
        )

        async with JobLease(redis_client, "job-1") as held:
            assert held.acquired
            with pytest.raises(LeaseBusy):
                await coordinator.run_attempt("job-1", "user-1", 0)

        assert stages.calls == []
        assert progress.records == []
        assert jobs.failed == []

    async def test_redelivery_resumes_once_crashed_holder_lapses(self, redis_client, checkpoints, progress, jobs, job):
        """A worker died mid-attempt: its lease blocks the redelivery only until it expires."""
        stages = FakeStages(jobs=jobs)
        coordinator = _coordinator(
            checkpoints,
            progress,
            stages,
            jobs,
            lease_factory=lambda job_id: JobLease(redis_client, job_id),
        )
        await checkpoints.mark_completed(job.id, job.owner_id, "script")
        await redis_client.set(f"video_lease:{job.id}", "dead-worker", px=300)

        with pytest.raises(LeaseBusy):
            await coordinator.run_attempt(job.id, job.owner_id, 0)
        await asyncio.sleep(0.5)
        video_url = await coordinator.run_attempt(job.id, job.owner_id, 0)

        assert video_url == VIDEO_URL
        assert stages.calls == ["images", "audio", "captions", "render"]
        assert (await jobs.get(job.id)).status == JOB_COMPLETE

    async def test_attempt_runs_under_free_lease(self, redis_client, checkpoints, progress):
        stages = FakeStages()
        coordinator = _coordinator(
            checkpoints,
            progress,
            stages,
            FakeJobs(),
            lease_factory=lambda job_id: JobLease(redis_client, job_id),
        )

        assert await coordinator.run_attempt("job-1", "user-1", 0) == VIDEO_URL
        assert await redis_client.exists("video_lease:job-1") == 0


class TestEndToEnd:
    async def test_audio_failure_resumes_on_second_attempt(self, checkpoints, progress, jobs, job):
        """Attempt 1 fails at audio; attempt 2 resumes there and completes the job."""
        stages = FakeStages(fail={"audio": ConnectionResetError("read ECONNRESET")}, jobs=jobs)
        coordinator = _coordinator(checkpoints, progress, stages, jobs)

        with pytest.raises(AttemptFailed) as exc_info:
            await coordinator.run_attempt(job.id, job.owner_id, 0)
        assert exc_info.value.should_retry is True

        video_url = await coordinator.run_attempt(job.id, job.owner_id, 1)

        assert video_url == VIDEO_URL
        assert stages.calls == ["script", "images", "audio", "audio", "captions", "render"]
        assert await checkpoints.get(job.id) is None
        stored = await jobs.get(job.id)
        assert stored.status == JOB_COMPLETE
        assert stored.video_url == VIDEO_URL
        assert progress.records[-1].status == "completed"

    async def test_exhausted_attempts_fail_the_job(self, checkpoints, progress, jobs, job):
        error = TimeoutError("timed out")
        stages = FakeStages(fail={"captions": [error, error, error]}, jobs=jobs)
        coordinator = _coordinator(checkpoints, progress, stages, jobs)

        for attempts_made in range(3):
            with pytest.raises(AttemptFailed):
                await coordinator.run_attempt(job.id, job.owner_id, attempts_made)

        assert stages.calls.count("script") == 1
        assert stages.calls.count("captions") == 3
        assert (await jobs.get(job.id)).status == JOB_FAILED

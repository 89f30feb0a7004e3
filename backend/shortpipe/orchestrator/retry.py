"""Queue-level wrapper around one attempt of a job.

The coordinator owns the retry decision for an attempt; the queue owns the
timing of the physical redelivery. For each attempt it:
- announces a retry (naming the exact stage to be resumed) and applies a
  linear in-process delay when this is not the first attempt
- runs the pipeline driver under a per-job lease, deferring with LeaseBusy
  when another attempt holds it
- on failure classifies the error, publishes the user-facing error record,
  durably fails the job when no attempt remains, and raises AttemptFailed
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

from shortpipe.errors import AttemptFailed, LeaseBusy
from shortpipe.orchestrator.checkpoint import CheckpointStore
from shortpipe.orchestrator.failures import is_retryable, user_message
from shortpipe.orchestrator.pipeline import PipelineDriver
from shortpipe.orchestrator.progress import ProgressPublisher, ProgressRecord, ProgressStatus
from shortpipe.orchestrator.state import ALL_COMPLETE, next_stage

logger = logging.getLogger(__name__)


class FailsJobs(Protocol):
    async def mark_failed(self, job_id: str) -> None: ...


class Lease(Protocol):
    acquired: bool

    async def __aenter__(self) -> "Lease": ...

    async def __aexit__(self, exc_type, exc, tb): ...


LeaseFactory = Callable[[str], Lease]


class RetryCoordinator:
    """Runs one dequeued attempt of a job and decides retry eligibility."""

    def __init__(
        self,
        driver: PipelineDriver,
        checkpoints: CheckpointStore,
        progress: ProgressPublisher,
        jobs: FailsJobs,
        *,
        max_attempts: int = 3,
        retry_delay_seconds: float = 2.0,
        lease_factory: Optional[LeaseFactory] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.driver = driver
        self.checkpoints = checkpoints
        self.progress = progress
        self.jobs = jobs
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.lease_factory = lease_factory
        self._sleep = sleep

    async def run_attempt(self, job_id: str, owner_id: str, attempts_made: int) -> Optional[str]:
        """Run one attempt of ``job_id``.

        Args:
            job_id: Job to run
            owner_id: Submitting user
            attempts_made: Prior attempts, taken from the queue's own counter

        Returns:
            The final video URL if render ran in this attempt, else None.

        Raises:
            AttemptFailed: The attempt failed; ``should_retry`` tells the
                queue layer whether to requeue, ``error`` is the original.
            LeaseBusy: Another attempt of this job is running; nothing was
                executed and the attempt does not count.
        """
        attempt_number = attempts_made + 1
        logger.info(f"Job {job_id}: attempt {attempt_number}/{self.max_attempts}")

        if attempts_made > 0:
            await self._announce_retry(job_id, owner_id, attempts_made)
            await self._sleep(self.retry_delay_seconds * attempts_made)

        try:
            if self.lease_factory is None:
                video_url = await self.driver.run(job_id, owner_id)
            else:
                async with self.lease_factory(job_id) as lease:
                    if not lease.acquired:
                        logger.info(f"Job {job_id}: another attempt holds the lease, deferring")
                        raise LeaseBusy(job_id)
                    video_url = await self.driver.run(job_id, owner_id)
        except LeaseBusy:
            raise
        except Exception as e:
            should_retry, failed_stage = await self._handle_failure(
                job_id, owner_id, attempt_number, e
            )
            raise AttemptFailed(
                e,
                should_retry=should_retry,
                attempt_number=attempt_number,
                failed_stage=failed_stage,
            ) from e

        await self.progress.publish(
            job_id,
            ProgressRecord(
                job_id=job_id,
                owner_id=owner_id,
                status=ProgressStatus.COMPLETED,
                step="Video ready",
            ),
        )
        logger.info(f"Job {job_id}: completed on attempt {attempt_number}")
        return video_url

    async def _announce_retry(self, job_id: str, owner_id: str, attempts_made: int) -> None:
        checkpoint = await self.checkpoints.get(job_id)
        stage = next_stage(checkpoint)
        previous = await self.progress.read(job_id)
        last_error = previous.last_error if previous is not None else None

        logger.warning(
            f"Job {job_id}: retry {attempts_made}/{self.max_attempts} resuming at '{stage}'"
        )
        await self.progress.publish(
            job_id,
            ProgressRecord(
                job_id=job_id,
                owner_id=owner_id,
                status=ProgressStatus.RETRYING,
                step=f"Retry attempt {attempts_made}/{self.max_attempts} (stage: {stage})...",
                current_step_id=None if stage == ALL_COMPLETE else stage,
                retry_count=attempts_made,
                max_retries=self.max_attempts,
                retry_reason=f'A temporary error occurred during "{stage}", trying again',
                last_error=last_error,
            ),
        )

    async def _handle_failure(
        self, job_id: str, owner_id: str, attempt_number: int, error: Exception
    ) -> tuple[bool, Optional[str]]:
        failed_stage = getattr(error, "pipeline_stage", None)
        if failed_stage is None:
            stage = next_stage(await self.checkpoints.get(job_id))
            failed_stage = None if stage == ALL_COMPLETE else stage

        retryable = is_retryable(error)
        should_retry = attempt_number < self.max_attempts and retryable
        logger.error(
            f"Job {job_id}: attempt {attempt_number}/{self.max_attempts} failed at "
            f"{failed_stage}: {type(error).__name__}: {error} "
            f"(retryable={retryable}, will_retry={should_retry})"
        )

        message = user_message(error)
        if should_retry:
            message = f"{message} Attempt {attempt_number} of {self.max_attempts}."
        await self.progress.publish(
            job_id,
            ProgressRecord(
                job_id=job_id,
                owner_id=owner_id,
                status=ProgressStatus.ERROR,
                step=f"Failed during {failed_stage}" if failed_stage else None,
                current_step_id=failed_stage,
                error=message,
                last_error=f"{type(error).__name__}: {error}",
                retry_count=attempt_number if should_retry else None,
                max_retries=self.max_attempts if should_retry else None,
            ),
        )

        if not should_retry:
            try:
                await self.jobs.mark_failed(job_id)
            except Exception as db_err:
                # The stage error is what the caller needs to see
                logger.error(f"Failed to mark job {job_id} as failed: {db_err}")
        return should_retry, failed_stage

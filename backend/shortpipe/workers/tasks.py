"""Job submission and the Celery task that runs one job attempt.

Celery's own retry counter is the attempt counter: ``request.retries`` is the
number of attempts already made. The retry coordinator decides whether a
failed attempt is worth repeating; Celery decides when the redelivery runs.
An attempt deferred because another worker holds the job's lease is re-sent
with the same counter.
"""

import logging
from typing import Callable, Optional

from celery.utils.time import get_exponential_backoff_interval

from shortpipe.config import settings
from shortpipe.db.repository import JobRepository
from shortpipe.errors import AttemptFailed, InvalidPromptError, LeaseBusy
from shortpipe.workers.celery_app import celery_app
from shortpipe.workers.context import get_worker_context

logger = logging.getLogger(__name__)

MIN_PROMPT_LENGTH = 10
MAX_PROMPT_LENGTH = 500


def validate_prompt(prompt: str) -> str:
    """Return the trimmed prompt or raise InvalidPromptError."""
    cleaned = (prompt or "").strip()
    if len(cleaned) < MIN_PROMPT_LENGTH:
        raise InvalidPromptError(
            f"Invalid prompt: too short (minimum {MIN_PROMPT_LENGTH} characters)."
        )
    if len(cleaned) > MAX_PROMPT_LENGTH:
        raise InvalidPromptError(
            f"Invalid prompt: too long (maximum {MAX_PROMPT_LENGTH} characters)."
        )
    return cleaned


@celery_app.task(
    bind=True,
    name="shortpipe.process_job",
    max_retries=settings.queue.max_attempts - 1,
)
def process_job(self, job_id: str, owner_id: str) -> Optional[str]:
    """Run one attempt of a job on this worker process's event loop."""
    context = get_worker_context()
    attempts_made = self.request.retries
    try:
        return context.run(context.coordinator.run_attempt(job_id, owner_id, attempts_made))
    except LeaseBusy:
        # Same attempt number again: a deferred attempt never ran
        requeue_job(
            job_id,
            owner_id,
            countdown=settings.queue.lease_busy_countdown,
            retries=attempts_made,
        )
        return None
    except AttemptFailed as failure:
        if not failure.should_retry:
            raise failure.error
        countdown = get_exponential_backoff_interval(
            factor=settings.queue.backoff_factor,
            retries=attempts_made,
            maximum=settings.queue.backoff_max_seconds,
            full_jitter=False,
        )
        logger.warning(
            f"Job {job_id}: requeueing after attempt {failure.attempt_number} "
            f"(stage {failure.failed_stage}) in {countdown}s"
        )
        raise self.retry(exc=failure.error, countdown=countdown)


def enqueue_job(job_id: str, owner_id: str) -> None:
    """Queue the first attempt of a job."""
    process_job.apply_async(args=[job_id, owner_id], queue=settings.queue.name)
    logger.info(f"Enqueued job {job_id} on '{settings.queue.name}'")


def requeue_job(job_id: str, owner_id: str, *, countdown: float, retries: int) -> None:
    """Re-offer an attempt later, keeping its place in the attempt count."""
    process_job.apply_async(
        args=[job_id, owner_id],
        queue=settings.queue.name,
        countdown=countdown,
        retries=retries,
    )
    logger.info(f"Job {job_id}: attempt {retries + 1} deferred for {countdown}s")


async def submit_job(
    jobs: JobRepository,
    prompt: str,
    owner_id: str,
    *,
    enqueue: Callable[[str, str], None] = enqueue_job,
) -> str:
    """Validate a prompt, create the job row and queue it.

    Returns:
        The new job id.

    Raises:
        InvalidPromptError: The prompt is empty, too short or too long.
    """
    cleaned = validate_prompt(prompt)
    job = await jobs.create(owner_id, cleaned)
    enqueue(job.id, owner_id)
    return job.id

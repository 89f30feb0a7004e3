"""Read path for polling clients.

The live progress record is preferred; when it has expired (or Redis is
down) the durable job row is authoritative, with the checkpoint supplying
per-stage completion where it still exists.
"""

import logging
from typing import Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from shortpipe.db.models import JOB_COMPLETE, JOB_FAILED
from shortpipe.errors import JobAccessDenied, JobNotFound
from shortpipe.orchestrator.checkpoint import CheckpointStore
from shortpipe.orchestrator.failures import CAUSE_MESSAGES, FailureCause
from shortpipe.orchestrator.progress import ProgressPublisher
from shortpipe.orchestrator.state import STAGES, empty_completed_steps

logger = logging.getLogger(__name__)


class ReadsJobs(Protocol):
    async def get(self, job_id: str): ...


class JobStatusView(BaseModel):
    """Status payload returned to the owner of a job."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: str
    status: str
    step: Optional[str] = None
    current_step_id: Optional[str] = None
    retry_count: Optional[int] = None
    max_retries: Optional[int] = None
    error: Optional[str] = None
    last_error: Optional[str] = None
    retry_reason: Optional[str] = None
    video_url: Optional[str] = None
    completed_steps: Dict[str, bool]


class StatusReader:
    def __init__(
        self,
        progress: ProgressPublisher,
        checkpoints: CheckpointStore,
        jobs: ReadsJobs,
    ):
        self.progress = progress
        self.checkpoints = checkpoints
        self.jobs = jobs

    async def get_status(self, job_id: str, owner_id: str) -> JobStatusView:
        """Return the current status of ``job_id`` for ``owner_id``.

        Raises:
            JobAccessDenied: The job belongs to another user.
            JobNotFound: Neither a progress record nor a job row exists.
        """
        record = await self.progress.read(job_id)
        checkpoint = await self.checkpoints.get(job_id)
        completed = dict(checkpoint.completed_steps) if checkpoint else empty_completed_steps()

        if record is not None:
            if record.owner_id != owner_id:
                raise JobAccessDenied(f"Job {job_id} does not belong to the caller")
            video_url = None
            if record.status == "completed":
                # Checkpoint is deleted on success
                completed = {stage: True for stage in STAGES}
                job = await self.jobs.get(job_id)
                video_url = job.video_url if job is not None else None
            return JobStatusView(
                job_id=job_id,
                status=record.status,
                step=record.step,
                current_step_id=record.current_step_id,
                retry_count=record.retry_count,
                max_retries=record.max_retries,
                error=record.error,
                last_error=record.last_error,
                retry_reason=record.retry_reason,
                video_url=video_url,
                completed_steps=completed,
            )

        job = await self.jobs.get(job_id)
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        if job.owner_id != owner_id:
            raise JobAccessDenied(f"Job {job_id} does not belong to the caller")

        logger.debug(f"No live progress for job {job_id}, using job status '{job.status}'")
        if job.status == JOB_FAILED:
            return JobStatusView(
                job_id=job_id,
                status="error",
                error=CAUSE_MESSAGES[FailureCause.GENERIC],
                completed_steps=completed,
            )
        if job.status == JOB_COMPLETE:
            return JobStatusView(
                job_id=job_id,
                status="completed",
                step="Video ready",
                video_url=job.video_url,
                completed_steps={stage: True for stage in STAGES},
            )
        return JobStatusView(
            job_id=job_id,
            status="processing",
            step="Processing...",
            completed_steps=completed,
        )

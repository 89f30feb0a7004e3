"""Pipeline driver with checkpointed, idempotent stage execution.

Runs the five stages of one job in fixed order with:
- Resume from the first stage the checkpoint does not mark complete
- A checkpoint re-read before every dispatch so a stage finished by a racing
  trigger is not executed twice
- Progress records published at every transition
- Per-stage timing and logging

The driver never decides retry policy. A failing stage is recorded on the
checkpoint and the same error object is re-raised for the retry coordinator,
tagged with ``pipeline_stage``.
"""

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from shortpipe.orchestrator.checkpoint import CheckpointStore
from shortpipe.orchestrator.failures import user_message
from shortpipe.orchestrator.progress import ProgressPublisher, ProgressRecord, ProgressStatus
from shortpipe.orchestrator.state import (
    ALL_COMPLETE,
    STAGE_DESCRIPTIONS,
    next_stage,
    remaining_stages,
)

logger = logging.getLogger(__name__)

# A stage collaborator receives only the job id and reads its inputs from the
# durable job record. The render stage returns the final video URL.
StageExecutor = Callable[[str], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class StageExecutors:
    """The five stage collaborators, one per pipeline stage."""

    script: StageExecutor
    images: StageExecutor
    audio: StageExecutor
    captions: StageExecutor
    render: StageExecutor

    def for_stage(self, stage: str) -> StageExecutor:
        return getattr(self, stage)


class PipelineDriver:
    """Sequences the remaining stages of one job."""

    def __init__(
        self,
        checkpoints: CheckpointStore,
        progress: ProgressPublisher,
        executors: StageExecutors,
    ):
        self.checkpoints = checkpoints
        self.progress = progress
        self.executors = executors

    async def run(self, job_id: str, owner_id: str) -> Optional[str]:
        """Execute every stage the checkpoint does not mark complete.

        Args:
            job_id: Job to run
            owner_id: Submitting user, stored alongside checkpoint/progress

        Returns:
            The final video URL when render ran in this call, otherwise None
            (including the no-op case where every stage was already done).

        Raises:
            Exception: Any stage failure, re-raised as-is, after the checkpoint and
                progress record have been updated.
        """
        checkpoint = await self.checkpoints.get(job_id)
        resume_from = next_stage(checkpoint)
        if resume_from == ALL_COMPLETE:
            logger.info(f"Job {job_id}: all stages already complete, nothing to do")
            return None

        logger.info(
            f"Starting pipeline for job {job_id}, resume point: {resume_from}, "
            f"completed_steps: {checkpoint.completed_steps if checkpoint else None}"
        )

        step_log: Dict[str, float] = {}
        pipeline_start = time.monotonic()
        video_url: Optional[str] = None

        for stage in remaining_stages(resume_from):
            # Re-check: a concurrent run may have finished this stage meanwhile
            current = await self.checkpoints.get(job_id)
            if current is not None and current.completed_steps.get(stage, False):
                logger.info(f"Job {job_id}: stage '{stage}' already completed elsewhere, skipping")
                continue

            await self.progress.publish(
                job_id,
                ProgressRecord(
                    job_id=job_id,
                    owner_id=owner_id,
                    status=ProgressStatus(stage),
                    step=STAGE_DESCRIPTIONS[stage],
                    current_step_id=stage,
                ),
            )

            step_start = time.monotonic()
            logger.info(f"Job {job_id}: starting {stage} stage")
            try:
                result = await self.executors.for_stage(stage)(job_id)
            except Exception as e:
                # Tag the error; the checkpoint write below may not land
                e.pipeline_stage = stage
                logger.error(
                    f"Job {job_id}: {stage} stage failed after "
                    f"{time.monotonic() - step_start:.2f}s: {type(e).__name__}: {e}"
                )
                await self.checkpoints.mark_failed(job_id, owner_id, stage)
                await self.progress.publish(
                    job_id,
                    ProgressRecord(
                        job_id=job_id,
                        owner_id=owner_id,
                        status=ProgressStatus.ERROR,
                        step=f"Failed during {stage}",
                        current_step_id=stage,
                        error=user_message(e),
                        last_error=f"{type(e).__name__}: {e}",
                    ),
                )
                raise

            await self.checkpoints.mark_completed(job_id, owner_id, stage)
            step_duration = time.monotonic() - step_start
            step_log[stage] = step_duration
            logger.info(f"Job {job_id}: {stage} stage completed in {step_duration:.2f}s")

            if stage == "render":
                video_url = result

        await self.checkpoints.delete(job_id)
        await self.progress.publish(
            job_id,
            ProgressRecord(
                job_id=job_id,
                owner_id=owner_id,
                status=ProgressStatus.COMPLETED,
                step="Video ready",
            ),
        )
        logger.info(
            f"Pipeline for job {job_id} completed in "
            f"{time.monotonic() - pipeline_start:.2f}s, step timings: "
            + ", ".join(f"{k}={v:.2f}s" for k, v in step_log.items())
        )
        return video_url

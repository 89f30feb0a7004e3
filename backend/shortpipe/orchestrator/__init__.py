"""Resumable pipeline orchestration: checkpoints, progress, retries."""

from shortpipe.orchestrator.checkpoint import Checkpoint, CheckpointStore
from shortpipe.orchestrator.failures import is_retryable, user_message
from shortpipe.orchestrator.lease import JobLease
from shortpipe.orchestrator.pipeline import PipelineDriver, StageExecutors
from shortpipe.orchestrator.progress import ProgressPublisher, ProgressRecord, ProgressStatus
from shortpipe.orchestrator.retry import RetryCoordinator
from shortpipe.orchestrator.state import ALL_COMPLETE, STAGES, next_stage
from shortpipe.orchestrator.status import JobStatusView, StatusReader

__all__ = [
    "ALL_COMPLETE",
    "Checkpoint",
    "CheckpointStore",
    "JobLease",
    "JobStatusView",
    "PipelineDriver",
    "ProgressPublisher",
    "ProgressRecord",
    "ProgressStatus",
    "RetryCoordinator",
    "STAGES",
    "StageExecutors",
    "StatusReader",
    "is_retryable",
    "next_stage",
    "user_message",
]

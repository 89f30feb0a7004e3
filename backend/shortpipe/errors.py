"""Exception types shared across the orchestrator, stages and API."""

from typing import Optional


class ShortpipeError(Exception):
    """Base class for errors raised by shortpipe itself."""


class InvalidPromptError(ShortpipeError):
    """Raised when a submitted prompt fails validation. Never retried."""


class JobNotFound(ShortpipeError):
    """Raised when a job id does not exist in the durable store."""


class JobAccessDenied(ShortpipeError):
    """Raised when a caller asks about a job owned by someone else."""


class MissingStageInputError(ShortpipeError):
    """Raised when a stage finds its durable inputs absent.

    This means an earlier stage's output is missing, which a retry cannot fix.
    """


class StageExecutionError(ShortpipeError):
    """Raised when a vendor returns a response the stage cannot use."""


class TranscriptionFailedError(StageExecutionError):
    """Raised when the transcription service reports a failed transcript."""


class RenderFailedError(StageExecutionError):
    """Raised when the render service reports a fatal render error."""


class RenderTimedOutError(StageExecutionError):
    """Raised when a render does not finish within the configured wait."""

    def __init__(self, waited_seconds: float):
        self.waited_seconds = waited_seconds
        super().__init__(f"render timed out after {waited_seconds:.0f} seconds")


class LeaseBusy(ShortpipeError):
    """Raised when another attempt of the same job holds its lease.

    Not a failure: the attempt never started, so it must be requeued without
    counting against the job's attempts.
    """

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"job {job_id} is leased by another attempt")


class AttemptFailed(ShortpipeError):
    """Raised by the retry coordinator after one job attempt failed.

    Carries the coordinator's decision. The original stage error is kept
    untouched on ``error`` (and as ``__cause__``) so the queue layer can
    re-raise it as-is.
    """

    def __init__(
        self,
        error: BaseException,
        *,
        should_retry: bool,
        attempt_number: int,
        failed_stage: Optional[str],
    ):
        self.error = error
        self.should_retry = should_retry
        self.attempt_number = attempt_number
        self.failed_stage = failed_stage
        super().__init__(
            f"attempt {attempt_number} failed at {failed_stage or 'unknown stage'}: {error}"
        )

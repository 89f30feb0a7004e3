"""Stage constants and resume-point logic for the pipeline orchestrator.

Defines the fixed stage order that governs pipeline execution with
idempotent resume from the first stage not yet marked complete.
"""

from typing import Dict, Mapping, Optional, Protocol

# Pipeline stages in execution order
STAGES = ("script", "images", "audio", "captions", "render")

# Sentinel returned by next_stage() once every stage is complete
ALL_COMPLETE = "completed"

# Human-readable action shown while a stage runs
STAGE_DESCRIPTIONS = {
    "script": "Generating script...",
    "images": "Generating images...",
    "audio": "Synthesizing voice-over...",
    "captions": "Generating captions...",
    "render": "Rendering video...",
}


class HasCompletedSteps(Protocol):
    completed_steps: Mapping[str, bool]


def empty_completed_steps() -> Dict[str, bool]:
    """Return a completed-steps map with every stage pending."""
    return {stage: False for stage in STAGES}


def is_stage(name: str) -> bool:
    return name in STAGES


def next_stage(checkpoint: Optional[HasCompletedSteps]) -> str:
    """Determine which stage to resume from.

    Args:
        checkpoint: Stored checkpoint, or None when absent. An absent
            checkpoint is treated exactly like one with every stage pending.

    Returns:
        The first stage (in STAGES order) not marked complete, or
        ALL_COMPLETE when every stage is done.

    Examples:
        >>> next_stage(None)
        'script'
    """
    if checkpoint is None:
        return STAGES[0]

    completed = checkpoint.completed_steps
    for stage in STAGES:
        if not completed.get(stage, False):
            return stage
    return ALL_COMPLETE


def remaining_stages(start: str) -> tuple[str, ...]:
    """Return the stages from ``start`` through render, in order."""
    if start == ALL_COMPLETE:
        return ()
    if not is_stage(start):
        raise ValueError(f"Unknown stage: {start}")
    return STAGES[STAGES.index(start):]

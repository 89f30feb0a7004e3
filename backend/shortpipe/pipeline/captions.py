"""Word-level captions from the voice-over, positioned in video frames."""

import logging
import math
from typing import Iterable, Optional

from shortpipe.db.repository import JobRepository
from shortpipe.errors import MissingStageInputError
from shortpipe.services.transcription_client import AssemblyAIClient, TranscriptWord

logger = logging.getLogger(__name__)


def words_to_captions(words: Iterable[TranscriptWord], frame_rate: int = 30) -> list[dict]:
    """Convert millisecond word timings into frame-indexed captions.

    A word starts on the frame containing its start time and ends on the
    last frame before its end time, never before it starts.

    Examples:
        >>> words_to_captions([TranscriptWord(text="Hi", start=0, end=500)])
        [{'text': 'Hi', 'startFrame': 0, 'endFrame': 14}]
    """
    captions = []
    for word in words:
        start_frame = max(0, math.floor(word.start / 1000 * frame_rate))
        end_frame = max(start_frame, math.ceil(word.end / 1000 * frame_rate) - 1)
        captions.append({"text": word.text, "startFrame": start_frame, "endFrame": end_frame})
    return captions


def duration_from_captions(captions: list[dict]) -> Optional[int]:
    """Video length in frames: the last caption's end frame."""
    if not captions:
        return None
    return captions[-1]["endFrame"]


async def run_captions_stage(
    job_id: str,
    *,
    jobs: JobRepository,
    transcription: AssemblyAIClient,
    frame_rate: int = 30,
) -> None:
    job = await jobs.get(job_id)
    if job is None or not job.audio_url:
        raise MissingStageInputError(f"Job {job_id} has no voice-over audio")

    words = await transcription.transcribe(job.audio_url)
    captions = words_to_captions(words, frame_rate)
    duration = duration_from_captions(captions)
    logger.info(f"Job {job_id}: {len(captions)} captions, duration {duration} frames")
    await jobs.save_captions(job_id, captions, duration)

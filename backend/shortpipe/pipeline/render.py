"""Final render: images, voice-over and captions into one video.

Polling is bounded by ``max_wait``; a render that does not finish in time
raises RenderTimedOutError, which is never retried at the job level.
"""

import asyncio
import logging
import time
from typing import Any, Optional

from shortpipe.db.repository import JobRepository
from shortpipe.errors import MissingStageInputError, RenderFailedError, RenderTimedOutError
from shortpipe.services.render_client import RenderClient

logger = logging.getLogger(__name__)


def compute_duration_frames(
    duration_frames: Optional[int],
    captions: Any,
    default: int = 180,
) -> int:
    """Pick the render length in frames.

    Uses the stored duration when positive, otherwise the last caption's end
    frame, otherwise ``default`` (6 seconds at 30 fps). Malformed captions
    fall through to the default.
    """
    if isinstance(duration_frames, int) and duration_frames > 0:
        return duration_frames
    if isinstance(captions, list) and captions:
        last = captions[-1]
        end_frame = last.get("endFrame") if isinstance(last, dict) else None
        if isinstance(end_frame, int) and end_frame > 0:
            return end_frame
    return default


async def run_render_stage(
    job_id: str,
    *,
    jobs: JobRepository,
    render: RenderClient,
    composition: str = "MyVideo",
    codec: str = "h264",
    frames_per_lambda: int = 400,
    default_duration_frames: int = 180,
    poll_interval: float = 3.0,
    max_wait: float = 900.0,
) -> str:
    """Render the job's video and return its URL."""
    job = await jobs.get(job_id)
    if job is None or not job.image_links or not job.audio_url:
        raise MissingStageInputError(f"Job {job_id} is missing images or audio for render")

    duration = compute_duration_frames(job.duration_frames, job.captions, default_duration_frames)
    handle = await render.submit(
        composition=composition,
        codec=codec,
        input_props={
            "imageLinks": job.image_links,
            "audio": job.audio_url,
            "captions": job.captions if isinstance(job.captions, list) else [],
            "durationInFrames": duration,
        },
        frames_per_lambda=frames_per_lambda,
    )

    started = time.monotonic()
    while True:
        progress = await render.get_progress(handle.render_id)
        if progress.fatal_error_encountered:
            raise RenderFailedError(f"Render {handle.render_id} failed: {progress.errors}")
        if progress.done:
            video_url = progress.output_file or render.default_output_url(handle)
            logger.info(f"Job {job_id}: render completed: {video_url}")
            await jobs.mark_complete(job_id, video_url)
            return video_url

        waited = time.monotonic() - started
        if waited >= max_wait:
            raise RenderTimedOutError(waited)
        logger.info(
            f"Job {job_id}: render progress {int(progress.overall_progress * 100)}%, "
            f"frames rendered: {progress.frames_rendered}"
        )
        await asyncio.sleep(poll_interval)

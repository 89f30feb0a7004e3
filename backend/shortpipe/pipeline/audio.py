"""Voice-over synthesis for the script narration."""

import logging

from shortpipe.db.repository import JobRepository
from shortpipe.errors import MissingStageInputError
from shortpipe.services.media_storage import MediaStorage
from shortpipe.services.tts_client import ElevenLabsClient

logger = logging.getLogger(__name__)


async def run_audio_stage(
    job_id: str,
    *,
    jobs: JobRepository,
    tts: ElevenLabsClient,
    storage: MediaStorage,
    voice_id: str,
    model_id: str,
    output_format: str = "mp3_44100_128",
) -> None:
    job = await jobs.get(job_id)
    if job is None or not job.content:
        raise MissingStageInputError(f"Job {job_id} has no script content")

    audio = await tts.synthesize(
        job.content,
        voice_id=voice_id,
        model_id=model_id,
        output_format=output_format,
    )
    audio_url = storage.save(job_id, "voiceover.mp3", audio)
    logger.info(f"Job {job_id}: voice-over stored at {audio_url}")
    await jobs.save_audio(job_id, audio_url)

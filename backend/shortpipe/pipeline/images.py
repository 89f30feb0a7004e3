"""Image generation for each script scene.

- One image per image prompt, generated sequentially
- Rate limiting with a configurable delay between requests
- Images stored as PNG files in media storage
"""

import asyncio
import logging

from google import genai
from google.genai import types

from shortpipe.db.repository import JobRepository
from shortpipe.errors import MissingStageInputError, StageExecutionError
from shortpipe.services.media_storage import MediaStorage
from shortpipe.services.transient import vendor_retry

logger = logging.getLogger(__name__)


@vendor_retry()
async def _generate_image_from_text(client: genai.Client, prompt: str, aspect_ratio: str, image_model: str) -> bytes:
    """Generate an image from a text prompt using Gemini generate_content().

    Returns:
        PNG image data as bytes

    Raises:
        StageExecutionError: If no image found in response
    """
    response = await client.aio.models.generate_content(
        model=image_model,
        contents=f"{prompt}\n\nAspect ratio: {aspect_ratio}.",
        config=types.GenerateContentConfig(
            response_modalities=["IMAGE"],
        ),
    )

    for candidate in response.candidates or []:
        if candidate.content is None:
            continue
        for part in candidate.content.parts or []:
            if part.inline_data and part.inline_data.data:
                return part.inline_data.data

    raise StageExecutionError("No image generated in response")


async def run_images_stage(
    job_id: str,
    *,
    jobs: JobRepository,
    client: genai.Client,
    storage: MediaStorage,
    image_model: str,
    aspect_ratio: str = "9:16",
    delay: float = 1.0,
) -> None:
    """Generate every scene image for ``job_id`` and store their URLs."""
    job = await jobs.get(job_id)
    if job is None or not job.image_prompts:
        raise MissingStageInputError(f"Job {job_id} has no image prompts")

    links: list[str] = []
    for idx, prompt in enumerate(job.image_prompts):
        if idx > 0 and delay > 0:
            await asyncio.sleep(delay)
        logger.info(f"Job {job_id}: generating image {idx + 1}/{len(job.image_prompts)}")
        data = await _generate_image_from_text(client, prompt, aspect_ratio, image_model)
        links.append(storage.save(job_id, f"image_{idx}.png", data))

    await jobs.save_image_links(job_id, links)

"""Script generation: narration plus one image prompt per scene."""

import logging

from shortpipe.db.repository import JobRepository
from shortpipe.errors import MissingStageInputError
from shortpipe.schemas.script import ScriptOutput
from shortpipe.services.llm import LLMAdapter

logger = logging.getLogger(__name__)

SCRIPT_PROMPT = """\
Write a script for a 30 second vertical short video on the topic: "{topic}".
Split it into scenes. For each scene give the narration text (content_text)
and a realistic, detailed AI image prompt for its visual (image_prompt).
Return only the "content" array of scenes, with no scene labels or commentary."""


async def run_script_stage(job_id: str, *, jobs: JobRepository, llm: LLMAdapter) -> None:
    """Generate the script for ``job_id`` and persist it on the job."""
    job = await jobs.get(job_id)
    if job is None or not job.prompt:
        raise MissingStageInputError(f"Job {job_id} has no prompt")

    script: ScriptOutput = await llm.generate_text(
        SCRIPT_PROMPT.format(topic=job.prompt),
        ScriptOutput,
        temperature=0.8,
    )
    logger.info(f"Job {job_id}: script has {len(script.content)} scenes")
    await jobs.save_script(job_id, script.narration, script.image_prompts)

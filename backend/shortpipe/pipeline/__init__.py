"""Stage collaborators for the five pipeline stages.

Each stage reads its inputs from the job row, calls one external service
and writes its output back before returning.
"""

from functools import partial

from google import genai

from shortpipe.config import PipelineConfig, ModelsConfig
from shortpipe.db.repository import JobRepository
from shortpipe.orchestrator.pipeline import StageExecutors
from shortpipe.pipeline.audio import run_audio_stage
from shortpipe.pipeline.captions import run_captions_stage
from shortpipe.pipeline.images import run_images_stage
from shortpipe.pipeline.render import run_render_stage
from shortpipe.pipeline.script import run_script_stage
from shortpipe.services.llm import LLMAdapter
from shortpipe.services.media_storage import MediaStorage
from shortpipe.services.render_client import RenderClient
from shortpipe.services.transcription_client import AssemblyAIClient
from shortpipe.services.tts_client import ElevenLabsClient


def build_stage_executors(
    *,
    jobs: JobRepository,
    llm: LLMAdapter,
    image_client: genai.Client,
    tts: ElevenLabsClient,
    transcription: AssemblyAIClient,
    render: RenderClient,
    storage: MediaStorage,
    pipeline_config: PipelineConfig,
    models_config: ModelsConfig,
) -> StageExecutors:
    """Bind each stage to its clients so the driver only passes a job id."""
    return StageExecutors(
        script=partial(run_script_stage, jobs=jobs, llm=llm),
        images=partial(
            run_images_stage,
            jobs=jobs,
            client=image_client,
            storage=storage,
            image_model=models_config.image_gen,
            aspect_ratio=pipeline_config.aspect_ratio,
            delay=pipeline_config.image_gen_delay,
        ),
        audio=partial(
            run_audio_stage,
            jobs=jobs,
            tts=tts,
            storage=storage,
            voice_id=models_config.tts_voice_id,
            model_id=models_config.tts_model,
            output_format=models_config.tts_output_format,
        ),
        captions=partial(
            run_captions_stage,
            jobs=jobs,
            transcription=transcription,
            frame_rate=pipeline_config.frame_rate,
        ),
        render=partial(
            run_render_stage,
            jobs=jobs,
            render=render,
            composition=pipeline_config.composition,
            codec=pipeline_config.codec,
            frames_per_lambda=pipeline_config.frames_per_lambda,
            default_duration_frames=pipeline_config.default_duration_frames,
            poll_interval=pipeline_config.render_poll_interval,
            max_wait=pipeline_config.render_max_wait,
        ),
    )


__all__ = ["build_stage_executors"]

"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        # Load from config.yaml in current directory
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class RedisConfig(BaseModel):
    """Redis connection plus key layout for the checkpoint/progress stores.

    The checkpoint must outlive the longest retry sequence, so its TTL is
    required to be strictly greater than the progress TTL.
    """

    url: str = "redis://localhost:6379/0"
    progress_prefix: str = "video_progress:"
    checkpoint_prefix: str = "video_checkpoint:"
    lease_prefix: str = "video_lease:"
    progress_ttl_seconds: int = 3600
    checkpoint_ttl_seconds: int = 7200
    # Renewed by the holder every third of this; a crashed holder lapses within it
    lease_ttl_seconds: int = 120

    @model_validator(mode="after")
    def checkpoint_outlives_progress(self):
        if self.checkpoint_ttl_seconds <= self.progress_ttl_seconds:
            raise ValueError(
                "checkpoint_ttl_seconds must be greater than progress_ttl_seconds "
                f"(got {self.checkpoint_ttl_seconds} <= {self.progress_ttl_seconds})"
            )
        return self


class QueueConfig(BaseModel):
    """Job queue and job-level retry parameters."""

    name: str = "video-processing"
    broker_url: Optional[str] = None
    concurrency: int = 2
    max_attempts: int = Field(default=3, ge=1)
    # Linear in-process delay before a retried attempt: delay * attempts_made
    retry_delay_seconds: float = 2.0
    # Exponential redelivery backoff applied by the queue itself
    backoff_factor: int = 5
    backoff_max_seconds: int = 300
    # Delay before re-offering an attempt whose job lease is held elsewhere
    lease_busy_countdown: float = 30.0


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    frame_rate: int = 30
    default_duration_frames: int = 180
    aspect_ratio: str = "9:16"
    composition: str = "MyVideo"
    codec: str = "h264"
    frames_per_lambda: int = 400
    render_poll_interval: float = 3.0
    render_max_wait: float = 900.0
    transcription_poll_interval: float = 3.0
    transcription_max_wait: float = 600.0
    image_gen_delay: float = 1.0
    vendor_retry_attempts: int = 3


class ModelsConfig(BaseModel):
    """AI model identifiers."""

    script_llm: str = "gemini-2.5-flash"
    image_gen: str = "gemini-2.5-flash-image"
    tts_model: str = "eleven_multilingual_v2"
    tts_voice_id: str = "JBFqnCBsd6RMkjVDRZzb"
    tts_output_format: str = "mp3_44100_128"


class ProvidersConfig(BaseModel):
    """Credentials and endpoints for the external stage services."""

    google_project_id: Optional[str] = None
    google_location: str = "us-central1"
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_base_url: str = "https://api.elevenlabs.io"
    assemblyai_api_key: Optional[str] = None
    assemblyai_base_url: str = "https://api.assemblyai.com"
    render_base_url: str = "http://localhost:8700"
    render_api_key: Optional[str] = None
    http_timeout_seconds: float = 60.0


class StorageConfig(BaseModel):
    """Storage and database configuration."""

    database_url: str = "sqlite+aiosqlite:///shortpipe.db"
    media_dir: Path = Path("tmp/media")
    public_base_url: str = "http://localhost:8000/media"

    @field_validator("media_dir", mode="before")
    @classmethod
    def convert_media_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: SHORTPIPE_, delimiter: __)
    2. YAML file (config.yaml)
    3. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="SHORTPIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    redis: RedisConfig = RedisConfig()
    queue: QueueConfig = QueueConfig()
    pipeline: PipelineConfig = PipelineConfig()
    models: ModelsConfig = ModelsConfig()
    providers: ProvidersConfig = ProvidersConfig()
    storage: StorageConfig = StorageConfig()
    server: ServerConfig = ServerConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Environment variables
        2. YAML file
        3. Init settings (programmatic defaults)
        """
        return (
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
        )

    @property
    def broker_url(self) -> str:
        """Celery broker URL; defaults to the progress/checkpoint Redis."""
        return self.queue.broker_url or self.redis.url


# Singleton instance
settings = Settings()

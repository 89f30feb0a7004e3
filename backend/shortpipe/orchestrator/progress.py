"""Ephemeral job progress records for UI polling.

Progress lives under a short TTL and is advisory only: a missing record never
means a job failed, callers fall back to the durable job row. Publishing is a
pure side effect and can never abort a stage.
"""

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import redis.asyncio as redis
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

MAX_ERROR_TEXT = 1000

PATH_PLACEHOLDER = "[REDACTED_PATH]"
TOKEN_PLACEHOLDER = "[REDACTED_TOKEN]"
IP_PLACEHOLDER = "[REDACTED_IP]"
BEARER_PLACEHOLDER = "Bearer [REDACTED]"

# Applied in order; bearer tokens go first so the token body is not
# half-matched by the generic token pattern.
_REDACTIONS = (
    (re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE), BEARER_PLACEHOLDER),
    # Windows absolute paths: C:\Users\...
    (re.compile(r"\b[A-Za-z]:\\(?:[^\\\s'\"]+\\)*[^\\\s'\"]*"), PATH_PLACEHOLDER),
    # POSIX absolute paths, but not URL paths (preceded by a host or scheme)
    (re.compile(r"(?<![\w:/.~\-])(?:/[\w.\-@]+)+/?"), PATH_PLACEHOLDER),
    # A trailing sentence period is allowed, a fifth octet is not
    (re.compile(r"(?<![\w.])(?:\d{1,3}\.){3}\d{1,3}(?!\.?\d)(?!\w)"), IP_PLACEHOLDER),
    # Long base64/base64url/hex runs look like credentials
    (re.compile(r"(?<![A-Za-z0-9+/_\-])[A-Za-z0-9+/_\-]{32,}={0,2}"), TOKEN_PLACEHOLDER),
)


def sanitize_error_text(text: Optional[str]) -> Optional[str]:
    """Redact secrets and host details from diagnostic text.

    Absolute filesystem paths, long base64/hex tokens, IPv4 addresses and
    ``Bearer <token>`` headers are replaced with fixed placeholders, and the
    result is truncated to MAX_ERROR_TEXT characters.
    """
    if text is None:
        return None
    for pattern, placeholder in _REDACTIONS:
        text = pattern.sub(placeholder, text)
    if len(text) > MAX_ERROR_TEXT:
        text = text[: MAX_ERROR_TEXT - 3] + "..."
    return text


class ProgressStatus(str, Enum):
    SCRIPT = "script"
    IMAGES = "images"
    AUDIO = "audio"
    CAPTIONS = "captions"
    RENDER = "render"
    RETRYING = "retrying"
    COMPLETED = "completed"
    ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressRecord(BaseModel):
    """Live status of one job as shown to polling clients."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    job_id: str
    owner_id: str
    status: ProgressStatus
    step: Optional[str] = None
    # Exact stage being executed or retried, independent of the free-text step
    current_step_id: Optional[str] = None
    # Present only while further attempts are possible
    retry_count: Optional[int] = None
    max_retries: Optional[int] = None
    error: Optional[str] = None
    last_error: Optional[str] = None
    retry_reason: Optional[str] = None
    updated_at: datetime = Field(default_factory=_utcnow)

    def sanitized(self) -> "ProgressRecord":
        return self.model_copy(
            update={
                "error": sanitize_error_text(self.error),
                "last_error": sanitize_error_text(self.last_error),
                "retry_reason": sanitize_error_text(self.retry_reason),
            }
        )


class ProgressPublisher:
    """Redis-backed progress records with a short TTL."""

    def __init__(
        self,
        client: redis.Redis,
        *,
        ttl: int = 3600,
        key_prefix: str = "video_progress:",
    ):
        self._client = client
        self.ttl = ttl
        self.key_prefix = key_prefix

    def _key(self, job_id: str) -> str:
        return f"{self.key_prefix}{job_id}"

    async def publish(self, job_id: str, record: ProgressRecord) -> None:
        """Upsert the job's progress record. Never raises on store errors."""
        payload = record.sanitized().model_dump_json(by_alias=True, exclude_none=True)
        try:
            await self._client.setex(self._key(job_id), self.ttl, payload)
            logger.debug(f"Progress for job {job_id}: {record.status}")
        except RedisError as e:
            logger.error(f"Failed to publish progress for job {job_id}: {e}")

    async def read(self, job_id: str) -> Optional[ProgressRecord]:
        try:
            raw = await self._client.get(self._key(job_id))
        except RedisError as e:
            logger.error(f"Failed to read progress for job {job_id}: {e}")
            return None
        if raw is None:
            return None
        try:
            return ProgressRecord.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable progress record for job {job_id}: {e}")
            return None

    async def clear(self, job_id: str) -> None:
        """Delete the record ahead of TTL expiry."""
        try:
            await self._client.delete(self._key(job_id))
        except RedisError as e:
            logger.error(f"Failed to clear progress for job {job_id}: {e}")

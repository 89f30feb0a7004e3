"""Durable per-job checkpoint store backed by Redis.

A checkpoint records which pipeline stages of a job have completed and which
stage failed most recently. It is the resume source for retried attempts.

Every operation is best-effort from the caller's point of view: Redis
outages and corrupt payloads are logged and reported as "no checkpoint",
which at worst causes redundant work, never lost stage output.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

import redis.asyncio as redis
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from redis.exceptions import RedisError, WatchError

from shortpipe.orchestrator.state import STAGES, empty_completed_steps, is_stage, next_stage

logger = logging.getLogger(__name__)

# Optimistic-transaction attempts before giving up on a contended key
_MAX_WATCH_RETRIES = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Checkpoint(BaseModel):
    """Resume state for one job, stored as camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    job_id: str
    owner_id: str
    completed_steps: Dict[str, bool] = Field(default_factory=empty_completed_steps)
    last_completed_step: Optional[str] = None
    # Informational only; kept after a later success of the same stage
    last_failed_step: Optional[str] = None
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("completed_steps")
    @classmethod
    def fill_missing_stages(cls, v: Dict[str, bool]) -> Dict[str, bool]:
        """Normalise to exactly the known stages, unknown keys dropped."""
        return {stage: bool(v.get(stage, False)) for stage in STAGES}


class CheckpointStore:
    """Redis-backed checkpoint persistence.

    Example:
        store = CheckpointStore(client, ttl=7200)
        await store.mark_completed(job_id, owner_id, "script")
        resume_from = store.next_stage(await store.get(job_id))
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        ttl: int = 7200,
        key_prefix: str = "video_checkpoint:",
    ):
        self._client = client
        self.ttl = ttl
        self.key_prefix = key_prefix

    next_stage = staticmethod(next_stage)

    def _key(self, job_id: str) -> str:
        return f"{self.key_prefix}{job_id}"

    async def get(self, job_id: str) -> Optional[Checkpoint]:
        """Load a job's checkpoint.

        Returns:
            The checkpoint, or None if absent, unreadable or the store is down.
        """
        try:
            raw = await self._client.get(self._key(job_id))
        except RedisError as e:
            logger.error(f"Failed to load checkpoint for job {job_id}: {e}")
            return None
        if raw is None:
            return None
        try:
            return Checkpoint.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Discarding corrupt checkpoint for job {job_id}: {e}")
            return None

    async def mark_completed(self, job_id: str, owner_id: str, stage: str) -> None:
        """Record that ``stage`` finished. Idempotent; never un-completes."""
        if not is_stage(stage):
            raise ValueError(f"Unknown stage: {stage}")

        def _apply(cp: Checkpoint) -> None:
            cp.completed_steps[stage] = True
            cp.last_completed_step = stage

        if await self._update(job_id, owner_id, _apply):
            logger.info(f"Checkpoint: job {job_id} stage '{stage}' completed")

    async def mark_failed(self, job_id: str, owner_id: str, stage: str) -> None:
        """Record that ``stage`` failed. Leaves completed stages untouched."""
        if not is_stage(stage):
            raise ValueError(f"Unknown stage: {stage}")

        def _apply(cp: Checkpoint) -> None:
            cp.last_failed_step = stage

        if await self._update(job_id, owner_id, _apply):
            logger.info(f"Checkpoint: job {job_id} stage '{stage}' failed")

    async def delete(self, job_id: str) -> None:
        """Remove the checkpoint once the whole pipeline has succeeded."""
        try:
            await self._client.delete(self._key(job_id))
            logger.debug(f"Deleted checkpoint for job {job_id}")
        except RedisError as e:
            logger.error(f"Failed to delete checkpoint for job {job_id}: {e}")

    async def _update(
        self, job_id: str, owner_id: str, mutate: Callable[[Checkpoint], None]
    ) -> bool:
        """Read-modify-write under WATCH so concurrent writers cannot clobber.

        If the existing value cannot be read, nothing is written: seeding a
        fresh all-pending record over an unreadable one could un-complete
        stages. A corrupt record is the exception and gets replaced.

        Returns:
            True if the new value was stored.
        """
        key = self._key(job_id)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                for _ in range(_MAX_WATCH_RETRIES):
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        checkpoint = self._decode_or_seed(job_id, owner_id, raw)
                        mutate(checkpoint)
                        checkpoint.updated_at = _utcnow()

                        pipe.multi()
                        pipe.setex(key, self.ttl, checkpoint.model_dump_json(by_alias=True))
                        await pipe.execute()
                        return True
                    except WatchError:
                        logger.debug(f"Checkpoint for job {job_id} changed concurrently, retrying")
                        continue
                logger.error(
                    f"Gave up updating checkpoint for job {job_id} after "
                    f"{_MAX_WATCH_RETRIES} contended attempts"
                )
                return False
        except RedisError as e:
            logger.error(f"Failed to update checkpoint for job {job_id}: {e}")
            return False

    @staticmethod
    def _decode_or_seed(job_id: str, owner_id: str, raw) -> Checkpoint:
        if raw is not None:
            try:
                return Checkpoint.model_validate_json(raw)
            except ValidationError as e:
                logger.warning(f"Replacing corrupt checkpoint for job {job_id}: {e}")
        return Checkpoint(job_id=job_id, owner_id=owner_id)

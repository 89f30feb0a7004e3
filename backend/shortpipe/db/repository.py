"""Durable job record access for the API, stages and retry coordinator.

Every method opens its own short-lived session; sessions are never shared
across awaits that span external service calls.
"""

import logging
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shortpipe.db.models import JOB_COMPLETE, JOB_FAILED, JOB_PROCESSING, Job

logger = logging.getLogger(__name__)


class JobRepository:
    """CRUD over the ``jobs`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, owner_id: str, prompt: str) -> Job:
        async with self._session_factory() as session:
            job = Job(owner_id=owner_id, prompt=prompt, status=JOB_PROCESSING)
            session.add(job)
            await session.commit()
            await session.refresh(job)
            logger.info(f"Created job {job.id} for prompt: {prompt[:50]}...")
            return job

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._session_factory() as session:
            return await session.get(Job, job_id)

    async def get_for_owner(self, job_id: str, owner_id: str) -> Optional[Job]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Job).where(Job.id == job_id, Job.owner_id == owner_id)
            )
            return result.scalar_one_or_none()

    async def list_jobs(self, owner_id: Optional[str] = None, limit: int = 50) -> Sequence[Job]:
        async with self._session_factory() as session:
            stmt = select(Job).order_by(Job.created_at.desc()).limit(limit)
            if owner_id is not None:
                stmt = stmt.where(Job.owner_id == owner_id)
            result = await session.execute(stmt)
            return result.scalars().all()

    async def _update_processing(self, job_id: str, **values) -> bool:
        """Apply ``values`` only while the job is still processing.

        Returns:
            True if a row was updated.
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JOB_PROCESSING)
                .values(**values)
            )
            await session.commit()
            return result.rowcount > 0

    async def save_script(self, job_id: str, content: str, image_prompts: list[str]) -> None:
        await self._update_processing(job_id, content=content, image_prompts=image_prompts)

    async def save_image_links(self, job_id: str, image_links: list[str]) -> None:
        await self._update_processing(job_id, image_links=image_links)

    async def save_audio(self, job_id: str, audio_url: str) -> None:
        await self._update_processing(job_id, audio_url=audio_url)

    async def save_captions(self, job_id: str, captions: list[dict], duration_frames: Optional[int]) -> None:
        await self._update_processing(job_id, captions=captions, duration_frames=duration_frames)

    async def mark_complete(self, job_id: str, video_url: str) -> None:
        """Store the final video and flip the job out of processing."""
        if await self._update_processing(job_id, video_url=video_url, status=JOB_COMPLETE):
            logger.info(f"Job {job_id} complete: {video_url}")
        else:
            logger.warning(f"Job {job_id} was not processing; completion not recorded")

    async def mark_failed(self, job_id: str) -> None:
        """Terminal failure. A complete job is never downgraded."""
        if await self._update_processing(job_id, status=JOB_FAILED):
            logger.info(f"Job {job_id} marked failed")
        else:
            logger.warning(f"Job {job_id} was not processing; failure not recorded")

"""Per-job lease that keeps two attempts of the same job from overlapping.

Duplicate triggers for one job id would otherwise both pass the driver's
"already completed?" check and run the same stage twice. The lease is a Redis
lock with a short expiry that the holder keeps renewing while it runs, so a
crashed worker's lease lapses within one TTL and a redelivered attempt can
take over.

Example:
    async with JobLease(client, job_id, ttl=120) as lease:
        if lease.acquired:
            await driver.run(job_id, owner_id)
"""

import asyncio
import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockError, RedisError

logger = logging.getLogger(__name__)


class JobLease:
    """Non-blocking, expiring, self-renewing lock on a single job id.

    If the lease store is unreachable the lease counts as acquired, matching
    the rule that store outages never stop the pipeline.
    """

    def __init__(
        self,
        client: redis.Redis,
        job_id: str,
        *,
        ttl: int = 120,
        key_prefix: str = "video_lease:",
        renew_interval: Optional[float] = None,
    ):
        self.job_id = job_id
        self.key = f"{key_prefix}{job_id}"
        self.renew_interval = renew_interval if renew_interval is not None else ttl / 3
        self._lock: Lock = client.lock(self.key, timeout=ttl, blocking=False)
        self._held = False
        self._renewer: Optional[asyncio.Task] = None
        self.acquired = False

    async def __aenter__(self) -> "JobLease":
        try:
            self._held = await self._lock.acquire()
            self.acquired = self._held
            if not self._held:
                logger.warning(f"Job {self.job_id} is already leased by another attempt")
        except RedisError as e:
            logger.error(f"Lease store unavailable for job {self.job_id}, proceeding unleased: {e}")
            self.acquired = True
        if self._held:
            self._renewer = asyncio.create_task(self._keep_alive())
        return self

    async def _keep_alive(self) -> None:
        """Reset the lock's TTL every ``renew_interval`` seconds while held."""
        while True:
            await asyncio.sleep(self.renew_interval)
            try:
                await self._lock.reacquire()
            except LockError as e:
                logger.warning(f"Lease for job {self.job_id} lost, no longer renewing: {e}")
                return
            except RedisError as e:
                # Keep trying; the TTL still covers a brief outage
                logger.error(f"Failed to renew lease for job {self.job_id}: {e}")

    async def __aexit__(self, exc_type, exc, tb) -> Optional[bool]:
        if self._renewer is not None:
            self._renewer.cancel()
            try:
                await self._renewer
            except asyncio.CancelledError:
                pass
            self._renewer = None
        if not self._held:
            return None
        try:
            await self._lock.release()
        except LockError as e:
            # Expired mid-attempt; another attempt may already own it
            logger.warning(f"Lease for job {self.job_id} was lost before release: {e}")
        except RedisError as e:
            logger.error(f"Failed to release lease for job {self.job_id}: {e}")
        finally:
            self._held = False
        return None

"""Tests for the per-job lease."""

import asyncio

from redis.exceptions import ConnectionError as RedisConnectionError

from shortpipe.orchestrator.lease import JobLease


class UnreachableLock:
    async def acquire(self, *args, **kwargs):
        raise RedisConnectionError("Connection refused")

    async def release(self):
        raise AssertionError("release must not be called for an unheld lease")


class UnreachableRedis:
    def lock(self, *args, **kwargs):
        return UnreachableLock()


class TestJobLease:
    async def test_second_holder_is_refused(self, redis_client):
        async with JobLease(redis_client, "job-1") as first:
            async with JobLease(redis_client, "job-1") as second:
                assert first.acquired is True
                assert second.acquired is False

    async def test_released_on_exit(self, redis_client):
        async with JobLease(redis_client, "job-1"):
            pass
        async with JobLease(redis_client, "job-1") as again:
            assert again.acquired is True

    async def test_different_jobs_do_not_contend(self, redis_client):
        async with JobLease(redis_client, "job-1") as a, JobLease(redis_client, "job-2") as b:
            assert a.acquired and b.acquired

    async def test_lease_expires(self, redis_client):
        async with JobLease(redis_client, "job-1", ttl=60):
            ttl = await redis_client.ttl("video_lease:job-1")
            assert 0 < ttl <= 60

    async def test_unreachable_store_counts_as_acquired(self):
        async with JobLease(UnreachableRedis(), "job-1") as lease:
            assert lease.acquired is True

    async def test_holder_keeps_renewing_past_ttl(self, redis_client):
        async with JobLease(redis_client, "job-1", ttl=1, renew_interval=0.2) as lease:
            await asyncio.sleep(1.5)
            assert lease.acquired is True
            assert await redis_client.exists("video_lease:job-1") == 1
        assert await redis_client.exists("video_lease:job-1") == 0

    async def test_abandoned_lease_lapses(self, redis_client):
        """A holder that died without releasing stops blocking after its TTL."""
        await redis_client.set("video_lease:job-1", "dead-worker", px=300)

        async with JobLease(redis_client, "job-1") as blocked:
            assert blocked.acquired is False
        await asyncio.sleep(0.5)
        async with JobLease(redis_client, "job-1") as taken_over:
            assert taken_over.acquired is True

"""Tests for the Redis job queue on fakeredis."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import fakeredis
import pytest
from fakeredis.aioredis import FakeRedis
from redis.exceptions import ConnectionError as RedisConnectionError

from saga_pipeline.errors import InvalidTransition, NotFound, QueueUnavailable
from saga_pipeline.jobs.models import JobState
from saga_pipeline.jobs.redis_queue import RedisJobQueue

BASE = "bull:saga-generation"


@pytest.fixture
def redis_client():
    return FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def redis_queue(redis_client):
    return RedisJobQueue(redis_client)


@pytest.mark.anyio
async def test_enqueue_writes_job_hash_and_wait_list(redis_queue, redis_client):
    job_id = await redis_queue.enqueue("saga-1", "0xabc")

    assert job_id == "1"
    assert await redis_client.lrange(f"{BASE}:wait", 0, -1) == ["1"]
    record = await redis_client.hgetall(f"{BASE}:job:1")
    assert record["saga_id"] == "saga-1"
    assert record["state"] == "waiting"


@pytest.mark.anyio
async def test_claims_oldest_first(redis_queue, redis_client):
    await redis_queue.enqueue("saga-1", "0xabc")
    await redis_queue.enqueue("saga-2", "0xabc")

    job = await redis_queue.claim_next()
    assert job.data.saga_id == "saga-1"
    assert job.state == JobState.ACTIVE
    assert job.attempts_made == 1
    assert job.processed_at is not None
    assert await redis_client.zscore(f"{BASE}:active", job.id) is not None

    counts = await redis_queue.counts()
    assert counts[JobState.WAITING] == 1
    assert counts[JobState.ACTIVE] == 1


@pytest.mark.anyio
async def test_concurrent_claims_never_share_a_job(redis_queue):
    await redis_queue.enqueue("saga-1", "0xabc")
    results = await asyncio.gather(*(redis_queue.claim_next() for _ in range(3)))
    claimed = [job for job in results if job is not None]
    assert len(claimed) == 1


@pytest.mark.anyio
async def test_empty_queue_returns_none(redis_queue):
    assert await redis_queue.claim_next() is None


@pytest.mark.anyio
async def test_finish_transitions(redis_queue, redis_client):
    job_id = await redis_queue.enqueue("saga-1", "0xabc")
    with pytest.raises(InvalidTransition):
        await redis_queue.mark_completed(job_id)

    await redis_queue.claim_next()
    assert await redis_queue.mark_completed(job_id) is True
    assert await redis_queue.mark_failed(job_id, "late") is False

    job = await redis_queue.get(job_id)
    assert job.state == JobState.COMPLETED
    assert job.failed_reason is None
    assert await redis_client.zcard(f"{BASE}:active") == 0
    assert await redis_client.zcard(f"{BASE}:completed") == 1


@pytest.mark.anyio
async def test_failing_waiting_job_removes_it_from_wait_list(redis_queue, redis_client):
    job_id = await redis_queue.enqueue("saga-1", "0xabc")
    assert await redis_queue.mark_failed(job_id, "cancelled") is True
    assert await redis_client.llen(f"{BASE}:wait") == 0
    assert (await redis_queue.get(job_id)).failed_reason == "cancelled"
    assert await redis_queue.claim_next() is None


@pytest.mark.anyio
async def test_unknown_job(redis_queue):
    assert await redis_queue.get("42") is None
    with pytest.raises(NotFound):
        await redis_queue.mark_failed("42", "x")
    with pytest.raises(NotFound):
        await redis_queue.remove("42")


@pytest.mark.anyio
async def test_delayed_job_is_promoted_when_due(redis_queue, redis_client):
    job_id = await redis_queue.enqueue("saga-1", "0xabc", delay_seconds=60)
    assert (await redis_queue.get(job_id)).state == JobState.DELAYED
    assert await redis_queue.claim_next() is None

    await redis_client.zadd(f"{BASE}:delayed", {job_id: 0})
    job = await redis_queue.claim_next()
    assert job.id == job_id
    assert await redis_client.zcard(f"{BASE}:delayed") == 0


@pytest.mark.anyio
async def test_remove_active_job(redis_queue, redis_client):
    job_id = await redis_queue.enqueue("saga-1", "0xabc")
    await redis_queue.claim_next()

    removed = await redis_queue.remove(job_id)

    assert removed.state == JobState.FAILED
    assert removed.failed_reason == "Removed while active"
    assert await redis_client.exists(f"{BASE}:job:{job_id}") == 0
    assert all(n == 0 for n in (await redis_queue.counts()).values())


@pytest.mark.anyio
async def test_list_by_state_is_oldest_first(redis_queue):
    for n in range(3):
        await redis_queue.enqueue(f"saga-{n}", "0xabc")
    waiting = await redis_queue.list_by_state(JobState.WAITING)
    assert [j.data.saga_id for j in waiting] == ["saga-0", "saga-1", "saga-2"]


@pytest.mark.anyio
async def test_connection_errors_become_queue_unavailable():
    client = MagicMock()
    client.incr = AsyncMock(side_effect=RedisConnectionError("connection refused"))
    client.ping = AsyncMock(side_effect=RedisConnectionError("connection refused"))
    queue = RedisJobQueue(client)

    with pytest.raises(QueueUnavailable):
        await queue.enqueue("saga-1", "0xabc")
    assert await queue.ping() is False


@pytest.mark.anyio
async def test_ping_and_close(redis_queue):
    assert await redis_queue.ping() is True
    await redis_queue.close()

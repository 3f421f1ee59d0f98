"""Tests for the in-process job queue."""

import asyncio

import pytest

from saga_pipeline.errors import InvalidTransition, NotFound
from saga_pipeline.jobs.in_process_queue import InProcessQueue
from saga_pipeline.jobs.models import JobState


@pytest.mark.anyio
async def test_claims_in_fifo_order():
    queue = InProcessQueue()
    first = await queue.enqueue("saga-1", "0xabc")
    second = await queue.enqueue("saga-2", "0xabc")

    job = await queue.claim_next()
    assert job.id == first
    assert job.state == JobState.ACTIVE
    assert job.attempts_made == 1
    assert job.data.saga_id == "saga-1"
    assert (await queue.claim_next()).id == second
    assert await queue.claim_next() is None


@pytest.mark.anyio
async def test_complete_requires_active():
    queue = InProcessQueue()
    job_id = await queue.enqueue("saga-1", "0xabc")
    with pytest.raises(InvalidTransition):
        await queue.mark_completed(job_id)

    await queue.claim_next()
    assert await queue.mark_completed(job_id) is True
    assert await queue.mark_completed(job_id) is False
    assert (await queue.get(job_id)).state == JobState.COMPLETED


@pytest.mark.anyio
async def test_fail_is_idempotent_and_keeps_first_reason():
    queue = InProcessQueue()
    job_id = await queue.enqueue("saga-1", "0xabc")
    assert await queue.mark_failed(job_id, "first") is True
    assert await queue.mark_failed(job_id, "second") is False
    assert (await queue.get(job_id)).failed_reason == "first"


@pytest.mark.anyio
async def test_failed_waiting_job_is_not_claimed():
    queue = InProcessQueue()
    job_id = await queue.enqueue("saga-1", "0xabc")
    await queue.mark_failed(job_id, "cancelled")
    assert await queue.claim_next() is None


@pytest.mark.anyio
async def test_delayed_job_becomes_claimable_when_due():
    queue = InProcessQueue()
    job_id = await queue.enqueue("saga-1", "0xabc", delay_seconds=0.05)
    assert (await queue.counts())[JobState.DELAYED] == 1
    assert await queue.claim_next() is None

    await asyncio.sleep(0.1)
    job = await queue.claim_next()
    assert job.id == job_id


@pytest.mark.anyio
async def test_remove_active_job_fails_it_first():
    queue = InProcessQueue()
    job_id = await queue.enqueue("saga-1", "0xabc")
    await queue.claim_next()

    removed = await queue.remove(job_id)
    assert removed.state == JobState.FAILED
    assert removed.failed_reason == "Removed while active"
    assert await queue.get(job_id) is None
    with pytest.raises(NotFound):
        await queue.remove(job_id)


@pytest.mark.anyio
async def test_counts_and_listing():
    queue = InProcessQueue()
    for n in range(3):
        await queue.enqueue(f"saga-{n}", "0xabc")
    await queue.claim_next()

    counts = await queue.counts()
    assert counts[JobState.WAITING] == 2
    assert counts[JobState.ACTIVE] == 1
    assert [j.data.saga_id for j in await queue.list_by_state(JobState.WAITING)] == ["saga-1", "saga-2"]
    assert len(await queue.list_all()) == 3

"""Tests for saga submission and status projection."""

import pytest

from saga_pipeline.errors import NotFound, QueueUnavailable
from saga_pipeline.jobs.in_process_queue import InProcessQueue
from saga_pipeline.jobs.models import JobState
from saga_pipeline.sagas.models import SagaStatus
from saga_pipeline.services.sagas import SagaService


class UnreachableQueue(InProcessQueue):
    async def enqueue(self, saga_id, source_id, delay_seconds=0):
        raise QueueUnavailable("connection refused")


@pytest.mark.anyio
async def test_submit_creates_pending_saga_and_job(service, queue):
    result = await service.submit("0xabc")

    assert result.status == SagaStatus.PENDING
    job = await queue.get(result.job_id)
    assert job.data.saga_id == result.saga_id
    assert job.data.source_id == "0xabc"
    assert job.state == JobState.WAITING


@pytest.mark.anyio
async def test_duplicate_submissions_are_independent(service, queue):
    first = await service.submit("0xabc")
    second = await service.submit("0xabc")

    assert first.saga_id != second.saga_id
    assert first.job_id != second.job_id
    assert (await queue.counts())[JobState.WAITING] == 2
    assert len(await service.list_sagas("0xabc")) == 2


@pytest.mark.anyio
async def test_enqueue_failure_marks_saga_failed(store):
    service = SagaService(store, UnreachableQueue())

    with pytest.raises(QueueUnavailable):
        await service.submit("0xabc")

    [saga] = await store.list_by_source("0xabc")
    assert saga.status == SagaStatus.FAILED
    assert saga.failure_reason.startswith("enqueue failed")


@pytest.mark.anyio
async def test_status_view(service):
    result = await service.submit("0xabc")
    view = await service.get_status(result.saga_id)
    assert view.saga_id == result.saga_id
    assert view.status == SagaStatus.PENDING
    assert view.progress_percent == 0
    assert view.current_step == "queued"
    assert view.pages == []


@pytest.mark.anyio
async def test_status_of_unknown_saga(service):
    with pytest.raises(NotFound):
        await service.get_status("missing")

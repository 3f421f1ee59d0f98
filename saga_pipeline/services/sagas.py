"""Submission and status operations used by the HTTP routes."""

import logging
from typing import List, Optional

from pydantic import BaseModel

from saga_pipeline.errors import QueueUnavailable
from saga_pipeline.jobs.queue import JobQueue
from saga_pipeline.sagas.models import Page, Saga, SagaResult, SagaStatus
from saga_pipeline.sagas.store import SagaStore

logger = logging.getLogger(__name__)


class SubmitResult(BaseModel):
    saga_id: str
    job_id: str
    status: SagaStatus = SagaStatus.PENDING


class SagaStatusView(BaseModel):
    """What polling clients see."""
    saga_id: str
    status: SagaStatus
    progress_percent: int
    current_step: str
    pages: List[Page]
    total_pages: Optional[int] = None
    failure_reason: Optional[str] = None

    @classmethod
    def from_saga(cls, saga: Saga) -> "SagaStatusView":
        return cls(
            saga_id=saga.id,
            status=saga.status,
            progress_percent=saga.progress_percent,
            current_step=saga.current_step,
            pages=saga.pages,
            total_pages=saga.total_pages,
            failure_reason=saga.failure_reason,
        )


class SagaService:
    """Creates sagas, hands them to the queue and answers status polls.

    Submissions are not deduplicated: two submits for the same source id
    produce two independent sagas.
    """

    def __init__(self, store: SagaStore, queue: JobQueue):
        self._store = store
        self._queue = queue

    async def submit(self, source_id: str) -> SubmitResult:
        saga = await self._store.create(source_id)
        try:
            job_id = await self._queue.enqueue(saga.id, source_id)
        except QueueUnavailable as exc:
            logger.error("Enqueue failed for saga %s: %s", saga.id, exc)
            await self._store.set_terminal(
                saga.id,
                SagaStatus.FAILED,
                SagaResult(failure_reason=f"enqueue failed: {exc}"),
            )
            raise
        logger.info("Submitted saga %s for source %s as job %s", saga.id, source_id, job_id)
        return SubmitResult(saga_id=saga.id, job_id=job_id)

    async def get_status(self, saga_id: str) -> SagaStatusView:
        return SagaStatusView.from_saga(await self._store.get(saga_id))

    async def get_saga(self, saga_id: str) -> Saga:
        return await self._store.get(saga_id)

    async def list_sagas(self, source_id: str, limit: int = 50) -> List[Saga]:
        return await self._store.list_by_source(source_id, limit=limit)

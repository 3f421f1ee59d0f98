"""In-process job queue using asyncio for local development.

Same state machine as the Redis queue, held in memory and lost on restart.
No external dependencies (Redis) needed.
"""

import asyncio
import itertools
import logging
from datetime import timedelta
from typing import Dict, List, Optional

from saga_pipeline.errors import InvalidTransition, NotFound
from saga_pipeline.jobs.models import JobState, QueueJob, SagaJobData
from saga_pipeline.jobs.queue import JobQueue
from saga_pipeline.sagas.models import utcnow

logger = logging.getLogger(__name__)


class InProcessQueue(JobQueue):
    """Local async job queue. A single event loop makes claims exclusive."""

    def __init__(self):
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._jobs: Dict[str, QueueJob] = {}
        self._ids = itertools.count(1)

    async def enqueue(self, saga_id: str, source_id: str, delay_seconds: float = 0) -> str:
        job_id = str(next(self._ids))
        job = QueueJob(id=job_id, data=SagaJobData(saga_id=saga_id, source_id=source_id))
        if delay_seconds > 0:
            job.state = JobState.DELAYED
            job.process_at = utcnow() + timedelta(seconds=delay_seconds)
            self._jobs[job_id] = job
        else:
            self._jobs[job_id] = job
            await self._queue.put(job_id)
        logger.info("Enqueued job %s for saga %s (%s)", job_id, saga_id, job.state.value)
        return job_id

    async def _promote_delayed(self) -> None:
        now = utcnow()
        due = [
            job for job in self._jobs.values()
            if job.state == JobState.DELAYED and job.process_at and job.process_at <= now
        ]
        for job in sorted(due, key=lambda j: j.process_at):
            job.state = JobState.WAITING
            await self._queue.put(job.id)

    async def claim_next(self) -> Optional[QueueJob]:
        await self._promote_delayed()
        while True:
            try:
                job_id = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return None
            job = self._jobs.get(job_id)
            # removed or force-failed while still queued
            if job is None or job.state != JobState.WAITING:
                continue
            job.state = JobState.ACTIVE
            job.attempts_made += 1
            job.processed_at = utcnow()
            return job.model_copy(deep=True)

    def _require(self, job_id: str) -> QueueJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFound("Job", job_id)
        return job

    async def mark_completed(self, job_id: str) -> bool:
        job = self._require(job_id)
        if job.state.is_terminal:
            return False
        if job.state != JobState.ACTIVE:
            raise InvalidTransition(f"Job {job_id} is {job.state.value}, not active")
        job.state = JobState.COMPLETED
        job.finished_at = utcnow()
        return True

    async def mark_failed(self, job_id: str, reason: str) -> bool:
        job = self._require(job_id)
        if job.state.is_terminal:
            return False
        job.state = JobState.FAILED
        job.failed_reason = reason
        job.finished_at = utcnow()
        return True

    async def get(self, job_id: str) -> Optional[QueueJob]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list_by_state(self, state: JobState) -> List[QueueJob]:
        # ids are increasing integers, so numeric order is insertion order
        jobs = [j for j in self._jobs.values() if j.state == JobState(state)]
        jobs.sort(key=lambda j: int(j.id))
        return [j.model_copy(deep=True) for j in jobs]

    async def counts(self) -> Dict[JobState, int]:
        counts = {state: 0 for state in JobState}
        for job in self._jobs.values():
            counts[job.state] += 1
        return counts

    async def remove(self, job_id: str) -> QueueJob:
        job = self._require(job_id)
        if job.state == JobState.ACTIVE:
            await self.mark_failed(job_id, "Removed while active")
        removed = self._jobs.pop(job_id)
        logger.info("Removed job %s (%s)", job_id, removed.state.value)
        return removed

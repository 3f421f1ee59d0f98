"""Cross-checks between the saga store and the job queue, plus remediation.

The store and the queue are written independently, so they can disagree:
a worker that crashes mid-job leaves its saga in ``generating_*`` and its job
in ``active`` forever. Nothing here runs automatically; operators call these
through the CLI or the admin routes.

``clear_queue`` only touches the queue. Sagas that were generating when it
ran stay stuck until they are requeued or force-failed.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from saga_pipeline.errors import AlreadyTerminal, NotFound
from saga_pipeline.jobs.models import LIVE_STATES, JobState, QueueJob
from saga_pipeline.jobs.queue import JobQueue
from saga_pipeline.sagas.models import ACTIVE_STATUSES, Saga, SagaStatus, utcnow
from saga_pipeline.sagas.store import SagaStore

logger = logging.getLogger(__name__)

# lower sorts first when several jobs reference the same saga
_JOB_PRIORITY = {
    JobState.ACTIVE: 0,
    JobState.WAITING: 1,
    JobState.DELAYED: 1,
    JobState.FAILED: 2,
    JobState.COMPLETED: 2,
}


class DiagnosisReport(BaseModel):
    saga: Saga
    job: Optional[QueueJob] = None
    matched_by: Optional[str] = None  # "saga_id" or "source_id"
    related_jobs: List[QueueJob] = Field(default_factory=list)
    queue_counts: Dict[str, int] = Field(default_factory=dict)
    seconds_since_update: int
    stuck: bool
    verdict: str  # terminal | pending | orphaned | processing | stuck
    recommendations: List[str] = Field(default_factory=list)


class ClearQueueReport(BaseModel):
    removed: int
    before: Dict[str, int]
    failed_active: List[str] = Field(default_factory=list)


class RecoveryResult(BaseModel):
    saga: Saga
    affected_jobs: List[str] = Field(default_factory=list)
    new_job_id: Optional[str] = None


class DeleteResult(BaseModel):
    saga_id: str
    removed_jobs: List[str] = Field(default_factory=list)


def _best_job(jobs: List[QueueJob]) -> Optional[QueueJob]:
    if not jobs:
        return None
    return sorted(jobs, key=lambda j: (_JOB_PRIORITY[j.state], -int(j.id) if j.id.isdigit() else 0))[0]


class SagaDiagnostics:
    def __init__(self, store: SagaStore, queue: JobQueue, stuck_threshold_seconds: int = 300):
        self._store = store
        self._queue = queue
        self._threshold = stuck_threshold_seconds

    async def _jobs_for(self, saga_id: str) -> List[QueueJob]:
        return [
            job for job in await self._queue.list_all()
            if job.data.saga_id == saga_id or job.id == saga_id
        ]

    async def diagnose(self, saga_id: str, now: Optional[datetime] = None) -> DiagnosisReport:
        saga = await self._store.get(saga_id)
        now = now or utcnow()

        all_jobs = await self._queue.list_all()
        counts = await self._queue.counts()

        by_saga = [j for j in all_jobs if j.data.saga_id == saga_id or j.id == saga_id]
        matched_by = "saga_id" if by_saga else None
        related = by_saga
        if not by_saga:
            related = [j for j in all_jobs if j.data.source_id == saga.source_id]
            if related:
                matched_by = "source_id"
        job = _best_job(related)

        seconds = max(0, int((now - saga.updated_at).total_seconds()))
        stale = seconds > self._threshold
        has_active_job = job is not None and job.state == JobState.ACTIVE
        has_live_job = job is not None and job.state in LIVE_STATES

        # silent past the threshold while generating, or while a job holds
        # it active: the worker died or hung, or nothing is working on it
        stuck = not saga.is_terminal and stale and (
            saga.status in ACTIVE_STATUSES or has_active_job
        )

        if saga.is_terminal:
            verdict = "terminal"
        elif stuck:
            verdict = "stuck"
        elif saga.status == SagaStatus.PENDING:
            verdict = "pending" if has_live_job else "orphaned"
        else:
            verdict = "processing"

        recommendations = []
        if saga.status == SagaStatus.GENERATING_IMAGES and not saga.pages:
            recommendations.append(
                "Saga is generating images but has no pages: image generation started "
                "and never stored a page. Check the generator logs."
            )
        if stuck and has_active_job:
            recommendations.append(
                "Job is active but the saga is not updating: the worker likely crashed "
                "or hung. Run force-fail or requeue."
            )
        elif stuck:
            recommendations.append(
                "Saga is generating but no active job exists: the job was removed or "
                "lost. Run requeue to generate it again, or force-fail to close it."
            )
        if job is None and not saga.is_terminal and not stuck:
            recommendations.append(
                "Saga exists but no job is in the queue: the job was removed or never "
                "created. Run requeue."
            )
        elif verdict == "orphaned":
            recommendations.append(
                "Saga is pending but its jobs are all finished. Run requeue."
            )
        if matched_by == "source_id":
            recommendations.append(
                "Job matched by source id only; the saga id association was lost "
                "(e.g. by an earlier requeue or a duplicate submission)."
            )
        if saga.status == SagaStatus.FAILED:
            recommendations.append(
                f"Saga failed: {saga.failure_reason or 'no reason recorded'}. "
                "Submit again or requeue to retry."
            )
        if saga.status in ACTIVE_STATUSES and not stale:
            recommendations.append("Saga is actively being processed.")

        return DiagnosisReport(
            saga=saga,
            job=job,
            matched_by=matched_by,
            related_jobs=related,
            queue_counts={state.value: n for state, n in counts.items()},
            seconds_since_update=seconds,
            stuck=stuck,
            verdict=verdict,
            recommendations=recommendations,
        )

    async def clear_queue(self) -> ClearQueueReport:
        """Empty the queue. Active jobs are failed before they are removed."""
        before = await self._queue.counts()
        removed = 0
        failed_active: List[str] = []

        for state in (JobState.WAITING, JobState.DELAYED, JobState.COMPLETED, JobState.FAILED):
            for job in await self._queue.list_by_state(state):
                try:
                    await self._queue.remove(job.id)
                    removed += 1
                except NotFound:
                    logger.warning("Job %s vanished during clear-queue", job.id)

        for job in await self._queue.list_by_state(JobState.ACTIVE):
            try:
                await self._queue.mark_failed(job.id, "Manually removed by clear-queue")
                failed_active.append(job.id)
                await self._queue.remove(job.id)
                removed += 1
            except NotFound:
                logger.warning("Job %s vanished during clear-queue", job.id)

        logger.info("Queue cleared: %d job(s) removed, %d active job(s) failed", removed, len(failed_active))
        return ClearQueueReport(
            removed=removed,
            before={state.value: n for state, n in before.items()},
            failed_active=failed_active,
        )

    async def force_fail(self, saga_id: str, reason: str = "Force-failed by operator") -> RecoveryResult:
        """Stamp a non-terminal saga failed, keeping its pages, then fail its live jobs."""
        saga = await self._store.get(saga_id)
        if saga.is_terminal:
            raise AlreadyTerminal(saga_id, saga.status.value)

        saga = await self._store.override(saga_id, SagaStatus.FAILED, reason=reason)
        affected = []
        for job in await self._jobs_for(saga_id):
            if job.state in LIVE_STATES and await self._queue.mark_failed(job.id, f"force-failed: {reason}"):
                affected.append(job.id)
        return RecoveryResult(saga=saga, affected_jobs=affected)

    async def requeue(self, saga_id: str) -> RecoveryResult:
        """Drop live jobs for the saga, reset it to pending and enqueue it again.

        Failed sagas can be retried this way; completed ones are kept as is.
        """
        saga = await self._store.get(saga_id)
        if saga.status == SagaStatus.COMPLETED:
            raise AlreadyTerminal(saga_id, saga.status.value)
        affected = []
        for job in await self._jobs_for(saga_id):
            if job.state in LIVE_STATES:
                await self._queue.remove(job.id)
                affected.append(job.id)

        saga = await self._store.override(
            saga_id, SagaStatus.PENDING, reason="requeued", reset=True
        )
        new_job_id = await self._queue.enqueue(saga.id, saga.source_id)
        logger.info("Saga %s requeued as job %s", saga_id, new_job_id)
        return RecoveryResult(saga=saga, affected_jobs=affected, new_job_id=new_job_id)

    async def delete(self, saga_id: str) -> DeleteResult:
        """Remove a saga record and every job that references it."""
        await self._store.get(saga_id)
        removed = []
        for job in await self._jobs_for(saga_id):
            try:
                await self._queue.remove(job.id)
                removed.append(job.id)
            except NotFound:
                logger.warning("Job %s vanished during delete", job.id)
        await self._store.delete(saga_id)
        logger.info("Deleted saga %s and %d job(s)", saga_id, len(removed))
        return DeleteResult(saga_id=saga_id, removed_jobs=removed)

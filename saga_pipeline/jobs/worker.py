"""Saga worker: claims queue jobs and drives sagas through generation.

Per job:

    Claimed -> TextGenerating -> ImageGenerating(page 1..N) -> Finalizing -> Done

Progress is written to the saga store after every stage. The terminal status
is always written to the store before the job is finished in the queue, so a
crash between the two leaves the user-visible record correct.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from pydantic import BaseModel

from saga_pipeline.errors import AlreadyTerminal, CollaboratorFailure, NotFound, QueueUnavailable
from saga_pipeline.generation.collaborators import SagaGenerator, character_seed
from saga_pipeline.jobs.models import JobState, QueueJob
from saga_pipeline.jobs.queue import JobQueue
from saga_pipeline.sagas.models import Page, Saga, SagaResult, SagaStatus
from saga_pipeline.sagas.store import SagaStore

logger = logging.getLogger(__name__)


class JobOutcome(BaseModel):
    job_id: str
    saga_id: str
    state: JobState
    reason: Optional[str] = None


class SagaWorker:
    """One consumer loop. Run several processes to scale out.

    The worker is an owned resource: ``start()`` spawns the loop and returns
    the worker (a second call is a no-op), ``stop()`` lets the current job
    finish within ``shutdown_grace_seconds`` and then releases it. Use it as
    ``async with worker:`` to scope both.
    """

    def __init__(
        self,
        queue: JobQueue,
        store: SagaStore,
        generator: SagaGenerator,
        poll_interval: float = 1.0,
        shutdown_grace_seconds: float = 30.0,
        owns_queue: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._queue = queue
        self._store = store
        self._generator = generator
        self._poll_interval = poll_interval
        self._shutdown_grace = shutdown_grace_seconds
        self._owns_queue = owns_queue
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self.jobs_processed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> "SagaWorker":
        if self.running:
            logger.info("Worker already running, start ignored")
            return self
        self._stop_event.clear()
        self._task = asyncio.create_task(self._worker_loop(), name="saga-worker")
        logger.info("Worker started (poll interval %.1fs)", self._poll_interval)
        return self

    async def stop(self) -> None:
        if self._task is not None:
            self._stop_event.set()
            done, _ = await asyncio.wait({self._task}, timeout=self._shutdown_grace)
            if not done:
                logger.warning("Worker did not finish its job within %.0fs, cancelling", self._shutdown_grace)
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
            logger.info("Worker stopped after %d job(s)", self.jobs_processed)
        if self._owns_queue:
            await self._queue.close()

    async def __aenter__(self) -> "SagaWorker":
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _worker_loop(self) -> None:
        """Claim and process jobs until stopped."""
        while not self._stop_event.is_set():
            try:
                outcome = await self.run_once()
            except QueueUnavailable as exc:
                logger.warning("Queue unavailable, retrying in %.1fs: %s", self._poll_interval, exc)
                await self._idle()
                continue
            except Exception:
                logger.exception("Unexpected worker error")
                await self._idle()
                continue
            if outcome is None:
                await self._idle()

    async def run_once(self) -> Optional[JobOutcome]:
        """Claim and process at most one job."""
        job = await self._queue.claim_next()
        if job is None:
            return None
        return await self.process(job)

    async def process(self, job: QueueJob) -> JobOutcome:
        saga_id = job.data.saga_id
        logger.info("Job %s claimed for saga %s (attempt %d)", job.id, saga_id, job.attempts_made)

        try:
            saga = await self._store.get(saga_id)
        except NotFound:
            return await self._reject(job, f"Saga {saga_id} not found")
        if saga.is_terminal:
            return await self._reject(job, f"Saga {saga_id} is already {saga.status.value}")

        started = self._clock()
        try:
            result = await self._generate(saga, started)
            await self._store.set_terminal(saga_id, SagaStatus.COMPLETED, result)
        except Exception as exc:
            return await self._fail(job, exc, started)

        try:
            await self._queue.mark_completed(job.id)
        except NotFound:
            # removed by clear-queue or delete while running; the saga result stands
            logger.warning("Job %s was removed before it could be completed", job.id)
        self.jobs_processed += 1
        logger.info(
            "Saga %s completed in %ss, $%.4f",
            saga_id, result.generation_time_seconds, result.cost_usd or 0.0,
        )
        return JobOutcome(job_id=job.id, saga_id=saga_id, state=JobState.COMPLETED)

    async def _generate(self, saga: Saga, started: float) -> SagaResult:
        saga_id = saga.id

        await self._store.transition(
            saga_id, SagaStatus.GENERATING_TEXT, current_step="generating_story"
        )
        try:
            story = await self._generator.generate_story(saga.source_id)
        except Exception as exc:
            raise CollaboratorFailure("generate_story", str(exc)) from exc
        if not story.pages:
            raise CollaboratorFailure("generate_story", "no pages produced")
        logger.info("Saga %s: story ready, %d page(s)", saga_id, len(story.pages))

        await self._store.transition(
            saga_id,
            SagaStatus.GENERATING_IMAGES,
            current_step="generating_images",
            total_pages=len(story.pages),
            total_panels=story.total_panels,
        )

        seed = character_seed(saga.source_id)
        cost = story.cost_usd
        for page_number, draft in enumerate(story.pages, start=1):
            try:
                rendered = await self._generator.render_page(draft, seed)
            except Exception as exc:
                raise CollaboratorFailure(f"render_page {page_number}", str(exc)) from exc
            cost += rendered.cost_usd
            await self._store.append_page(
                saga_id,
                Page(
                    page_number=page_number,
                    page_image_url=rendered.url,
                    page_description=draft.page_description,
                    panels=draft.panels,
                ),
            )
            logger.debug("Saga %s: page %d/%d stored", saga_id, page_number, len(story.pages))

        return SagaResult(
            story_text=story.title,
            generation_time_seconds=int(self._clock() - started),
            cost_usd=round(cost, 4),
        )

    async def _reject(self, job: QueueJob, reason: str) -> JobOutcome:
        """Fail a job without touching its saga."""
        logger.warning("Job %s skipped: %s", job.id, reason)
        await self._queue.mark_failed(job.id, reason)
        return JobOutcome(job_id=job.id, saga_id=job.data.saga_id, state=JobState.FAILED, reason=reason)

    async def _fail(self, job: QueueJob, exc: Exception, started: float) -> JobOutcome:
        saga_id = job.data.saga_id
        reason = str(exc) if isinstance(exc, CollaboratorFailure) else f"{type(exc).__name__}: {exc}"
        logger.error("Job %s for saga %s failed: %s", job.id, saga_id, reason, exc_info=exc)

        try:
            await self._store.set_terminal(
                saga_id,
                SagaStatus.FAILED,
                SagaResult(failure_reason=reason, generation_time_seconds=int(self._clock() - started)),
            )
        except AlreadyTerminal as terminal:
            logger.warning("Saga %s was already %s, keeping that result", saga_id, terminal.status)
        except NotFound:
            logger.warning("Saga %s disappeared while its job was running", saga_id)

        await self._queue.mark_failed(job.id, reason)
        self.jobs_processed += 1
        return JobOutcome(job_id=job.id, saga_id=saga_id, state=JobState.FAILED, reason=reason)

"""Worker lifecycle API."""

from fastapi import APIRouter, HTTPException

from saga_pipeline.errors import QueueUnavailable
from saga_pipeline.jobs.worker import SagaWorker

router = APIRouter()

# Set by main.py during lifespan
_worker: SagaWorker | None = None


def set_worker(worker):
    global _worker
    _worker = worker


def _require_worker() -> SagaWorker:
    if _worker is None:
        raise HTTPException(status_code=503, detail="Worker not initialized")
    return _worker


@router.get("/worker")
async def worker_status():
    worker = _require_worker()
    return {"running": worker.running, "jobs_processed": worker.jobs_processed}


@router.post("/worker/start")
async def start_worker():
    """Start the in-process worker loop. No-op when it is already running."""
    worker = _require_worker()
    if worker.running:
        return {"message": "Worker already running", "running": True}
    await worker.start()
    return {"message": "Worker started", "running": True}


@router.post("/worker/process")
async def process_one_job():
    """Claim and process a single job inline, for deployments without a loop."""
    worker = _require_worker()
    try:
        outcome = await worker.run_once()
    except QueueUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Job queue unavailable: {exc}")
    if outcome is None:
        return {"message": "No jobs to process"}
    return outcome.model_dump(mode="json")

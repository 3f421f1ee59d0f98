"""Health check endpoint."""

from fastapi import APIRouter
import logging
import platform
import sys

from saga_pipeline.config import settings
from saga_pipeline.db.supabase_client import supabase_configured
from saga_pipeline.errors import QueueUnavailable

logger = logging.getLogger(__name__)

router = APIRouter()

# Set by main.py during lifespan
_queue = None


def set_queue(queue):
    global _queue
    _queue = queue


@router.get("/health")
async def health_check():
    """Service health, broker reachability and backend info."""
    queue_ok = await _queue.ping() if _queue is not None else False
    counts = None
    if queue_ok:
        try:
            counts = {state.value: n for state, n in (await _queue.counts()).items()}
        except QueueUnavailable as exc:
            logger.warning("Queue dropped during health check: %s", exc)
            queue_ok = False

    return {
        "status": "healthy" if queue_ok else "degraded",
        "queue_backend": settings.queue_backend,
        "queue_reachable": queue_ok,
        "queue_counts": counts,
        "store_backend": settings.store_backend,
        "supabase_configured": supabase_configured(),
        "python_version": sys.version,
        "platform": platform.platform(),
    }

"""Diagnostics and recovery API, the HTTP mirror of the saga-admin CLI."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from saga_pipeline.errors import AlreadyTerminal, NotFound, QueueUnavailable
from saga_pipeline.services.diagnostics import (
    ClearQueueReport,
    DeleteResult,
    DiagnosisReport,
    RecoveryResult,
    SagaDiagnostics,
)

router = APIRouter(prefix="/admin")

# Set by main.py during lifespan
_diagnostics: SagaDiagnostics | None = None


def set_diagnostics(diagnostics):
    global _diagnostics
    _diagnostics = diagnostics


def _require_diagnostics() -> SagaDiagnostics:
    if _diagnostics is None:
        raise HTTPException(status_code=503, detail="Diagnostics not initialized")
    return _diagnostics


class ForceFailRequest(BaseModel):
    reason: str = "Force-failed by operator"


@router.get("/sagas/{saga_id}/diagnosis", response_model=DiagnosisReport)
async def diagnose_saga(saga_id: str):
    try:
        return await _require_diagnostics().diagnose(saga_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Saga not found")
    except QueueUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Job queue unavailable: {exc}")


@router.post("/sagas/{saga_id}/force-fail", response_model=RecoveryResult)
async def force_fail_saga(saga_id: str, request: ForceFailRequest):
    try:
        return await _require_diagnostics().force_fail(saga_id, request.reason)
    except NotFound:
        raise HTTPException(status_code=404, detail="Saga not found")
    except AlreadyTerminal as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except QueueUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Job queue unavailable: {exc}")


@router.post("/sagas/{saga_id}/requeue", response_model=RecoveryResult)
async def requeue_saga(saga_id: str):
    try:
        return await _require_diagnostics().requeue(saga_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Saga not found")
    except AlreadyTerminal as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except QueueUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Job queue unavailable: {exc}")


@router.post("/queue/clear", response_model=ClearQueueReport)
async def clear_queue():
    """Remove every job. Does not touch saga records."""
    try:
        return await _require_diagnostics().clear_queue()
    except QueueUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Job queue unavailable: {exc}")


@router.delete("/sagas/{saga_id}", response_model=DeleteResult)
async def delete_saga(saga_id: str):
    """Delete a saga record and the jobs that reference it."""
    try:
        return await _require_diagnostics().delete(saga_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Saga not found")
    except QueueUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Job queue unavailable: {exc}")

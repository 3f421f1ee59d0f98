"""Saga API: submit a generation, poll its status, list sagas per source."""

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field
from typing import List

from saga_pipeline.errors import NotFound, QueueUnavailable
from saga_pipeline.sagas.models import Saga
from saga_pipeline.services.sagas import SagaService, SagaStatusView, SubmitResult

router = APIRouter()

# Set by main.py during lifespan
_service: SagaService | None = None


def set_service(service):
    global _service
    _service = service


def _require_service() -> SagaService:
    if _service is None:
        raise HTTPException(status_code=503, detail="Saga service not initialized")
    return _service


class SagaSubmitRequest(BaseModel):
    source_id: str = Field(min_length=1)


class SagaListResponse(BaseModel):
    sagas: List[Saga]
    count: int


@router.post("/sagas", response_model=SubmitResult, status_code=202)
async def submit_saga(request: SagaSubmitRequest):
    """Create a saga and queue its generation. Poll the status route for progress."""
    service = _require_service()
    try:
        return await service.submit(request.source_id)
    except QueueUnavailable as exc:
        raise HTTPException(status_code=503, detail=f"Job queue unavailable: {exc}")


@router.get("/sagas", response_model=SagaListResponse)
async def list_sagas(source_id: str = Query(min_length=1), limit: int = Query(50, ge=1, le=200)):
    """Sagas generated from one source, newest first."""
    sagas = await _require_service().list_sagas(source_id, limit=limit)
    return SagaListResponse(sagas=sagas, count=len(sagas))


@router.get("/sagas/{saga_id}", response_model=Saga)
async def get_saga(saga_id: str):
    try:
        return await _require_service().get_saga(saga_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Saga not found")


@router.get("/sagas/{saga_id}/status", response_model=SagaStatusView)
async def get_saga_status(saga_id: str):
    """Progress projection for polling clients. Never mutates state."""
    try:
        return await _require_service().get_status(saga_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Saga not found")

"""Queue job data model."""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from saga_pipeline.sagas.models import utcnow


class JobState(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


LIVE_STATES = (JobState.WAITING, JobState.DELAYED, JobState.ACTIVE)


class SagaJobData(BaseModel):
    """Job payload. Everything mutable lives in the saga store, not here."""
    saga_id: str
    source_id: str


class QueueJob(BaseModel):
    """A scheduling token referencing one saga."""
    id: str
    data: SagaJobData
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    failed_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    process_at: Optional[datetime] = None

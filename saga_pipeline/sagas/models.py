"""Saga record data model."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional
import uuid

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SagaStatus(str, Enum):
    PENDING = "pending"
    GENERATING_TEXT = "generating_text"
    GENERATING_IMAGES = "generating_images"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def rank(self) -> int:
        """Position in the forward-only stage ordering."""
        return STATUS_ORDER[self]


TERMINAL_STATUSES = frozenset({SagaStatus.COMPLETED, SagaStatus.FAILED})
ACTIVE_STATUSES = frozenset({SagaStatus.GENERATING_TEXT, SagaStatus.GENERATING_IMAGES})

STATUS_ORDER = {
    SagaStatus.PENDING: 0,
    SagaStatus.GENERATING_TEXT: 1,
    SagaStatus.GENERATING_IMAGES: 2,
    SagaStatus.COMPLETED: 3,
    SagaStatus.FAILED: 3,
}

# Coarse progress shown before any page exists
STAGE_PROGRESS = {
    SagaStatus.PENDING: 0,
    SagaStatus.GENERATING_TEXT: 10,
    SagaStatus.GENERATING_IMAGES: 30,
}


class Panel(BaseModel):
    """A narrative beat inside a page."""
    panel_number: int
    narration: str = ""
    speech_bubble: Optional[str] = None
    image_prompt: str = ""
    scene_type: Optional[str] = None
    mood: Optional[str] = None


class Page(BaseModel):
    page_number: int = Field(ge=1)
    page_image_url: Optional[str] = None
    page_description: Optional[str] = None
    panels: List[Panel] = Field(default_factory=list)


class SagaResult(BaseModel):
    """Final metadata written together with the terminal status."""
    story_text: Optional[str] = None
    generation_time_seconds: Optional[int] = None
    cost_usd: Optional[float] = None
    failure_reason: Optional[str] = None


class Saga(BaseModel):
    """Persisted state of one generated saga.

    The store record is the source of truth for user-visible progress; the
    queue job that drives it only carries the saga id.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    source_id: str
    status: SagaStatus = SagaStatus.PENDING
    progress_percent: int = Field(default=0, ge=0, le=100)
    current_step: str = "queued"
    pages: List[Page] = Field(default_factory=list)
    total_pages: Optional[int] = None
    total_panels: Optional[int] = None
    story_text: Optional[str] = None
    generation_time_seconds: Optional[int] = None
    cost_usd: Optional[float] = None
    failure_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

"""Pure state-change rules for saga records.

Every store applies these functions to a copy of the current record and then
persists the result atomically, so the invariants live in one place:

- status only moves forward: pending -> generating_text -> generating_images
  -> completed | failed (failed is reachable from any non-terminal status)
- pages are appended in order, 1-based, without gaps, never past total_pages
- progress_percent never decreases within one attempt
- a terminal saga is never written again except through ``apply_override``
"""

import logging
from datetime import datetime
from typing import Optional

from saga_pipeline.errors import AlreadyTerminal, InvalidTransition
from saga_pipeline.sagas.models import (
    STAGE_PROGRESS,
    Page,
    Saga,
    SagaResult,
    SagaStatus,
)

logger = logging.getLogger(__name__)


def _ensure_writable(saga: Saga) -> None:
    if saga.is_terminal:
        raise AlreadyTerminal(saga.id, saga.status.value)


def apply_transition(
    saga: Saga,
    new_status: SagaStatus,
    now: datetime,
    current_step: Optional[str] = None,
    total_pages: Optional[int] = None,
    total_panels: Optional[int] = None,
) -> Saga:
    """Move a saga forward to ``new_status`` (or re-assert its current one)."""
    new_status = SagaStatus(new_status)
    _ensure_writable(saga)
    if new_status.is_terminal:
        raise InvalidTransition(
            f"Saga {saga.id}: {new_status.value} must be written with set_terminal"
        )
    if new_status.rank < saga.status.rank:
        raise InvalidTransition(
            f"Saga {saga.id}: cannot move from {saga.status.value} back to {new_status.value}"
        )
    if total_pages is not None and total_pages < len(saga.pages):
        raise InvalidTransition(
            f"Saga {saga.id}: total_pages={total_pages} is below the "
            f"{len(saga.pages)} page(s) already stored"
        )

    updated = saga.model_copy(deep=True)
    updated.status = new_status
    updated.current_step = current_step or new_status.value
    if total_pages is not None:
        updated.total_pages = total_pages
    if total_panels is not None:
        updated.total_panels = total_panels
    updated.progress_percent = max(updated.progress_percent, STAGE_PROGRESS[new_status])
    updated.updated_at = now
    return updated


def apply_append_page(saga: Saga, page: Page, now: datetime) -> Saga:
    """Append the next page and recompute progress."""
    _ensure_writable(saga)
    if saga.status != SagaStatus.GENERATING_IMAGES:
        raise InvalidTransition(
            f"Saga {saga.id}: pages can only be appended while generating_images "
            f"(status is {saga.status.value})"
        )
    expected = len(saga.pages) + 1
    if page.page_number != expected:
        raise InvalidTransition(
            f"Saga {saga.id}: expected page {expected}, got page {page.page_number}"
        )
    if saga.total_pages is not None and expected > saga.total_pages:
        raise InvalidTransition(
            f"Saga {saga.id}: page {expected} exceeds total_pages={saga.total_pages}"
        )

    updated = saga.model_copy(deep=True)
    updated.pages.append(page.model_copy(deep=True))
    if updated.total_pages:
        computed = len(updated.pages) * 100 // updated.total_pages
        updated.progress_percent = max(updated.progress_percent, min(computed, 100))
    updated.current_step = f"generating_images ({len(updated.pages)}/{updated.total_pages or '?'})"
    updated.updated_at = now
    return updated


def apply_terminal(saga: Saga, status: SagaStatus, result: SagaResult, now: datetime) -> Saga:
    """Write the final result. Only the first terminal write is accepted."""
    status = SagaStatus(status)
    if not status.is_terminal:
        raise InvalidTransition(
            f"Saga {saga.id}: {status.value} is not a terminal status"
        )
    _ensure_writable(saga)

    updated = saga.model_copy(deep=True)
    updated.status = status
    updated.story_text = result.story_text
    updated.generation_time_seconds = result.generation_time_seconds
    updated.cost_usd = result.cost_usd
    updated.failure_reason = result.failure_reason
    updated.current_step = status.value
    if status == SagaStatus.COMPLETED:
        updated.progress_percent = 100
    updated.completed_at = now
    updated.updated_at = now
    return updated


def apply_override(
    saga: Saga,
    status: SagaStatus,
    now: datetime,
    reason: str,
    reset: bool = False,
) -> Saga:
    """Diagnostic override: set any status, bypassing the forward-only rule.

    ``reset`` wipes generated output so the saga can be generated again from
    page 1; without it pages are preserved.
    """
    status = SagaStatus(status)
    logger.warning(
        "Override on saga %s: %s -> %s (%s)",
        saga.id, saga.status.value, status.value, reason,
    )

    updated = saga.model_copy(deep=True)
    updated.status = status
    updated.current_step = f"override: {reason}"
    if reset:
        updated.pages = []
        updated.total_pages = None
        updated.total_panels = None
        updated.story_text = None
        updated.generation_time_seconds = None
        updated.cost_usd = None
        updated.failure_reason = None
        updated.completed_at = None
        updated.progress_percent = STAGE_PROGRESS.get(status, 0)
    if status.is_terminal:
        updated.completed_at = now
        if status == SagaStatus.FAILED:
            updated.failure_reason = reason
    updated.updated_at = now
    return updated

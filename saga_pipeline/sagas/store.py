"""Saga store interface and in-memory implementation."""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, List, Optional

from saga_pipeline.errors import NotFound
from saga_pipeline.sagas import transitions
from saga_pipeline.sagas.models import Page, Saga, SagaResult, SagaStatus, utcnow

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class SagaStore(ABC):
    """Durable record of saga state (local or Supabase).

    Written by the worker, read by the status API and diagnostics. Every
    mutation is atomic per saga id.
    """

    @abstractmethod
    async def create(self, source_id: str) -> Saga:
        """Insert a new pending saga. No duplicate check on source_id."""
        ...

    @abstractmethod
    async def get(self, saga_id: str) -> Saga:
        """Return the saga or raise NotFound."""
        ...

    @abstractmethod
    async def list_by_source(self, source_id: str, limit: int = 50) -> List[Saga]:
        """Sagas generated from one source entity, newest first."""
        ...

    @abstractmethod
    async def append_page(self, saga_id: str, page: Page) -> Saga:
        ...

    @abstractmethod
    async def transition(
        self,
        saga_id: str,
        new_status: SagaStatus,
        *,
        current_step: Optional[str] = None,
        total_pages: Optional[int] = None,
        total_panels: Optional[int] = None,
    ) -> Saga:
        ...

    @abstractmethod
    async def set_terminal(self, saga_id: str, status: SagaStatus, result: SagaResult) -> Saga:
        ...

    @abstractmethod
    async def override(
        self,
        saga_id: str,
        status: SagaStatus,
        *,
        reason: str,
        reset: bool = False,
    ) -> Saga:
        """Diagnostic path that bypasses the forward-only status rule."""
        ...

    @abstractmethod
    async def delete(self, saga_id: str) -> None:
        ...


class InMemorySagaStore(SagaStore):
    """Process-local store for development and tests.

    Mutations are serialised by one lock and readers get deep copies, so a
    read never observes a half-applied write.
    """

    def __init__(self, clock: Clock = utcnow):
        self._sagas: Dict[str, Saga] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def create(self, source_id: str) -> Saga:
        now = self._clock()
        saga = Saga(source_id=source_id, created_at=now, updated_at=now)
        async with self._lock:
            self._sagas[saga.id] = saga
        return saga.model_copy(deep=True)

    async def get(self, saga_id: str) -> Saga:
        saga = self._sagas.get(saga_id)
        if saga is None:
            raise NotFound("Saga", saga_id)
        return saga.model_copy(deep=True)

    async def list_by_source(self, source_id: str, limit: int = 50) -> List[Saga]:
        matches = [s for s in self._sagas.values() if s.source_id == source_id]
        matches.sort(key=lambda s: s.created_at, reverse=True)
        return [s.model_copy(deep=True) for s in matches[:limit]]

    async def _mutate(self, saga_id: str, fn: Callable[[Saga], Saga]) -> Saga:
        async with self._lock:
            current = self._sagas.get(saga_id)
            if current is None:
                raise NotFound("Saga", saga_id)
            updated = fn(current)
            self._sagas[saga_id] = updated
            return updated.model_copy(deep=True)

    async def append_page(self, saga_id: str, page: Page) -> Saga:
        return await self._mutate(
            saga_id, lambda s: transitions.apply_append_page(s, page, self._clock())
        )

    async def transition(
        self,
        saga_id: str,
        new_status: SagaStatus,
        *,
        current_step: Optional[str] = None,
        total_pages: Optional[int] = None,
        total_panels: Optional[int] = None,
    ) -> Saga:
        return await self._mutate(
            saga_id,
            lambda s: transitions.apply_transition(
                s, new_status, self._clock(),
                current_step=current_step,
                total_pages=total_pages,
                total_panels=total_panels,
            ),
        )

    async def set_terminal(self, saga_id: str, status: SagaStatus, result: SagaResult) -> Saga:
        return await self._mutate(
            saga_id, lambda s: transitions.apply_terminal(s, status, result, self._clock())
        )

    async def override(
        self,
        saga_id: str,
        status: SagaStatus,
        *,
        reason: str,
        reset: bool = False,
    ) -> Saga:
        return await self._mutate(
            saga_id,
            lambda s: transitions.apply_override(s, status, self._clock(), reason, reset=reset),
        )

    async def delete(self, saga_id: str) -> None:
        async with self._lock:
            if self._sagas.pop(saga_id, None) is None:
                raise NotFound("Saga", saga_id)

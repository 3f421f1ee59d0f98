"""Saga store backed by the Supabase ``sagas`` table.

The Supabase client is synchronous, so every call runs in the default thread
executor to keep the event loop free while the worker is generating.

PostgREST has no multi-statement transactions, so mutations use optimistic
compare-and-set on ``updated_at``: read the row, apply the pure transition,
then ``UPDATE ... WHERE id = :id AND updated_at = :seen``. An empty result
means another writer got there first and the cycle is retried.
"""

import asyncio
import json
import logging
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

from supabase import Client

from saga_pipeline.errors import ConcurrentUpdate, NotFound
from saga_pipeline.sagas import transitions
from saga_pipeline.sagas.models import Page, Saga, SagaResult, SagaStatus, utcnow
from saga_pipeline.sagas.store import Clock, SagaStore

logger = logging.getLogger(__name__)

# Columns that are never rewritten after insert
_IMMUTABLE_COLUMNS = {"id", "source_id", "created_at"}


def row_to_saga(row: Dict[str, Any]) -> Saga:
    """Build a Saga from a table row, tolerating legacy/NULL columns."""
    data = dict(row)
    pages = data.get("pages")
    if isinstance(pages, str):
        # older rows stored pages as a JSON string
        pages = json.loads(pages)
    data["pages"] = pages or []
    if data.get("progress_percent") is None:
        data["progress_percent"] = 0
    if not data.get("current_step"):
        data["current_step"] = "queued"
    if data.get("updated_at") is None:
        data["updated_at"] = data.get("created_at")
    return Saga.model_validate(data)


def saga_to_row(saga: Saga) -> Dict[str, Any]:
    return saga.model_dump(mode="json")


class SupabaseSagaStore(SagaStore):
    """Durable saga store on a Supabase (Postgres) table."""

    def __init__(
        self,
        client: Client,
        table: str = "sagas",
        max_cas_retries: int = 5,
        clock: Clock = utcnow,
    ):
        self._client = client
        self._table = table
        self._max_cas_retries = max_cas_retries
        self._clock = clock

    async def _run(self, fn: Callable, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args))

    # Synchronous helpers (run in the executor)

    def _select_row(self, saga_id: str) -> Optional[Dict[str, Any]]:
        response = (
            self._client.table(self._table)
            .select("*")
            .eq("id", saga_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def _insert_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        response = self._client.table(self._table).insert(row).execute()
        return response.data[0] if response.data else row

    def _compare_and_set(
        self, saga_id: str, seen_updated_at: str, values: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        response = (
            self._client.table(self._table)
            .update(values)
            .eq("id", saga_id)
            .eq("updated_at", seen_updated_at)
            .execute()
        )
        return response.data[0] if response.data else None

    def _select_by_source(self, source_id: str, limit: int) -> List[Dict[str, Any]]:
        response = (
            self._client.table(self._table)
            .select("*")
            .eq("source_id", source_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return response.data or []

    def _delete_row(self, saga_id: str) -> List[Dict[str, Any]]:
        response = self._client.table(self._table).delete().eq("id", saga_id).execute()
        return response.data or []

    # SagaStore

    async def create(self, source_id: str) -> Saga:
        now = self._clock()
        saga = Saga(source_id=source_id, created_at=now, updated_at=now)
        row = await self._run(self._insert_row, saga_to_row(saga))
        logger.info("Created saga %s for source %s", saga.id, source_id)
        return row_to_saga(row)

    async def _fetch(self, saga_id: str) -> Tuple[Saga, str]:
        row = await self._run(self._select_row, saga_id)
        if row is None:
            raise NotFound("Saga", saga_id)
        return row_to_saga(row), row.get("updated_at") or row.get("created_at")

    async def get(self, saga_id: str) -> Saga:
        saga, _ = await self._fetch(saga_id)
        return saga

    async def list_by_source(self, source_id: str, limit: int = 50) -> List[Saga]:
        rows = await self._run(self._select_by_source, source_id, limit)
        return [row_to_saga(row) for row in rows]

    async def _mutate(self, saga_id: str, fn: Callable[[Saga], Saga]) -> Saga:
        for attempt in range(1, self._max_cas_retries + 1):
            current, seen = await self._fetch(saga_id)
            updated = fn(current)
            values = {
                k: v for k, v in saga_to_row(updated).items()
                if k not in _IMMUTABLE_COLUMNS
            }
            row = await self._run(self._compare_and_set, saga_id, seen, values)
            if row is not None:
                return row_to_saga(row)
            logger.debug(
                "Saga %s changed concurrently, retrying (%d/%d)",
                saga_id, attempt, self._max_cas_retries,
            )
        raise ConcurrentUpdate(
            f"Saga {saga_id}: gave up after {self._max_cas_retries} concurrent updates"
        )

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
        deleted = await self._run(self._delete_row, saga_id)
        if not deleted:
            raise NotFound("Saga", saga_id)
        logger.info("Deleted saga %s", saga_id)

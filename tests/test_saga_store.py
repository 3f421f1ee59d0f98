"""Tests for the in-memory saga store."""

import pytest

from saga_pipeline.errors import AlreadyTerminal, InvalidTransition, NotFound
from saga_pipeline.sagas.models import Page, SagaResult, SagaStatus


@pytest.mark.anyio
async def test_create_and_get(store):
    saga = await store.create("0xabc")
    fetched = await store.get(saga.id)
    assert fetched.source_id == "0xabc"
    assert fetched.status == SagaStatus.PENDING
    assert fetched.progress_percent == 0
    assert fetched.current_step == "queued"


@pytest.mark.anyio
async def test_get_unknown_raises(store):
    with pytest.raises(NotFound):
        await store.get("missing")


@pytest.mark.anyio
async def test_reads_are_copies(store):
    saga = await store.create("0xabc")
    saga.pages.append(Page(page_number=1))
    assert (await store.get(saga.id)).pages == []


@pytest.mark.anyio
async def test_list_by_source_newest_first(store, clock):
    first = await store.create("0xabc")
    clock.advance(1)
    second = await store.create("0xabc")
    await store.create("0xother")

    sagas = await store.list_by_source("0xabc")
    assert [s.id for s in sagas] == [second.id, first.id]
    assert len(await store.list_by_source("0xabc", limit=1)) == 1


@pytest.mark.anyio
async def test_transition_updates_timestamp(store, clock):
    saga = await store.create("0xabc")
    clock.advance(30)
    updated = await store.transition(saga.id, SagaStatus.GENERATING_TEXT, current_step="generating_story")
    assert updated.updated_at == clock.now
    assert updated.current_step == "generating_story"


@pytest.mark.anyio
async def test_invalid_transition_leaves_record_unchanged(store):
    saga = await store.create("0xabc")
    await store.transition(saga.id, SagaStatus.GENERATING_TEXT)
    with pytest.raises(InvalidTransition):
        await store.transition(saga.id, SagaStatus.PENDING)
    assert (await store.get(saga.id)).status == SagaStatus.GENERATING_TEXT


@pytest.mark.anyio
async def test_set_terminal_only_once(store):
    saga = await store.create("0xabc")
    await store.set_terminal(saga.id, SagaStatus.FAILED, SagaResult(failure_reason="boom"))

    with pytest.raises(AlreadyTerminal):
        await store.set_terminal(saga.id, SagaStatus.COMPLETED, SagaResult(story_text="late"))

    stored = await store.get(saga.id)
    assert stored.status == SagaStatus.FAILED
    assert stored.failure_reason == "boom"
    assert stored.story_text is None


@pytest.mark.anyio
async def test_append_page_on_unknown_saga(store):
    with pytest.raises(NotFound):
        await store.append_page("missing", Page(page_number=1))


@pytest.mark.anyio
async def test_override_bypasses_terminal(store):
    saga = await store.create("0xabc")
    await store.set_terminal(saga.id, SagaStatus.FAILED, SagaResult(failure_reason="boom"))
    reopened = await store.override(saga.id, SagaStatus.PENDING, reason="requeued", reset=True)
    assert reopened.status == SagaStatus.PENDING
    assert reopened.failure_reason is None


@pytest.mark.anyio
async def test_delete(store):
    saga = await store.create("0xabc")
    await store.delete(saga.id)
    with pytest.raises(NotFound):
        await store.get(saga.id)
    with pytest.raises(NotFound):
        await store.delete(saga.id)

"""Shared fixtures: in-memory backends and a controllable clock."""

from datetime import datetime, timedelta, timezone

import pytest

from saga_pipeline.generation.collaborators import StaticSagaGenerator
from saga_pipeline.jobs.in_process_queue import InProcessQueue
from saga_pipeline.jobs.worker import SagaWorker
from saga_pipeline.sagas.store import InMemorySagaStore
from saga_pipeline.services.diagnostics import SagaDiagnostics
from saga_pipeline.services.sagas import SagaService


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemorySagaStore(clock=clock)


@pytest.fixture
def queue():
    return InProcessQueue()


@pytest.fixture
def generator():
    return StaticSagaGenerator(pages=3, panels_per_page=2)


@pytest.fixture
def worker(queue, store, generator):
    return SagaWorker(queue, store, generator, poll_interval=0.01, shutdown_grace_seconds=1.0)


@pytest.fixture
def service(store, queue):
    return SagaService(store, queue)


@pytest.fixture
def diagnostics(store, queue):
    return SagaDiagnostics(store, queue, stuck_threshold_seconds=300)

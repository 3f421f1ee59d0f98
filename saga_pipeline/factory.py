"""Build the configured store, queue and generator backends."""

from saga_pipeline.config import Settings
from saga_pipeline.db.supabase_client import get_supabase
from saga_pipeline.generation.collaborators import SagaGenerator, StaticSagaGenerator
from saga_pipeline.jobs.in_process_queue import InProcessQueue
from saga_pipeline.jobs.queue import JobQueue
from saga_pipeline.jobs.redis_connection import create_redis
from saga_pipeline.jobs.redis_queue import RedisJobQueue
from saga_pipeline.sagas.store import InMemorySagaStore, SagaStore
from saga_pipeline.sagas.supabase_store import SupabaseSagaStore


def build_store(settings: Settings) -> SagaStore:
    if settings.store_backend == "memory":
        return InMemorySagaStore()
    return SupabaseSagaStore(
        get_supabase(),
        table=settings.sagas_table,
        max_cas_retries=settings.store_max_cas_retries,
    )


def build_queue(settings: Settings) -> JobQueue:
    if settings.queue_backend == "memory":
        return InProcessQueue()
    return RedisJobQueue(create_redis(settings), name=settings.queue_name)


def build_generator(settings: Settings) -> SagaGenerator:
    return StaticSagaGenerator(
        pages=settings.generator_pages,
        panels_per_page=settings.generator_panels_per_page,
    )

"""Saga generation service - FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from saga_pipeline.config import settings
from saga_pipeline.api.v1.router import v1_router
from saga_pipeline.api.v1 import admin as admin_api
from saga_pipeline.api.v1 import health as health_api
from saga_pipeline.api.v1 import sagas as sagas_api
from saga_pipeline.api.v1 import worker as worker_api
from saga_pipeline.factory import build_generator, build_queue, build_store
from saga_pipeline.jobs.worker import SagaWorker
from saga_pipeline.logging_config import configure_logging
from saga_pipeline.services.diagnostics import SagaDiagnostics
from saga_pipeline.services.sagas import SagaService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    configure_logging(settings.log_level)
    logger.info("Starting saga service on port %s", settings.compute_port)
    logger.info("Store backend: %s, queue backend: %s", settings.store_backend, settings.queue_backend)

    store = build_store(settings)
    queue = build_queue(settings)
    worker = SagaWorker(
        queue,
        store,
        build_generator(settings),
        poll_interval=settings.worker_poll_interval_seconds,
    )

    # Wire services into API endpoints
    sagas_api.set_service(SagaService(store, queue))
    worker_api.set_worker(worker)
    admin_api.set_diagnostics(
        SagaDiagnostics(store, queue, stuck_threshold_seconds=settings.stuck_threshold_seconds)
    )
    health_api.set_queue(queue)

    if settings.worker_autostart:
        await worker.start()

    yield

    # Shutdown
    logger.info("Shutting down saga service")
    await worker.stop()
    await queue.close()


app = FastAPI(
    title="Saga Generation Service",
    description="Asynchronous multi-page saga generation with a durable job queue",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow frontend dev server and any configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(health_api.router, tags=["health"])  # GET /health at root
app.include_router(v1_router)  # All /api/v1/* endpoints

"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from saga_pipeline.api.v1.health import router as health_router
from saga_pipeline.api.v1.sagas import router as sagas_router
from saga_pipeline.api.v1.worker import router as worker_router
from saga_pipeline.api.v1.admin import router as admin_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(sagas_router, tags=["sagas"])
v1_router.include_router(worker_router, tags=["worker"])
v1_router.include_router(admin_router, tags=["admin"])

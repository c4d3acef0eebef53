"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from cinegen.api.v1.health import router as health_router
from cinegen.api.v1.generations import router as generations_router
from cinegen.api.v1.tools import router as tools_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(generations_router, tags=["generations"])
v1_router.include_router(tools_router, tags=["tools"])

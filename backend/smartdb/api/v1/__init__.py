"""API v1 routes."""

from fastapi import APIRouter

from smartdb.api.v1 import databases, health, query

router = APIRouter()

# Health checks (no prefix)
router.include_router(health.router, tags=["health"])

router.include_router(databases.router, prefix="/databases", tags=["databases"])
router.include_router(query.router, tags=["queries"])

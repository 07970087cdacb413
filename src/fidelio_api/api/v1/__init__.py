from fastapi import APIRouter

from .endpoints import (
    health,
    ingest,
    observability,
    stats,
    webhooks,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(ingest.router)
router.include_router(webhooks.router)
router.include_router(stats.router)
router.include_router(observability.router)

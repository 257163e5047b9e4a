"""API v1 router aggregation."""

from fastapi import APIRouter

from modelgate.routes.api import ai, assistant, content, usage

router = APIRouter(prefix="/api/v1", tags=["api"])
router.include_router(ai.router)
router.include_router(usage.router)
router.include_router(assistant.router)
router.include_router(content.router)

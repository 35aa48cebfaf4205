"""FastAPI API endpoints under /api.

Endpoint groups: health + connection check, narrative generation (segment,
initial scene, fallback content summary). Generation endpoints are rate
limited per client IP; denied calls get HTTP 429 with a friendly message.
"""

from fastapi import APIRouter

from .narrative import router as narrative_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(narrative_router)

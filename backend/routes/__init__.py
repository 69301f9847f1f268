"""FastAPI API endpoints under /api.

Endpoint groups: health + settings, characters (read-only catalog),
sessions (one-on-one chat), groups (multi-party chat). Every endpoint
except health needs the X-User-Id header.
"""

from fastapi import APIRouter

from .characters import router as characters_router
from .groups import router as groups_router
from .sessions import router as sessions_router
from .settings import router as settings_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(characters_router)
router.include_router(sessions_router)
router.include_router(groups_router)

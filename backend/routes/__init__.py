"""FastAPI API endpoints under /api.

Endpoint groups: health/settings/export-import, quests, permissions, and the
WebSocket sync relay at /api/sync. The acting user of a request comes from
the ``X-User-Id`` header and defaults to the host's own identity.
"""

from fastapi import APIRouter

from .permissions import router as permissions_router
from .quests import router as quests_router
from .settings import router as settings_router
from .sync import router as sync_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(quests_router)
router.include_router(permissions_router)
router.include_router(sync_router)

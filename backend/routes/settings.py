"""Health check, settings, and export/import endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from quest_manager import config

from .deps import acting_user, context, operations, raise_for, require_gm
from .models import SettingsBody

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Health check."""
    ctx = context(request)
    return {"status": "ok", "quests": len(ctx.graph), "revision": ctx.base_revision}


@router.get("/settings")
async def get_settings(request: Request):
    """Get quest manager settings."""
    return context(request).settings.model_dump()


@router.patch("/settings")
async def update_settings(
    request: Request, body: SettingsBody, user_id: str = Depends(acting_user)
):
    """Update settings (partial merge). GM only."""
    require_gm(request, user_id)
    try:
        settings = config.update_settings(
            request.app.state.data_dir, body.model_dump(exclude_none=True)
        )
    except ValidationError as e:
        raise HTTPException(422, [err["msg"] for err in e.errors()]) from e
    context(request).settings = settings
    return settings.model_dump()


@router.get("/export")
async def export_data(request: Request, user_id: str = Depends(acting_user)):
    """Full snapshot of quests and permissions, as a downloadable JSON file."""
    ops, notifier = operations(request)
    data = await ops.export_data(user_id)
    if data is None:
        raise_for(notifier)
    return JSONResponse(
        data, headers={"Content-Disposition": 'attachment; filename="quest-manager-export.json"'}
    )


@router.post("/import")
async def import_data(request: Request, body: dict, user_id: str = Depends(acting_user)):
    """Replace all quests and permissions with an exported snapshot."""
    ops, notifier = operations(request)
    if not await ops.import_data(body, user_id):
        raise_for(notifier)
    return {"ok": True, "quests": len(context(request).graph)}

"""Permission endpoints. Everything except ``/permissions/me`` is GM-only."""

from fastapi import APIRouter, Depends, Request

from .deps import acting_user, context, operations, raise_for, require_gm
from .models import PresetBody

router = APIRouter()


@router.get("/permissions")
async def get_permissions(request: Request, user_id: str = Depends(acting_user)):
    """Stored defaults and per-user overrides."""
    require_gm(request, user_id)
    return context(request).permissions.to_snapshot()


@router.get("/permissions/me")
async def my_permissions(request: Request, user_id: str = Depends(acting_user)):
    """Effective capabilities of the acting user."""
    ctx = context(request)
    return {
        "userId": user_id,
        "isGM": ctx.is_gm(user_id),
        "permissions": ctx.permissions.effective_permissions(user_id, is_gm=ctx.is_gm(user_id)),
    }


@router.patch("/permissions/users/{target_user_id}")
async def set_user_permissions(
    target_user_id: str,
    request: Request,
    body: dict[str, bool],
    user_id: str = Depends(acting_user),
):
    """Set capability overrides for one user (partial)."""
    ops, notifier = operations(request)
    if not await ops.set_user_permissions(target_user_id, body, user_id):
        raise_for(notifier)
    return context(request).permissions.to_snapshot()


@router.delete("/permissions/users/{target_user_id}")
async def reset_user_permissions(
    target_user_id: str, request: Request, user_id: str = Depends(acting_user)
):
    """Drop every override of one user so the defaults apply again."""
    ops, notifier = operations(request)
    if not await ops.reset_user_permissions(target_user_id, user_id):
        raise_for(notifier)
    return context(request).permissions.to_snapshot()


@router.delete("/permissions/users/{target_user_id}/{capability}")
async def remove_user_permission(
    target_user_id: str, capability: str, request: Request, user_id: str = Depends(acting_user)
):
    ops, notifier = operations(request)
    if not await ops.remove_user_permission(target_user_id, capability, user_id):
        raise_for(notifier)
    return context(request).permissions.to_snapshot()


@router.post("/permissions/preset")
async def apply_preset(request: Request, body: PresetBody, user_id: str = Depends(acting_user)):
    ops, notifier = operations(request)
    if not await ops.apply_permission_preset(body.preset, body.target, user_id):
        raise_for(notifier)
    return context(request).permissions.to_snapshot()


@router.patch("/permissions/defaults")
async def set_default_permissions(
    request: Request, body: dict[str, bool], user_id: str = Depends(acting_user)
):
    ops, notifier = operations(request)
    if not await ops.set_default_permissions(body, user_id):
        raise_for(notifier)
    return context(request).permissions.to_snapshot()

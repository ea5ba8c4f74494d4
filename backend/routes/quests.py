"""Quest CRUD, status, reward and move endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Request

from .deps import acting_user, context, operations, raise_for, require_gm
from .models import CompleteBody, MoveBody, StatusBody

router = APIRouter()


@router.get("/quests")
async def list_quests(request: Request, user_id: str = Depends(acting_user)):
    """All quests grouped by status (known, active, completed)."""
    ops, notifier = operations(request)
    buckets = await ops.get_all_quests_by_status(user_id)
    if notifier.last_error is not None:
        raise_for(notifier)
    return {status: [q.to_record() for q in quests] for status, quests in buckets.items()}


@router.get("/quests/roots")
async def list_root_quests(request: Request, user_id: str = Depends(acting_user)):
    """Top-level quests in sort order, each with its direct children."""
    ctx = context(request)
    if not ctx.can(user_id, "view"):
        raise HTTPException(403, f"User {user_id} is not allowed to view quests")
    return [
        {**q.to_record(), "children": [c.to_record() for c in ctx.graph.get_children(q.id)]}
        for q in ctx.graph.get_root_quests()
    ]


@router.get("/quests/integrity")
async def integrity(request: Request, user_id: str = Depends(acting_user)):
    """Forest, mirror and blocking-pair violations in the current graph."""
    require_gm(request, user_id)
    return {"errors": context(request).graph.integrity_errors()}


@router.post("/quests", status_code=201)
async def create_quest(request: Request, body: dict, user_id: str = Depends(acting_user)):
    """Create a quest from partial data (camelCase or snake_case keys)."""
    ops, notifier = operations(request)
    quest = await ops.create_quest(body, user_id)
    if quest is None:
        raise_for(notifier)
    return quest.to_record()


@router.get("/quests/{quest_id}")
async def get_quest(quest_id: str, request: Request, user_id: str = Depends(acting_user)):
    ops, notifier = operations(request)
    quest = await ops.get_quest(quest_id, user_id)
    if quest is None:
        raise_for(notifier)
    return quest.to_record()


@router.patch("/quests/{quest_id}")
async def update_quest(
    quest_id: str, request: Request, body: dict, user_id: str = Depends(acting_user)
):
    """Apply a partial update; unknown fields are rejected with 422."""
    ops, notifier = operations(request)
    quest = await ops.update_quest(quest_id, body, user_id)
    if quest is None:
        raise_for(notifier)
    return quest.to_record()


@router.post("/quests/{quest_id}/status")
async def change_status(
    quest_id: str, request: Request, body: StatusBody, user_id: str = Depends(acting_user)
):
    ops, notifier = operations(request)
    quest = await ops.change_quest_status(quest_id, body.status, user_id)
    if quest is None:
        raise_for(notifier)
    return quest.to_record()


@router.post("/quests/{quest_id}/complete")
async def complete_quest(
    quest_id: str, request: Request, body: CompleteBody, user_id: str = Depends(acting_user)
):
    """Mark the quest completed by an actor."""
    ops, notifier = operations(request)
    quest = await ops.complete_quest(quest_id, body.actor_ref, user_id)
    if quest is None:
        raise_for(notifier)
    return quest.to_record()


@router.post("/quests/{quest_id}/rewards")
async def distribute_rewards(
    quest_id: str, request: Request, user_id: str = Depends(acting_user)
):
    """Grant the reward items to the completing actor (once)."""
    ops, notifier = operations(request)
    granted = await ops.distribute_rewards(quest_id, user_id)
    if granted is None:
        raise_for(notifier)
    return {"granted": [g.model_dump() for g in granted], "warnings": notifier.messages("warn")}


@router.post("/quests/{quest_id}/move")
async def move_quest(
    quest_id: str, request: Request, body: MoveBody, user_id: str = Depends(acting_user)
):
    """Re-parent a quest, or place it before/after ``target_id`` when given."""
    ops, notifier = operations(request)
    if body.target_id:
        siblings = await ops.reorder_quest(quest_id, body.target_id, body.position, user_id)
        if siblings is None:
            raise_for(notifier)
        return [q.to_record() for q in siblings]
    quest = await ops.move_quest(quest_id, body.parent_id, user_id)
    if quest is None:
        raise_for(notifier)
    return [quest.to_record()]


@router.delete("/quests/{quest_id}")
async def delete_quest(quest_id: str, request: Request, user_id: str = Depends(acting_user)):
    ops, notifier = operations(request)
    if not await ops.delete_quest(quest_id, user_id):
        raise_for(notifier)
    return {"ok": True}

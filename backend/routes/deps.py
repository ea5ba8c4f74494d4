"""Per-request helpers: acting user, operations facade, error mapping."""

from fastapi import Header, HTTPException, Request

from quest_manager.collaborators import AutoConfirm, RecordingNotifier
from quest_manager.context import QuestContext
from quest_manager.errors import (
    CircularDependency,
    ExternalFailure,
    NotFound,
    PermissionDenied,
    StaleSnapshot,
    ValidationFailed,
)
from quest_manager.operations import QuestOperations

STATUS_CODES: list[tuple[type[Exception], int]] = [
    (PermissionDenied, 403),
    (ValidationFailed, 422),
    (NotFound, 404),
    (CircularDependency, 409),
    (StaleSnapshot, 409),
    (ExternalFailure, 502),
]


def context(request: Request) -> QuestContext:
    return request.app.state.ctx


def acting_user(request: Request, x_user_id: str | None = Header(default=None)) -> str:
    return x_user_id or context(request).user_id


def operations(request: Request) -> tuple[QuestOperations, RecordingNotifier]:
    """A facade bound to the shared context, reporting into a fresh notifier."""
    notifier = RecordingNotifier()
    ops = QuestOperations(
        context(request),
        sync=request.app.state.sync,
        confirm=AutoConfirm(),
        inventory=getattr(request.app.state, "inventory", None),
        notifier=notifier,
    )
    return ops, notifier


def raise_for(notifier: RecordingNotifier) -> None:
    """Raise the HTTPException matching the last failure the operation reported."""
    error = notifier.last_error
    if error is None:
        warnings = notifier.messages("warn")
        raise HTTPException(409, warnings[-1] if warnings else "Operation failed")
    if isinstance(error, ValidationFailed):
        raise HTTPException(422, error.errors)
    for kind, code in STATUS_CODES:
        if isinstance(error, kind):
            raise HTTPException(code, str(error))
    raise HTTPException(400, str(error))


def require_gm(request: Request, user_id: str) -> None:
    if not context(request).is_gm(user_id):
        raise HTTPException(403, "Only the GM can do this")

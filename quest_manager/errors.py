"""Error kinds raised inside the quest manager.

Operations raise these internally; the QuestOperations facade catches them at
one boundary, reports them through the notifier and returns None/False to the
caller. Collaborators (storage, inventory) raise their own subclasses which the
facade wraps into ExternalFailure.
"""

from __future__ import annotations


class QuestManagerError(RuntimeError):
    """Base class for every recoverable quest manager failure."""


class PermissionDenied(QuestManagerError):
    """The acting user lacks the capability required by the operation."""

    def __init__(self, user_id: str, capability: str) -> None:
        super().__init__(f"User {user_id} is not allowed to {capability} quests")
        self.user_id = user_id
        self.capability = capability


class ValidationFailed(QuestManagerError):
    """The entity (or patch) breaks one or more validation rules."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("Validation failed: " + ", ".join(errors))
        self.errors = errors


class NotFound(QuestManagerError):
    """A referenced quest id is absent from the graph."""

    def __init__(self, quest_id: str) -> None:
        super().__init__(f"Quest not found: {quest_id}")
        self.quest_id = quest_id


class CircularDependency(QuestManagerError):
    """Assigning the parent would break the forest invariant."""

    def __init__(self, quest_id: str, parent_id: str) -> None:
        super().__init__(
            f"Cannot make {parent_id} the parent of {quest_id}: circular dependency"
        )
        self.quest_id = quest_id
        self.parent_id = parent_id


class ExternalFailure(QuestManagerError):
    """A collaborator (persistence, inventory) failed during the operation."""


class StaleSnapshot(QuestManagerError):
    """The stored snapshot moved on since this client last loaded it."""

    def __init__(self, expected: int, stored: int) -> None:
        super().__init__(
            f"Stored quest tree is at revision {stored}, expected {expected}"
        )
        self.expected = expected
        self.stored = stored


class StorageError(RuntimeError):
    """Raised by blob stores when a document cannot be read or written."""


class InventoryError(RuntimeError):
    """Raised by inventory collaborators for connection and protocol failures."""

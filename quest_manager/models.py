"""Core domain models.

Every component (graph, operations, sync, storage) operates on these types.
Pydantic is used for validation and serialisation at every data boundary.
Python attributes are snake_case; persisted records use the camelCase keys of
the stored quest-tree document (``parentId``, ``childrenIds`` ...).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 10_000
NOTES_MAX_LENGTH = 5_000
MAX_RELATIONS = 20
MAX_CHILDREN = 50

REQUIRED_FIELDS = ("id", "title", "status", "created_at", "created_by")
AUDIT_FIELDS = ("created_at", "updated_at", "created_by", "updated_by")

DEFAULT_ITEM_IMAGE = "icons/svg/item-bag.svg"


class QuestStatus(str, Enum):
    KNOWN = "known"
    ACTIVE = "active"
    COMPLETED = "completed"


class Capability(str, Enum):
    VIEW = "view"
    ADD = "add"
    EDIT = "edit"
    CHANGE_STATUS = "changeStatus"
    DELETE = "delete"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_quest_id() -> str:
    return uuid.uuid4().hex[:16]


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RewardItem(CamelModel):
    """A reward owned by the external inventory system, referenced by id."""

    item_ref: str
    display_name: str = "Unknown item"
    quantity: int = Field(default=1, ge=1)
    image_ref: str = DEFAULT_ITEM_IMAGE


class Quest(CamelModel):
    """One quest: identity, status, relations and audit metadata.

    The relation lists are owned by QuestGraph. Mutate them through the graph
    so that ``children_ids`` and the blocking pairs stay mirrored.
    """

    id: str = Field(default_factory=new_quest_id)
    title: str = ""
    description: str = ""
    notes: str = ""
    location: str = ""
    rewards: str = ""  # legacy free-text rewards
    npcs: list[str] = Field(default_factory=list)
    status: str = QuestStatus.KNOWN.value

    parent_id: str | None = None
    children_ids: list[str] = Field(default_factory=list)
    blocked_by_ids: list[str] = Field(default_factory=list)
    blocks_ids: list[str] = Field(default_factory=list)
    related_ids: list[str] = Field(default_factory=list)
    sort_order: int = 0

    reward_items: list[RewardItem] = Field(default_factory=list)
    completed_by: str | None = None
    completed_at: str | None = None
    rewards_distributed: bool = False

    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    created_by: str = ""
    updated_by: str = ""

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value: Any) -> Any:
        return _enum_value(value)

    @classmethod
    def from_partial(cls, data: dict[str, Any], user_id: str) -> Quest:
        """Build a quest from partial data, stamping the creating user.

        Audit fields in ``data`` are ignored under either spelling.
        """
        audit = set(AUDIT_FIELDS) | {to_camel(name) for name in AUDIT_FIELDS}
        fields = {k: v for k, v in data.items() if k not in audit}
        return cls.model_validate({**fields, "created_by": user_id, "updated_by": user_id})

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Quest:
        return cls.model_validate(record)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def relation_count(self) -> int:
        return (
            len(self.children_ids) + len(self.blocked_by_ids)
            + len(self.blocks_ids) + len(self.related_ids)
        )

    def validation_errors(self, max_relations: int = MAX_RELATIONS) -> list[str]:
        """Return every violated rule as a readable message; empty means valid."""
        errors: list[str] = []
        for name in REQUIRED_FIELDS:
            if not getattr(self, name):
                errors.append(f"Field {to_camel(name)} is required")

        if len(self.title) > TITLE_MAX_LENGTH:
            errors.append(f"Title cannot exceed {TITLE_MAX_LENGTH} characters")
        if len(self.description) > DESCRIPTION_MAX_LENGTH:
            errors.append(f"Description cannot exceed {DESCRIPTION_MAX_LENGTH} characters")
        if len(self.notes) > NOTES_MAX_LENGTH:
            errors.append(f"Notes cannot exceed {NOTES_MAX_LENGTH} characters")

        if self.status and self.status not in {s.value for s in QuestStatus}:
            errors.append(f"Invalid status: {self.status}")

        if self.relation_count() > max_relations:
            errors.append(f"Too many relations (max {max_relations})")
        return errors

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def touch(self, user_id: str) -> None:
        self.updated_at = utc_now()
        self.updated_by = user_id

    def add_reward_item(self, item: RewardItem | dict[str, Any], user_id: str) -> RewardItem:
        reward = item if isinstance(item, RewardItem) else RewardItem.model_validate(item)
        self.reward_items.append(reward)
        self.touch(user_id)
        return reward

    def remove_reward_item(self, index: int, user_id: str) -> bool:
        """Remove the reward at ``index``; out-of-range indexes are ignored."""
        if not 0 <= index < len(self.reward_items):
            return False
        del self.reward_items[index]
        self.touch(user_id)
        return True

    def mark_completed_by(self, actor_ref: str, user_id: str) -> None:
        # Legal from any status.
        self.completed_by = actor_ref
        self.completed_at = utc_now()
        self.status = QuestStatus.COMPLETED.value
        self.touch(user_id)


class QuestPatch(CamelModel):
    """The fields an update may touch. Unknown keys are rejected.

    Only fields present in ``model_fields_set`` are applied, so an explicit
    ``parent_id=None`` (detach to root) differs from omitting it.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="forbid"
    )

    title: str | None = None
    description: str | None = None
    notes: str | None = None
    location: str | None = None
    rewards: str | None = None
    npcs: list[str] | None = None
    status: str | None = None
    parent_id: str | None = None
    blocked_by_ids: list[str] | None = None
    blocks_ids: list[str] | None = None
    related_ids: list[str] | None = None
    sort_order: int | None = None
    reward_items: list[RewardItem] | None = None
    completed_by: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, value: Any) -> Any:
        return _enum_value(value)

    def changes(self) -> dict[str, Any]:
        """The explicitly set fields, keyed by attribute name."""
        return {name: getattr(self, name) for name in self.model_fields_set}

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_unset=True)

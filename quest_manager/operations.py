"""QuestOperations: the single gateway for every quest and permission change.

Each mutating operation runs the same steps:

  1. Permission check    (PermissionDenied)
  2. Domain validation   (ValidationFailed, NotFound)
  3. Cycle check         (CircularDependency) when a parent is assigned
  4. Graph mutation      on a staged copy, committed only once it is valid
  5. Persist             ctx.save(), or mark dirty when auto-save is off
  6. Broadcast           through SyncProtocol, then local change listeners
  7. Return              the result, or None/False on failure

Expected failures never reach the caller as exceptions. They are raised
inside the operation and reported once, by ``_reported``, through the
Notifier collaborator: PermissionDenied as a warning, everything else as an
error. A StaleSnapshot also reloads the context from the store, dropping the
rejected in-memory change.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from quest_manager.collaborators import AutoConfirm, ConfirmPrompt, LogNotifier, Notifier
from quest_manager.context import QuestContext
from quest_manager.errors import (
    CircularDependency,
    ExternalFailure,
    InventoryError,
    NotFound,
    PermissionDenied,
    QuestManagerError,
    StaleSnapshot,
    StorageError,
    ValidationFailed,
)
from quest_manager.graph import Position
from quest_manager.inventory import GrantedItem, Inventory
from quest_manager.models import Capability, Quest, QuestPatch, QuestStatus
from quest_manager.permissions import DEFAULT_TARGET
from quest_manager.storage import read_export, write_export
from quest_manager.sync import MessageKind, SyncProtocol

logger = logging.getLogger(__name__)

T = TypeVar("T")

RELATION_FIELDS = ("blocked_by_ids", "blocks_ids", "related_ids")
NULLABLE_FIELDS = ("parent_id", "completed_by")

GM_ONLY = "manage"


def _reported(default: Any = None) -> Callable:
    """Turn QuestManagerError raised by an operation into a notification + ``default``."""

    def decorate(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(self: QuestOperations, *args: Any, **kwargs: Any) -> T:
            try:
                return await func(self, *args, **kwargs)
            except PermissionDenied as e:
                logger.warning("%s: %s", func.__name__, e)
                self.notifier.warn(str(e), error=e)
            except StaleSnapshot as e:
                logger.warning("%s: %s, reloading", func.__name__, e)
                self.ctx.load()
                self.notifier.error(
                    "Quest data was changed by another user. Your change was not saved.",
                    error=e,
                )
            except QuestManagerError as e:
                logger.warning("%s: %s", func.__name__, e)
                self.notifier.error(str(e), error=e)
            return default

        return wrapper

    return decorate


def _pydantic_errors(e: ValidationError) -> list[str]:
    messages = []
    for err in e.errors():
        loc = ".".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return messages


def _dedupe(ids: list[str]) -> list[str]:
    return list(dict.fromkeys(ids))


class QuestOperations:
    def __init__(
        self,
        ctx: QuestContext,
        sync: SyncProtocol | None = None,
        confirm: ConfirmPrompt | None = None,
        inventory: Inventory | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.ctx = ctx
        self.sync = sync
        self.confirm = confirm or AutoConfirm()
        self.inventory = inventory
        self.notifier = notifier or LogNotifier()

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    def _user(self, user_id: str | None) -> str:
        if not self.ctx.loaded:
            self.ctx.load()
        return user_id or self.ctx.user_id

    def _require(self, user_id: str, capability: Capability) -> None:
        if not self.ctx.can(user_id, capability):
            raise PermissionDenied(user_id, capability.value)

    def _require_gm(self, user_id: str) -> None:
        if not self.ctx.is_gm(user_id):
            raise PermissionDenied(user_id, GM_ONLY)

    def _check_relations(self, quest: Quest) -> None:
        errors = []
        for name in RELATION_FIELDS:
            ids = _dedupe(getattr(quest, name))
            setattr(quest, name, ids)
            for other_id in ids:
                if other_id == quest.id:
                    errors.append(f"{to_camel(name)} cannot reference the quest itself")
                elif other_id not in self.ctx.graph:
                    errors.append(f"{to_camel(name)} references unknown quest {other_id}")
        if errors:
            raise ValidationFailed(errors)

    def _check_parent(self, quest_id: str, parent_id: str) -> None:
        parent = self.ctx.graph.get_quest(parent_id)
        if parent is None:
            raise NotFound(parent_id)
        if self.ctx.graph.would_create_circular_dependency(quest_id, parent_id):
            raise CircularDependency(quest_id, parent_id)
        limit = self.ctx.settings.max_children
        if quest_id not in parent.children_ids and len(parent.children_ids) >= limit:
            raise ValidationFailed([f'"{parent.title}" already has {limit} sub-quests'])

    def _check_valid(self, quest: Quest) -> None:
        errors = quest.validation_errors(self.ctx.settings.max_relations)
        if errors:
            raise ValidationFailed(errors)

    def _check_counterparts(self, quest: Quest, live: Quest | None = None) -> None:
        """Blocking edges are mirrored, so every newly linked quest must stay under the cap."""
        gained: dict[str, int] = {}
        for name, mirror in (("blocks_ids", "blocked_by_ids"), ("blocked_by_ids", "blocks_ids")):
            before = getattr(live, name) if live is not None else []
            for other_id in getattr(quest, name):
                other = self.ctx.graph.get_quest(other_id)
                if other_id in before or other is None or quest.id in getattr(other, mirror):
                    continue
                gained[other_id] = gained.get(other_id, 0) + 1

        limit = self.ctx.settings.max_relations
        errors = []
        for other_id, extra in gained.items():
            other = self.ctx.graph.require(other_id)
            if other.relation_count() + extra > limit:
                errors.append(f'"{other.title}" cannot take more relations (max {limit})')
        if errors:
            raise ValidationFailed(errors)

    def _persist(self) -> None:
        if not self.ctx.settings.auto_save:
            self.ctx.dirty = True
            return
        try:
            self.ctx.save()
        except StorageError as e:
            # The in-memory change stays applied; the periodic save retries it.
            self.ctx.dirty = True
            logger.exception("Failed to save quest data")
            raise ExternalFailure(f"Failed to save quest data: {e}") from e

    async def _broadcast(self, kind: MessageKind, payload: dict[str, Any]) -> None:
        if self.sync is not None:
            await self.sync.emit(kind, payload)
        self.ctx.notify_changed(kind.value, payload)

    def _info(self, message: str) -> None:
        if self.ctx.settings.enable_notifications:
            self.notifier.info(message)

    def _announce_unlocked(self, quest_id: str) -> None:
        for unlocked in self.ctx.graph.unlocked_by(quest_id):
            if unlocked.status != QuestStatus.COMPLETED.value:
                self._info(f'Quest unlocked: "{unlocked.title}"')

    # ------------------------------------------------------------------
    # Quests
    # ------------------------------------------------------------------

    @_reported()
    async def create_quest(self, data: dict[str, Any], user_id: str | None = None) -> Quest | None:
        user_id = self._user(user_id)
        self._require(user_id, Capability.ADD)

        # Ids are generated here and children are derived from their parentId.
        fields = {
            k: v for k, v in data.items()
            if k not in ("id", "children_ids", "childrenIds")
        }
        try:
            quest = Quest.from_partial(fields, user_id)
        except ValidationError as e:
            raise ValidationFailed(_pydantic_errors(e)) from e

        self._check_relations(quest)
        self._check_valid(quest)
        self._check_counterparts(quest)
        if quest.parent_id is not None:
            self._check_parent(quest.id, quest.parent_id)

        self.ctx.graph.add_quest(quest)
        self._persist()
        await self._broadcast(MessageKind.QUEST_CREATED, {"questData": quest.to_record()})
        logger.info("Created quest %s (%s)", quest.id, quest.title)
        self._info(f'Quest created: "{quest.title}"')
        return quest

    @_reported()
    async def get_quest(self, quest_id: str, user_id: str | None = None) -> Quest | None:
        user_id = self._user(user_id)
        self._require(user_id, Capability.VIEW)
        return self.ctx.graph.require(quest_id)

    @_reported()
    async def update_quest(
        self,
        quest_id: str,
        updates: QuestPatch | dict[str, Any],
        user_id: str | None = None,
    ) -> Quest | None:
        user_id = self._user(user_id)
        self._require(user_id, Capability.EDIT)
        return await self._apply_patch(quest_id, updates, user_id)

    @_reported()
    async def change_quest_status(
        self,
        quest_id: str,
        new_status: QuestStatus | str,
        user_id: str | None = None,
    ) -> Quest | None:
        user_id = self._user(user_id)
        self._require(user_id, Capability.CHANGE_STATUS)
        return await self._apply_patch(quest_id, QuestPatch(status=new_status), user_id)

    async def _apply_patch(
        self,
        quest_id: str,
        updates: QuestPatch | dict[str, Any],
        user_id: str,
    ) -> Quest:
        if isinstance(updates, QuestPatch):
            patch = updates
        else:
            try:
                patch = QuestPatch.model_validate(updates)
            except ValidationError as e:
                raise ValidationFailed(_pydantic_errors(e)) from e
        changes = patch.changes()

        live = self.ctx.graph.require(quest_id)
        staged = live.model_copy(deep=True)
        nulls = [
            f"Field {to_camel(name)} cannot be null"
            for name, value in changes.items()
            if value is None and name not in NULLABLE_FIELDS
        ]
        if nulls:
            raise ValidationFailed(nulls)
        for name, value in changes.items():
            setattr(staged, name, value)
        staged.touch(user_id)

        self._check_relations(staged)
        self._check_valid(staged)
        self._check_counterparts(staged, live)
        if "parent_id" in changes and staged.parent_id is not None:
            self._check_parent(staged.id, staged.parent_id)

        self.ctx.graph.commit(staged)
        self._persist()

        if "status" in changes and staged.status != live.status:
            await self._broadcast(MessageKind.QUEST_STATUS_CHANGED, {
                "questId": quest_id,
                "oldStatus": live.status,
                "newStatus": staged.status,
            })
            if staged.status == QuestStatus.COMPLETED.value:
                self._announce_unlocked(quest_id)
        else:
            await self._broadcast(MessageKind.QUEST_UPDATED, {
                "questId": quest_id,
                "updates": patch.to_record(),
            })
        logger.info("Updated quest %s: %s", quest_id, sorted(changes))
        return staged

    @_reported()
    async def complete_quest(
        self, quest_id: str, actor_ref: str, user_id: str | None = None
    ) -> Quest | None:
        """Mark a quest completed by an actor, from any status."""
        user_id = self._user(user_id)
        self._require(user_id, Capability.CHANGE_STATUS)
        if not actor_ref:
            raise ValidationFailed(["An actor is required to complete a quest"])

        live = self.ctx.graph.require(quest_id)
        staged = live.model_copy(deep=True)
        staged.mark_completed_by(actor_ref, user_id)
        self._check_valid(staged)

        self.ctx.graph.commit(staged)
        self._persist()
        await self._broadcast(MessageKind.QUEST_STATUS_CHANGED, {
            "questId": quest_id,
            "oldStatus": live.status,
            "newStatus": staged.status,
            "completedBy": actor_ref,
        })
        logger.info("Quest %s completed by %s", quest_id, actor_ref)
        self._info(f'Quest completed: "{staged.title}"')
        self._announce_unlocked(quest_id)
        return staged

    @_reported()
    async def move_quest(
        self, quest_id: str, parent_id: str | None, user_id: str | None = None
    ) -> Quest | None:
        """Re-parent a quest; ``parent_id=None`` makes it a root quest."""
        user_id = self._user(user_id)
        self._require(user_id, Capability.EDIT)
        return await self._apply_patch(quest_id, QuestPatch(parent_id=parent_id), user_id)

    @_reported()
    async def reorder_quest(
        self,
        quest_id: str,
        target_id: str,
        position: Position = "before",
        user_id: str | None = None,
    ) -> list[Quest] | None:
        """Place a quest before or after a sibling; returns the renumbered siblings."""
        user_id = self._user(user_id)
        self._require(user_id, Capability.EDIT)
        if position not in ("before", "after"):
            raise ValidationFailed([f"Invalid position: {position}"])

        graph = self.ctx.graph
        quest = graph.require(quest_id)
        target = graph.require(target_id)
        if target.parent_id is not None and target.parent_id != quest.parent_id:
            self._check_parent(quest_id, target.parent_id)

        siblings = graph.place_beside(quest_id, target_id, position)
        moved = graph.require(quest_id)
        moved.touch(user_id)
        self._persist()
        await self._broadcast(MessageKind.QUEST_UPDATED, {
            "questId": quest_id,
            "updates": {"parentId": moved.parent_id, "sortOrder": moved.sort_order},
        })
        return siblings

    @_reported(default=False)
    async def delete_quest(self, quest_id: str, user_id: str | None = None) -> bool:
        user_id = self._user(user_id)
        self._require(user_id, Capability.DELETE)

        quest = self.ctx.graph.require(quest_id)
        policy = self.ctx.settings.orphan_policy
        children = len(quest.children_ids)
        if children and policy == "reject":
            raise ValidationFailed([
                f'"{quest.title}" still has {children} sub-quests; move or delete them first'
            ])

        message = f'Delete "{quest.title}"?'
        if children:
            if policy == "cascade":
                message += f" Its {len(self.ctx.graph.descendant_ids(quest_id))} sub-quests are deleted too."
            else:
                message += f" Its {children} sub-quests become top-level quests."
        if not await self.confirm.confirm("Delete Quest", message):
            logger.info("Deletion of %s cancelled", quest_id)
            return False

        # A remote reload may have replaced the graph while the prompt was open.
        quest = self.ctx.graph.require(quest_id)
        removed = self.ctx.graph.delete_quest(quest_id, cascade=policy == "cascade")
        self._persist()
        await self._broadcast(MessageKind.QUEST_DELETED, {
            "questId": quest_id,
            "questTitle": quest.title,
            "removedIds": removed,
        })
        logger.info("Deleted quest %s (%d removed)", quest_id, len(removed))
        self._info(f'Quest deleted: "{quest.title}"')
        return True

    @_reported()
    async def distribute_rewards(
        self, quest_id: str, user_id: str | None = None
    ) -> list[GrantedItem] | None:
        """Grant every reward item to the completing actor, once."""
        user_id = self._user(user_id)
        self._require(user_id, Capability.EDIT)

        quest = self.ctx.graph.require(quest_id)
        if not quest.completed_by:
            self.notifier.warn(f'"{quest.title}" has not been completed by anyone yet')
            return None
        if quest.rewards_distributed:
            self.notifier.warn(f'Rewards for "{quest.title}" were already distributed')
            return None
        if self.inventory is None:
            raise ExternalFailure("No inventory is configured for reward distribution")

        granted: list[GrantedItem] = []
        try:
            for reward in quest.reward_items:
                item = await self.inventory.resolve_item_ref(reward.item_ref)
                if item is None:
                    logger.warning("Reward item %s not found, skipped", reward.item_ref)
                    self.notifier.warn(f"Reward item {reward.display_name} no longer exists, skipped")
                    continue
                granted.append(
                    await self.inventory.grant_item_copy(quest.completed_by, item, reward.quantity)
                )
        except InventoryError as e:
            logger.exception("Reward distribution for %s failed", quest_id)
            raise ExternalFailure(f"Reward distribution failed: {e}") from e

        quest.rewards_distributed = True
        quest.touch(user_id)
        self.ctx.graph.update_metadata()
        self._persist()
        await self._broadcast(MessageKind.QUEST_UPDATED, {
            "questId": quest_id,
            "updates": {"rewardsDistributed": True},
        })
        logger.info("Distributed %d rewards for %s to %s", len(granted), quest_id, quest.completed_by)
        self._info(f'Rewards for "{quest.title}" distributed')
        return granted

    async def get_all_quests_by_status(self, user_id: str | None = None) -> dict[str, list[Quest]]:
        user_id = self._user(user_id)
        if not self.ctx.can(user_id, Capability.VIEW):
            denied = PermissionDenied(user_id, Capability.VIEW.value)
            logger.warning("get_all_quests_by_status: %s", denied)
            self.notifier.warn(str(denied), error=denied)
            return {s.value: [] for s in QuestStatus}
        return self.ctx.graph.by_status()

    # ------------------------------------------------------------------
    # Permissions (GM only)
    # ------------------------------------------------------------------

    async def _permissions_changed(self, target_user_id: str | None) -> None:
        self._persist()
        payload: dict[str, Any] = {}
        if target_user_id is not None:
            payload["targetUserId"] = target_user_id
        await self._broadcast(MessageKind.PERMISSIONS_UPDATED, payload)

    @_reported(default=False)
    async def set_user_permissions(
        self, target_user_id: str, permissions: dict[str, bool], user_id: str | None = None
    ) -> bool:
        """Set individual overrides for one user; other overrides are kept."""
        user_id = self._user(user_id)
        self._require_gm(user_id)
        try:
            for capability, value in permissions.items():
                self.ctx.permissions.set_user_permission(target_user_id, capability, bool(value))
        except ValueError as e:
            raise ValidationFailed([str(e)]) from e
        await self._permissions_changed(target_user_id)
        logger.info("Permissions of %s updated: %s", target_user_id, permissions)
        return True

    @_reported(default=False)
    async def remove_user_permission(
        self, target_user_id: str, capability: Capability | str, user_id: str | None = None
    ) -> bool:
        user_id = self._user(user_id)
        self._require_gm(user_id)
        try:
            self.ctx.permissions.remove_user_permission(target_user_id, capability)
        except ValueError as e:
            raise ValidationFailed([str(e)]) from e
        await self._permissions_changed(target_user_id)
        return True

    @_reported(default=False)
    async def reset_user_permissions(self, target_user_id: str, user_id: str | None = None) -> bool:
        """Drop every override so the defaults apply to ``target_user_id`` again."""
        user_id = self._user(user_id)
        self._require_gm(user_id)
        if not self.ctx.permissions.reset_user(target_user_id):
            return True
        await self._permissions_changed(target_user_id)
        logger.info("Permissions of %s reset to defaults", target_user_id)
        return True

    @_reported(default=False)
    async def apply_permission_preset(
        self, preset: str, target: str = DEFAULT_TARGET, user_id: str | None = None
    ) -> bool:
        user_id = self._user(user_id)
        self._require_gm(user_id)
        try:
            self.ctx.permissions.apply_preset(preset, target)
        except ValueError as e:
            raise ValidationFailed([str(e)]) from e
        await self._permissions_changed(None if target == DEFAULT_TARGET else target)
        logger.info("Applied permission preset %s to %s", preset, target)
        return True

    @_reported(default=False)
    async def set_default_permissions(
        self, permissions: dict[str, bool], user_id: str | None = None
    ) -> bool:
        user_id = self._user(user_id)
        self._require_gm(user_id)
        try:
            for capability, value in permissions.items():
                self.ctx.permissions.set_default_permission(capability, bool(value))
        except ValueError as e:
            raise ValidationFailed([str(e)]) from e
        await self._permissions_changed(None)
        return True

    # ------------------------------------------------------------------
    # Export / import / reset (GM only)
    # ------------------------------------------------------------------

    @_reported()
    async def export_data(self, user_id: str | None = None) -> dict[str, Any] | None:
        user_id = self._user(user_id)
        self._require_gm(user_id)
        return self.ctx.export_data()

    @_reported(default=False)
    async def import_data(self, data: dict[str, Any], user_id: str | None = None) -> bool:
        """Replace all quests and permissions with an exported payload."""
        user_id = self._user(user_id)
        self._require_gm(user_id)
        if (
            not isinstance(data, dict)
            or not isinstance(data.get("questTree"), dict)
            or "permissions" not in data
        ):
            raise ValidationFailed(["Invalid export format: questTree and permissions are required"])

        quests = len(data["questTree"].get("quests") or {})
        if not await self.confirm.confirm(
            "Import Quest Data",
            f"Replace all quests and permissions with the imported data ({quests} quests)?",
        ):
            return False

        self.ctx.replace_state(data)
        self._persist()
        await self._broadcast(MessageKind.QUEST_UPDATED, {"questId": None, "reason": "import"})
        logger.info("Imported %d quests", len(self.ctx.graph))
        self._info(f"Imported {len(self.ctx.graph)} quests")
        return True

    @_reported(default=False)
    async def export_to_file(self, path: Path, user_id: str | None = None) -> bool:
        user_id = self._user(user_id)
        self._require_gm(user_id)
        try:
            write_export(path, self.ctx.export_data())
        except OSError as e:
            raise ExternalFailure(f"Cannot write export file {path}") from e
        logger.info("Exported quest data to %s", path)
        return True

    async def import_from_file(self, path: Path, user_id: str | None = None) -> bool:
        try:
            data = read_export(path)
        except (OSError, ValueError) as e:
            failure = ExternalFailure(f"Cannot read export file {path}")
            logger.warning("import_from_file: %s (%s)", failure, e)
            self.notifier.error(str(failure), error=failure)
            return False
        return await self.import_data(data, user_id)

    @_reported(default=False)
    async def reset(self, user_id: str | None = None) -> bool:
        """Delete every quest and permission override."""
        user_id = self._user(user_id)
        self._require_gm(user_id)
        if not await self.confirm.confirm(
            "Reset Quest Data", "Delete all quests and permission settings? This cannot be undone."
        ):
            return False
        self.ctx.reset()
        self._persist()
        await self._broadcast(MessageKind.QUEST_UPDATED, {"questId": None, "reason": "reset"})
        logger.info("Quest data reset by %s", user_id)
        return True

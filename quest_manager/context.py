"""Per-client quest manager state.

A QuestContext is built once at startup and passed to every operation. It
holds the in-memory graph and permission policy, the blob store they are
loaded from, the identity collaborator and the settings.

Persistence follows "read whole, mutate whole, write whole". Every stored
quest tree carries ``metadata.revision``; ``save()`` refuses to overwrite a
store whose revision moved on since this context last loaded or saved it
(StaleSnapshot), which turns the lost-update race into a reported failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from quest_manager import __version__
from quest_manager.collaborators import Identity
from quest_manager.config import Settings
from quest_manager.errors import StaleSnapshot, StorageError, ValidationFailed
from quest_manager.graph import SCHEMA_VERSION, QuestGraph
from quest_manager.models import Capability, utc_now
from quest_manager.permissions import PermissionPolicy
from quest_manager.storage import PERMISSIONS_KEY, QUEST_TREE_KEY, BlobStore

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, dict[str, Any]], None]


def _stored_revision(blob: dict[str, Any] | None) -> int:
    if not blob:
        return 0
    return int((blob.get("metadata") or {}).get("revision", 0))


class QuestContext:
    def __init__(
        self,
        store: BlobStore,
        identity: Identity,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.identity = identity
        self.settings = settings or Settings()
        self.graph = QuestGraph()
        self.permissions = PermissionPolicy()
        self.loaded = False
        self.dirty = False
        self._base_revision = 0
        self._listeners: list[ChangeListener] = []

    @property
    def user_id(self) -> str:
        return self.identity.current_user_id

    @property
    def base_revision(self) -> int:
        return self._base_revision

    def is_gm(self, user_id: str) -> bool:
        return self.identity.is_gm(user_id)

    def can(self, user_id: str, capability: Capability | str) -> bool:
        return self.permissions.has_permission(
            user_id, capability, is_gm=self.identity.is_gm(user_id)
        )

    # ------------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Discard in-memory state and reload both documents from the store.

        An unreadable store leaves the context empty rather than failing.
        """
        try:
            tree = self.store.load(QUEST_TREE_KEY)
            permissions = self.store.load(PERMISSIONS_KEY)
            self.graph = QuestGraph.from_snapshot(tree)
            self.permissions = PermissionPolicy.from_snapshot(permissions)
            self._base_revision = _stored_revision(tree)
        except (StorageError, ValidationError):
            logger.exception("Failed to load quest data, starting empty")
            self.graph = QuestGraph()
            self.permissions = PermissionPolicy()
            self._base_revision = 0
        self.loaded = True
        self.dirty = False
        logger.info("Loaded %d quests (revision %d)", len(self.graph), self._base_revision)

    def install(
        self,
        quest_tree: dict[str, Any] | None = None,
        permissions: dict[str, Any] | None = None,
    ) -> None:
        """Install snapshots received from the authoritative client, bypassing the store."""
        if quest_tree is not None:
            self.graph = QuestGraph.from_snapshot(quest_tree)
            self._base_revision = self.graph.revision
        if permissions is not None:
            self.permissions = PermissionPolicy.from_snapshot(permissions)
        self.loaded = True

    def save(self) -> None:
        """Write both documents, bumping the quest-tree revision.

        Raises StaleSnapshot when the stored revision differs from the one
        this context is based on, and StorageError on store failures.
        """
        stored = _stored_revision(self.store.load(QUEST_TREE_KEY))
        if stored != self._base_revision:
            raise StaleSnapshot(self._base_revision, stored)
        snapshot = self.graph.to_snapshot()
        snapshot["metadata"]["revision"] = stored + 1
        self.store.save(QUEST_TREE_KEY, snapshot)
        self.store.save(PERMISSIONS_KEY, self.permissions.to_snapshot())
        self.graph.metadata.revision = stored + 1
        self._base_revision = stored + 1
        self.dirty = False
        logger.debug("saved quest tree revision %d", self._base_revision)

    async def autosave_forever(self) -> None:
        """Save pending changes every ``settings.save_interval`` minutes."""
        interval = self.settings.save_interval
        if interval <= 0:
            return
        while True:
            await asyncio.sleep(interval * 60)
            if not (self.loaded and self.dirty):
                continue
            try:
                self.save()
                logger.info("Periodic save done")
            except (StaleSnapshot, StorageError):
                logger.exception("Periodic save failed")

    # ------------------------------------------------------------------
    # Export / import / reset
    # ------------------------------------------------------------------

    def export_data(self) -> dict[str, Any]:
        return {
            "questTree": self.graph.to_snapshot(),
            "permissions": self.permissions.to_snapshot(),
            "exportedAt": utc_now(),
            "schemaVersion": SCHEMA_VERSION,
            "moduleVersion": __version__,
        }

    def replace_state(self, data: dict[str, Any]) -> None:
        """Replace graph and permissions with an exported payload."""
        if not isinstance(data, dict) or not data.get("questTree") or "permissions" not in data:
            raise ValidationFailed(["Invalid export format: questTree and permissions are required"])
        try:
            graph = QuestGraph.from_snapshot(data["questTree"])
            permissions = PermissionPolicy.from_snapshot(data["permissions"])
        except ValidationError as e:
            raise ValidationFailed([err["msg"] for err in e.errors()]) from e
        self.graph = graph
        self.permissions = permissions

    def reset(self) -> None:
        self.graph = QuestGraph()
        self.permissions = PermissionPolicy()

    # ------------------------------------------------------------------
    # Change listeners ("re-render")
    # ------------------------------------------------------------------

    def add_listener(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def notify_changed(self, event: str, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            listener(event, payload)

"""Multi-client synchronisation over a broadcast channel.

One logical channel carries every message. Envelopes look like:

    {"kind": "questUpdated", "payload": {...}, "senderId": "u1", "timestamp": "..."}

The transport is broadcast-to-all, sender included. Receivers drop their own
messages, and targeted delivery is simulated by a ``targetUserId`` key in the
payload that every other receiver filters on.

Receivers never apply diffs. Any mutation message makes the receiver discard
its graph and permissions and reload both documents from the shared store, so
applying a message twice, or out of order, converges on whatever the store
holds (full resnapshot on every event).

Resync: on connect a non-GM client sends ``requestSync``; GM clients answer
with ``syncData`` carrying the full questTree and permissions snapshots,
which the requester installs in memory without touching the store.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol

from pydantic import Field, ValidationError

from quest_manager.collaborators import LogNotifier, Notifier
from quest_manager.context import QuestContext
from quest_manager.models import CamelModel, utc_now

logger = logging.getLogger(__name__)


class MessageKind(str, Enum):
    QUEST_CREATED = "questCreated"
    QUEST_UPDATED = "questUpdated"
    QUEST_DELETED = "questDeleted"
    QUEST_STATUS_CHANGED = "questStatusChanged"
    PERMISSIONS_UPDATED = "permissionsUpdated"
    REQUEST_SYNC = "requestSync"
    SYNC_DATA = "syncData"


RELOAD_KINDS = frozenset({
    MessageKind.QUEST_CREATED.value,
    MessageKind.QUEST_UPDATED.value,
    MessageKind.QUEST_DELETED.value,
    MessageKind.QUEST_STATUS_CHANGED.value,
})


class Envelope(CamelModel):
    kind: str
    payload: dict[str, Any] = Field(default_factory=dict)
    sender_id: str
    timestamp: str = Field(default_factory=utc_now)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


Handler = Callable[[dict[str, Any]], Awaitable[None]]


# ---------------------------------------------------------------------------
# Channel protocol + in-process implementation
# ---------------------------------------------------------------------------

class Channel(Protocol):
    async def publish(self, message: dict[str, Any]) -> None: ...

    def subscribe(self, handler: Handler) -> Callable[[], None]: ...


class InMemoryChannel:
    """Broadcast-to-all channel inside one process. Delivery is in publish order."""

    def __init__(self) -> None:
        self._handlers: list[Handler] = []
        self.published: list[dict[str, Any]] = []

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)
        return lambda: self._handlers.remove(handler)

    async def publish(self, message: dict[str, Any]) -> None:
        self.published.append(message)
        for handler in list(self._handlers):
            await handler(dict(message))


# ---------------------------------------------------------------------------
# SyncProtocol
# ---------------------------------------------------------------------------

class SyncProtocol:
    def __init__(
        self,
        ctx: QuestContext,
        channel: Channel,
        notifier: Notifier | None = None,
    ) -> None:
        self.ctx = ctx
        self.channel = channel
        self.notifier = notifier or LogNotifier()
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def connected(self) -> bool:
        return self._unsubscribe is not None

    async def connect(self, delay: float | None = None) -> None:
        """Subscribe to the channel; non-GM clients then ask for a resync."""
        if self.connected:
            logger.warning("Sync already connected")
            return
        self._unsubscribe = self.channel.subscribe(self.handle)
        logger.info("Sync connected as %s", self.ctx.user_id)
        if not self.ctx.is_gm(self.ctx.user_id):
            await asyncio.sleep(self.ctx.settings.sync_request_delay if delay is None else delay)
            await self.request_sync()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def emit(self, kind: MessageKind | str, payload: dict[str, Any]) -> None:
        envelope = Envelope(
            kind=MessageKind(kind).value, payload=payload, sender_id=self.ctx.user_id
        )
        await self.channel.publish(envelope.to_wire())
        logger.debug("sync emitted %s", envelope.kind)

    async def emit_to(self, user_id: str, kind: MessageKind | str, payload: dict[str, Any]) -> None:
        await self.emit(kind, {**payload, "targetUserId": user_id})

    async def request_sync(self) -> None:
        if self.ctx.is_gm(self.ctx.user_id):
            logger.debug("GM does not request a sync")
            return
        logger.info("Requesting sync from the GM")
        await self.emit(MessageKind.REQUEST_SYNC, {})

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle(self, message: dict[str, Any]) -> None:
        try:
            envelope = Envelope.model_validate(message)
        except ValidationError:
            logger.warning("Dropping malformed sync message: %r", message)
            return
        if envelope.sender_id == self.ctx.user_id:
            return
        logger.debug("sync received %s from %s", envelope.kind, envelope.sender_id)

        payload = envelope.payload
        try:
            if envelope.kind in RELOAD_KINDS:
                self._reload(envelope.kind, payload)
            elif envelope.kind == MessageKind.PERMISSIONS_UPDATED.value:
                self._on_permissions_updated(payload)
            elif envelope.kind == MessageKind.REQUEST_SYNC.value:
                await self._on_request_sync(envelope.sender_id)
            elif envelope.kind == MessageKind.SYNC_DATA.value:
                self._on_sync_data(payload)
            else:
                logger.warning("Unknown sync message kind %r", envelope.kind)
        except ValidationError:
            logger.exception("Failed to apply sync message %s", envelope.kind)

    def _is_for_me(self, payload: dict[str, Any]) -> bool:
        target = payload.get("targetUserId")
        return not target or target == self.ctx.user_id

    def _reload(self, kind: str, payload: dict[str, Any]) -> None:
        self.ctx.load()
        self.ctx.notify_changed(kind, payload)
        if self.ctx.settings.enable_notifications:
            message = self._describe(kind, payload)
            if message:
                self.notifier.info(message)

    def _describe(self, kind: str, payload: dict[str, Any]) -> str | None:
        if kind == MessageKind.QUEST_DELETED.value:
            return f'Quest deleted: "{payload.get("questTitle", "")}"'
        quest_id = payload.get("questId") or (payload.get("questData") or {}).get("id")
        quest = self.ctx.graph.get_quest(quest_id)
        if quest is None:
            return None
        if kind == MessageKind.QUEST_CREATED.value:
            return f'New quest: "{quest.title}"'
        if kind == MessageKind.QUEST_STATUS_CHANGED.value:
            return f'"{quest.title}" is now {payload.get("newStatus")}'
        return f'Quest updated: "{quest.title}"'

    def _on_permissions_updated(self, payload: dict[str, Any]) -> None:
        # Every save bumps the stored revision, so bystanders reload as well.
        self.ctx.load()
        self.ctx.notify_changed(MessageKind.PERMISSIONS_UPDATED.value, payload)
        if self._is_for_me(payload) and self.ctx.settings.enable_notifications:
            self.notifier.info("Your permissions were updated")

    async def _on_request_sync(self, requester_id: str) -> None:
        if not self.ctx.is_gm(self.ctx.user_id):
            return
        logger.info("Sync requested by %s", requester_id)
        await self.emit_to(requester_id, MessageKind.SYNC_DATA, {
            "questTree": self.ctx.graph.to_snapshot(),
            "permissions": self.ctx.permissions.to_snapshot(),
        })

    def _on_sync_data(self, payload: dict[str, Any]) -> None:
        if not self._is_for_me(payload):
            return
        self.ctx.install(payload.get("questTree"), payload.get("permissions"))
        self.ctx.notify_changed(MessageKind.SYNC_DATA.value, payload)
        logger.info("Installed sync data (%d quests)", len(self.ctx.graph))

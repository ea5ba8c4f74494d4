"""WebSocket relay: the broadcast-to-all channel shared by every client.

Every message published, by a connected socket or by the host's own
SyncProtocol, goes to every connected socket and every in-process subscriber,
the sender included. Receivers filter their own echoes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from quest_manager.sync import Handler

logger = logging.getLogger(__name__)


class SyncHub:
    def __init__(self) -> None:
        self._sockets: list[WebSocket] = []
        self._handlers: list[Handler] = []

    @property
    def connections(self) -> int:
        return len(self._sockets)

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self._sockets.append(ws)
        logger.info("Sync socket connected (%d open)", len(self._sockets))

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self._sockets:
            self._sockets.remove(ws)
            logger.info("Sync socket closed (%d open)", len(self._sockets))

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)
        return lambda: self._handlers.remove(handler)

    async def publish(self, message: dict[str, Any]) -> None:
        logger.debug("relay %s from %s", message.get("kind"), message.get("senderId"))
        for ws in list(self._sockets):
            try:
                await ws.send_json(message)
            except (WebSocketDisconnect, RuntimeError):
                logger.warning("Dropping dead sync socket")
                self.disconnect(ws)
        for handler in list(self._handlers):
            await handler(dict(message))

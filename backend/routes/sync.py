"""WebSocket sync relay."""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

router = APIRouter()

logger = logging.getLogger(__name__)


@router.websocket("/sync")
async def sync_socket(ws: WebSocket):
    """Relay every envelope received from a client to all clients, sender included."""
    hub = ws.app.state.hub
    await hub.connect(ws)
    try:
        while True:
            message = await ws.receive_json()
            if not isinstance(message, dict):
                logger.warning("Ignoring non-object sync message")
                continue
            await hub.publish(message)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(ws)

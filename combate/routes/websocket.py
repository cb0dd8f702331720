# combate/routes/websocket.py
"""
WebSocket endpoint.

- /ws : game channel. A client that was disconnected presents its previous
  identity with `?player_id=...`; anything else is a fresh arrival.
- Each text or binary frame is handed to the server's dispatcher; closing
  the socket (or any transport error) goes through the lifecycle manager.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(ws: WebSocket, player_id: Optional[str] = Query(default=None)):
    server = ws.app.state.game_server
    connection = await server.sockets.connect(ws)
    pid = server.on_connect(connection, (player_id or "").strip() or None)
    try:
        while True:
            message = await ws.receive()
            if message["type"] == "websocket.disconnect":
                break
            raw = message.get("text") or message.get("bytes")
            if raw is None:
                continue
            server.on_message(pid, connection, raw)
    finally:
        logger.debug("WebSocket closed", extra={"player_id": pid, "connection_id": connection.connection_id})
        server.on_close(pid, connection)
        await server.sockets.disconnect(connection)

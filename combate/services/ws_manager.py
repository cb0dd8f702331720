# combate/services/ws_manager.py
"""
Service: ws_manager.py
- `WebSocketConnection`: one accepted socket + an outbound queue drained by a
  writer task, so the (synchronous) core can `send()` without awaiting while
  per-connection order is preserved.
- `WSManager`: registry connection_id -> connection, accept/close, stats,
  close_all (shutdown / admin reset).
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Dict, Optional, Protocol
from uuid import uuid4

from starlette.websockets import WebSocket

from combate.services import wire

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """What the core needs from a transport handle."""

    connection_id: str

    def send(self, message: Dict[str, Any]) -> bool: ...


class WebSocketConnection:
    def __init__(self, ws: WebSocket) -> None:
        self.connection_id = uuid4().hex
        self.ws = ws
        self.closed = False
        self._outbox: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._writer: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._writer = asyncio.create_task(self._drain())

    def send(self, message: Dict[str, Any]) -> bool:
        """Queue one message; False when the socket is already gone."""
        if self.closed:
            return False
        self._outbox.put_nowait(wire.encode(message))
        return True

    async def _drain(self) -> None:
        while True:
            data = await self._outbox.get()
            if data is None:
                return
            try:
                await self.ws.send_text(data)
            except Exception:
                # dead socket: stop writing, the receive loop will see the close
                logger.debug("WebSocket send failed", extra={"connection_id": self.connection_id})
                self.closed = True
                return

    async def close(self) -> None:
        if self._writer is not None and not self._writer.done():
            self._outbox.put_nowait(None)
            await self._writer
        self.closed = True
        try:
            await self.ws.close()
        except Exception:
            pass


@dataclass
class WSManager:
    _lock: RLock = field(default_factory=RLock, init=False, repr=False)
    connections: Dict[str, WebSocketConnection] = field(default_factory=dict)

    async def connect(self, ws: WebSocket) -> WebSocketConnection:
        """Accept the socket, start its writer and register it."""
        await ws.accept()
        connection = WebSocketConnection(ws)
        connection.start()
        with self._lock:
            self.connections[connection.connection_id] = connection
        return connection

    async def disconnect(self, connection: WebSocketConnection) -> None:
        """Flush, close and forget one connection."""
        with self._lock:
            self.connections.pop(connection.connection_id, None)
        await connection.close()

    def stats(self) -> dict:
        with self._lock:
            return {"connections_total": len(self.connections)}

    async def close_all(self) -> dict:
        with self._lock:
            conns = list(self.connections.values())
        for connection in conns:
            await self.disconnect(connection)
        return self.stats()

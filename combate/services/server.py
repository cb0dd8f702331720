"""
Service: server.py
Role:
- Builds the object graph once (store, rate limiter, placement engine,
  matchmaker, lifecycle manager, dispatcher, socket registry) and exposes the
  three transport events: connection opened, frame received, connection closed.
- Admin hooks: stats, reset, shutdown.

The routes only talk to `GameServer`; tests can build one with a fake
scheduler and drive it with fake connections.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Union

from combate.config.settings import settings
from combate.models.messages import server_message
from combate.services.dispatcher import MessageDispatcher
from combate.services.game_store import GameStore
from combate.services.lifecycle import ConnectionLifecycleManager
from combate.services.matchmaker import Matchmaker
from combate.services.placement_engine import PlacementEngine
from combate.services.rate_limiter import RateLimiter
from combate.services.scheduler import LoopScheduler, Scheduler
from combate.services.ws_manager import Connection, WSManager

logger = logging.getLogger(__name__)


@dataclass
class GameServer:
    scheduler: Scheduler = field(default_factory=LoopScheduler)
    instant_setup: bool = field(default_factory=lambda: settings.INSTANT_SETUP)
    store: GameStore = field(default_factory=GameStore)
    rate_limiter: RateLimiter = field(default_factory=RateLimiter)
    sockets: WSManager = field(default_factory=WSManager)

    def __post_init__(self) -> None:
        self.placement = PlacementEngine(rate_limiter=self.rate_limiter)
        self.matchmaker = Matchmaker(self.store, self.placement, instant_setup=self.instant_setup)
        self.lifecycle = ConnectionLifecycleManager(self.store, self.matchmaker, scheduler=self.scheduler)
        self.dispatcher = MessageDispatcher(self.store, self.matchmaker, self.placement)

    # -----------------------------
    # Transport events
    # -----------------------------
    def on_connect(self, connection: Connection, claimed_player_id: Optional[str] = None) -> str:
        """Resume `claimed_player_id` when possible, otherwise register a fresh player."""
        if claimed_player_id:
            if self.lifecycle.reconnect(claimed_player_id, connection):
                return claimed_player_id
            connection.send(server_message("Reconnection failed. Starting a new game..."))
        player_id = self.matchmaker.connect(connection)
        logger.info(
            "Player connected",
            extra={"player_id": player_id, "connection_id": getattr(connection, "connection_id", None)},
        )
        return player_id

    def on_message(self, player_id: str, connection: Connection, raw: Union[str, bytes]) -> None:
        self.dispatcher.handle_raw(player_id, connection, raw)

    def on_close(self, player_id: str, connection: Connection) -> None:
        self.lifecycle.handle_close(player_id, connection)

    # -----------------------------
    # Admin
    # -----------------------------
    def stats(self) -> dict:
        return {
            "store": self.store.stats(),
            "lifecycle": self.lifecycle.stats(),
            "rate_limits": self.rate_limiter.stats(),
            "sockets": self.sockets.stats(),
            "placement_log": self.placement.audit.recent(20),
        }

    def reset(self) -> dict:
        """Forget every match and waiting player; open sockets stay connected."""
        sessions = len(self.store.sessions)
        for session in list(self.store.sessions.values()):
            for slot in session.slots:
                slot.send(server_message("The server was reset. Reconnect to start a new game.", session.id))
        if self.store.pending is not None:
            self.store.pending.send(server_message("The server was reset. Reconnect to start a new game."))
        self.store.close()
        self.rate_limiter.clear()
        self.placement.audit.clear()
        logger.warning("Server state reset", extra={"sessions_dropped": sessions})
        return {"ok": True, "sessions_dropped": sessions}

    async def shutdown(self) -> None:
        self.store.close()
        self.rate_limiter.clear()
        await self.sockets.close_all()
        logger.info("Game server stopped")

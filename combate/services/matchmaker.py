"""
Service: matchmaker.py
Role:
- Pair anonymous connections two by two. The store holds at most one pending
  player; the next arrival pairs with it (first = team A, second = team B).
- A new pair enters the PLACEMENT phase right away (or ACTIVE with random
  armies when INSTANT_SETUP is on).
- Player names (SET_NAME) for pending and paired players.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional
from uuid import uuid4

from combate.config.settings import settings
from combate.models.board import Player, Team
from combate.models.messages import Outbound, outbound, server_message
from combate.services.game_session import GameSession, PlayerSlot, SessionPhase, placement_status_message
from combate.services.game_store import GameStore
from combate.services.placement_engine import PlacementEngine
from combate.services.ws_manager import Connection

logger = logging.getLogger(__name__)

WAITING_NAME = "Waiting for name..."


@dataclass
class Matchmaker:
    store: GameStore
    placement: PlacementEngine
    instant_setup: bool = field(default_factory=lambda: settings.INSTANT_SETUP)

    def connect(self, connection: Connection) -> str:
        """Register a fresh arrival and return the player id it was given."""
        pid = uuid4().hex
        connection.send(outbound(Outbound.CONNECTED, {"playerId": pid}))
        self.enqueue(PlayerSlot(player=Player(id=pid, display_name=WAITING_NAME, team=Team.A), connection=connection))
        return pid

    def enqueue(self, slot: PlayerSlot) -> Optional[GameSession]:
        """Park `slot` as the pending player, or pair it with the one waiting."""
        first = self.store.pair_or_park(
            PlayerSlot(player=slot.player.model_copy(update={"team": Team.A}), connection=slot.connection)
        )
        if first is None:
            logger.info("Player waiting for an opponent", extra={"player_id": slot.player.id})
            slot.send(server_message("Waiting for another player..."))
            return None

        second = PlayerSlot(player=slot.player.model_copy(update={"team": Team.B}), connection=slot.connection)
        return self._create_session(first, second)

    def pending_closed(self, player_id: str) -> bool:
        """Clear the pending slot if it belongs to `player_id`."""
        if not self.store.clear_pending(player_id):
            return False
        logger.info("Pending player left before pairing", extra={"player_id": player_id})
        return True

    def rename(self, player_id: str, name: str) -> Optional[GameSession]:
        """Update a player's display name; returns the session when paired."""
        pending = self.store.pending
        if pending is not None and pending.player.id == player_id:
            pending.player = pending.player.model_copy(update={"display_name": name})
            return None
        session = self.store.find_session_by_player(player_id)
        if session is not None:
            session.rename(player_id, name)
        else:
            logger.info("Name set for unknown player", extra={"player_id": player_id})
        return session

    # -----------------------------
    # Session creation
    # -----------------------------
    def _create_session(self, first: PlayerSlot, second: PlayerSlot) -> GameSession:
        match_id = uuid4().hex
        session = GameSession(id=match_id, slots=[first, second])
        self.store.add_session(session)
        logger.info(
            "Players paired",
            extra={"match_id": match_id, "player_a": first.player.id, "player_b": second.player.id},
        )

        for slot in session.slots:
            opponent = session.opponent_slot(slot.player.id)
            slot.send(server_message(f"Opponent found: {opponent.player.display_name}", match_id))

        if self.instant_setup:
            self._instant_start(session)
            return session

        for slot in session.slots:
            state = self.placement.create_initial(match_id, slot.player.id, slot.player.team)
            session.placement_states[slot.player.id] = state
            slot.send(placement_status_message(state))
        return session

    def _instant_start(self, session: GameSession) -> None:
        first, second = (
            self.placement.auto_arrange(self.placement.create_initial(session.id, slot.player.id, slot.player.team))
            for slot in session.slots
        )
        session.start(PlacementEngine.promote(first, second, session.players))
        session.broadcast_state(Outbound.GAME_START)

    def start_from_placement(self, session: GameSession) -> bool:
        """Promote both Ready placements into the GameState and announce GAME_START."""
        if session.phase is not SessionPhase.PLACEMENT:
            return False
        states = [session.placement_states.get(slot.player.id) for slot in session.slots]
        if any(state is None for state in states) or not PlacementEngine.both_ready(states[0], states[1]):
            return False
        session.start(PlacementEngine.promote(states[0], states[1], session.players))
        for slot in session.slots:
            self.placement.rate_limiter.forget_player(slot.player.id)
        session.broadcast_state(Outbound.GAME_START)
        return True

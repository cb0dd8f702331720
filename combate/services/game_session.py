"""
Service: game_session.py
Role:
- One match: two player slots (player record + transport handle) and either
  the two placement states (PLACEMENT) or the authoritative GameState
  (ACTIVE / FINISHED).
- Sends per-player snapshots: opponents never see each other's unrevealed ranks.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from combate.models.board import GameState, Player, Position
from combate.models.messages import Outbound, outbound
from combate.models.placement import PlacementState
from combate.services import board_rules
from combate.services.board_rules import MoveError
from combate.services.ws_manager import Connection

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    PLACEMENT = "PLACEMENT"
    ACTIVE = "ACTIVE"
    FINISHED = "FINISHED"


@dataclass
class PlayerSlot:
    player: Player
    connection: Optional[Connection] = None
    connected: bool = True

    def send(self, message: Dict[str, Any]) -> bool:
        if not self.connected or self.connection is None:
            return False
        return self.connection.send(message)


def placement_status_message(state: PlacementState) -> Dict[str, Any]:
    """Full staging snapshot, for the owner only."""
    return outbound(
        Outbound.PLACEMENT_STATUS,
        {
            "playerId": state.player_id,
            "team": state.team.value,
            "status": state.local_status.value,
            "opponentStatus": state.opponent_status.value,
            "stagedPieces": [piece.to_wire() for piece in state.staged_pieces],
            "remainingInventory": dict(state.remaining_inventory),
            "homeRows": list(state.home_rows),
        },
        state.match_id,
    )


@dataclass
class GameSession:
    id: str
    slots: List[PlayerSlot]
    phase: SessionPhase = SessionPhase.PLACEMENT
    game_state: Optional[GameState] = None
    placement_states: Dict[str, PlacementState] = field(default_factory=dict)

    # -----------------------------
    # Players
    # -----------------------------
    @property
    def players(self) -> Tuple[Player, Player]:
        return (self.slots[0].player, self.slots[1].player)

    def has_player(self, player_id: str) -> bool:
        return any(slot.player.id == player_id for slot in self.slots)

    def slot(self, player_id: str) -> Optional[PlayerSlot]:
        for slot in self.slots:
            if slot.player.id == player_id:
                return slot
        return None

    def opponent_slot(self, player_id: str) -> Optional[PlayerSlot]:
        for slot in self.slots:
            if slot.player.id != player_id:
                return slot
        return None

    def rename(self, player_id: str, name: str) -> None:
        slot = self.slot(player_id)
        if slot is None:
            return
        slot.player = slot.player.model_copy(update={"display_name": name})
        if self.game_state is not None:
            self.game_state = self.game_state.model_copy(update={"players": self.players})

    # -----------------------------
    # Phases
    # -----------------------------
    def start(self, game_state: GameState) -> None:
        """PLACEMENT -> ACTIVE: the placement states are dropped."""
        self.game_state = game_state
        self.placement_states = {}
        self.phase = SessionPhase.ACTIVE
        logger.info("Match started", extra={"match_id": self.id, "pieces": len(game_state.pieces)})

    def apply_move(self, player_id: str, piece_id: str, target: Position) -> GameState:
        if self.phase is SessionPhase.PLACEMENT or self.game_state is None:
            raise MoveError("The game has not started yet.")
        new_state = board_rules.apply_move(self.game_state, piece_id, target, player_id)
        self.game_state = new_state
        if new_state.finished:
            self.phase = SessionPhase.FINISHED
        return new_state

    # -----------------------------
    # Sending
    # -----------------------------
    def send_to_opponent(self, player_id: str, message: Dict[str, Any]) -> bool:
        slot = self.opponent_slot(player_id)
        return slot.send(message) if slot else False

    def state_message(self, player_id: str, kind: Outbound = Outbound.STATE_UPDATE) -> Dict[str, Any]:
        return outbound(kind, board_rules.view_for(self.game_state, player_id), self.id)

    def broadcast_state(self, kind: Outbound = Outbound.STATE_UPDATE) -> int:
        """Send each player their own view of the current GameState."""
        sent = 0
        for slot in self.slots:
            if slot.send(self.state_message(slot.player.id, kind)):
                sent += 1
        return sent

    def snapshot_for(self, player_id: str) -> Optional[Dict[str, Any]]:
        """What a (re)connecting player needs to resume: staging or game state."""
        if self.phase is SessionPhase.PLACEMENT:
            state = self.placement_states.get(player_id)
            return placement_status_message(state) if state else None
        if self.game_state is None:
            return None
        return self.state_message(player_id)

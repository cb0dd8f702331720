"""
Service: dispatcher.py
Role:
- Boundary between the transport and the core: decode one inbound frame,
  validate it against the closed message union, route it, and send the
  resulting messages.

Error handling:
- malformed JSON / invalid payload of a known type -> logged, dropped;
- unknown `type` -> logged, answered with SERVER_MESSAGE;
- MoveError -> MOVE_ERROR, PlacementError -> PLACEMENT_ERROR (state unchanged);
- anything else -> logged with traceback, generic SERVER_MESSAGE, session
  state left as it was.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError

from combate.models.messages import (
    INBOUND_TYPES,
    MovePiece,
    Outbound,
    Ping,
    PlacementAuto,
    PlacementReady,
    PlacementRemove,
    PlacementUpdate,
    SetName,
    move_error,
    outbound,
    parse_inbound,
    server_message,
)
from combate.models.placement import PlacementState, PlacementStatus
from combate.services import wire
from combate.services.board_rules import MoveError
from combate.services.game_session import GameSession, SessionPhase, placement_status_message
from combate.services.game_store import GameStore
from combate.services.matchmaker import Matchmaker
from combate.services.placement_engine import PlacementEngine
from combate.services.placement_errors import PlacementError, PlacementErrorType, new_request_id
from combate.services.ws_manager import Connection

logger = logging.getLogger(__name__)


@dataclass
class MessageDispatcher:
    store: GameStore
    matchmaker: Matchmaker
    placement: PlacementEngine

    def handle_raw(self, player_id: str, connection: Connection, raw: Union[str, bytes]) -> None:
        """Entry point for one inbound frame. Never raises."""
        try:
            data = wire.decode(raw)
        except wire.JSONDecodeError:
            logger.warning("Dropping non-JSON frame", extra={"player_id": player_id})
            return

        kind = data.get("type") if isinstance(data, dict) else None
        if not isinstance(kind, str):
            logger.warning("Dropping frame without a type", extra={"player_id": player_id})
            return
        if kind not in INBOUND_TYPES:
            logger.warning("Unknown message type", extra={"player_id": player_id, "message_type": kind})
            connection.send(server_message(f"Unknown message type: {kind}"))
            return

        try:
            message = parse_inbound(data)
        except ValidationError as exc:
            logger.warning(
                "Dropping malformed payload",
                extra={"player_id": player_id, "message_type": kind, "errors": exc.errors(include_url=False)},
            )
            return

        try:
            self.dispatch(player_id, connection, message)
        except Exception:
            logger.exception("Internal error while handling message", extra={"player_id": player_id, "message_type": kind})
            connection.send(server_message("Internal server error."))

    def dispatch(self, player_id: str, connection: Connection, message: Any) -> None:
        handlers: Dict[type, Callable[[str, Connection, Any], None]] = {
            SetName: self._on_set_name,
            MovePiece: self._on_move,
            PlacementUpdate: self._on_placement_update,
            PlacementRemove: self._on_placement_remove,
            PlacementReady: self._on_placement_ready,
            PlacementAuto: self._on_placement_auto,
            Ping: self._on_ping,
        }
        handlers[type(message)](player_id, connection, message)

    # -----------------------------
    # Lobby / game
    # -----------------------------
    def _on_ping(self, player_id: str, connection: Connection, message: Ping) -> None:
        connection.send(outbound(Outbound.PONG, {}))

    def _on_set_name(self, player_id: str, connection: Connection, message: SetName) -> None:
        name = message.payload.name.strip()
        if not name:
            return
        session = self.matchmaker.rename(player_id, name)
        logger.info("Player renamed", extra={"player_id": player_id, "display_name": name})
        if session is not None and session.game_state is not None:
            session.broadcast_state()

    def _on_move(self, player_id: str, connection: Connection, message: MovePiece) -> None:
        session = self.store.find_session_by_player(player_id)
        if session is None:
            connection.send(move_error("You are not in a match."))
            return
        payload = message.payload
        try:
            session.apply_move(player_id, payload.piece_id, payload.target)
        except MoveError as exc:
            logger.info("Move rejected", extra={"match_id": session.id, "player_id": player_id, "reason": str(exc)})
            connection.send(move_error(str(exc), session.id))
            return
        session.broadcast_state()

    # -----------------------------
    # Placement
    # -----------------------------
    def _placement_state(self, session: Optional[GameSession], player_id: str, message: Any) -> PlacementState:
        if session is None:
            raise PlacementError(
                PlacementErrorType.GAME_NOT_FOUND,
                f"Game session not found for player {player_id}",
                "Game session not found.",
            )
        if message.match_id and message.match_id != session.id:
            raise PlacementError(
                PlacementErrorType.UNAUTHORIZED_OPERATION,
                f"Player {player_id} is not part of match {message.match_id}",
                "You are not part of that match.",
                {"matchId": message.match_id},
            )
        if session.phase is not SessionPhase.PLACEMENT:
            raise PlacementError(
                PlacementErrorType.WRONG_GAME_PHASE,
                f"Match {session.id} is in phase {session.phase.value}",
                "The placement phase is over.",
                {"matchId": session.id},
            )
        state = session.placement_states.get(player_id)
        if state is None:
            raise PlacementError(
                PlacementErrorType.PLAYER_NOT_FOUND,
                "Player placement state not found",
                "Player placement state not found.",
                {"matchId": session.id},
            )
        return state

    def _run_placement(
        self,
        player_id: str,
        connection: Connection,
        message: Any,
        operation: Callable[[PlacementState, str], PlacementState],
    ) -> None:
        request_id = new_request_id()
        session = self.store.find_session_by_player(player_id)
        try:
            state = self._placement_state(session, player_id, message)
            new_state = operation(state, request_id)
        except PlacementError as exc:
            exc.request_id = request_id
            match_id = session.id if session is not None else None
            connection.send(outbound(Outbound.PLACEMENT_ERROR, exc.to_payload(), match_id))
            return

        session.placement_states[player_id] = new_state
        connection.send(placement_status_message(new_state))
        session.send_to_opponent(
            player_id,
            outbound(Outbound.PLACEMENT_STATUS, {"status": new_state.local_status.value, "opponent": True}, session.id),
        )

        if new_state.local_status is PlacementStatus.READY and state.local_status is not PlacementStatus.READY:
            self._mark_opponent_ready(session, player_id)
            if self.matchmaker.start_from_placement(session):
                logger.info("Placement complete", extra={"match_id": session.id})

    def _mark_opponent_ready(self, session: GameSession, player_id: str) -> None:
        opponent = session.opponent_slot(player_id)
        if opponent is None:
            return
        their_state = session.placement_states.get(opponent.player.id)
        if their_state is not None:
            session.placement_states[opponent.player.id] = PlacementEngine.set_opponent_status(
                their_state, PlacementStatus.READY
            )

    def _on_placement_update(self, player_id: str, connection: Connection, message: PlacementUpdate) -> None:
        payload = message.payload

        def operation(state: PlacementState, request_id: str) -> PlacementState:
            if payload.piece_id:
                return self.placement.move(state, payload.piece_id, payload.position, request_id)
            if payload.rank:
                return self.placement.place(state, payload.rank, payload.position, request_id)
            raise PlacementError(
                PlacementErrorType.PIECE_NOT_AVAILABLE,
                "Missing piece type or piece ID",
                "No piece type or piece id given.",
            )

        self._run_placement(player_id, connection, message, operation)

    def _on_placement_remove(self, player_id: str, connection: Connection, message: PlacementRemove) -> None:
        self._run_placement(
            player_id,
            connection,
            message,
            lambda state, request_id: self.placement.remove(state, message.payload.piece_id, request_id),
        )

    def _on_placement_auto(self, player_id: str, connection: Connection, message: PlacementAuto) -> None:
        self._run_placement(
            player_id,
            connection,
            message,
            lambda state, request_id: self.placement.auto_arrange(state, message.payload.seed, request_id),
        )

    def _on_placement_ready(self, player_id: str, connection: Connection, message: PlacementReady) -> None:
        pieces = message.payload.all_pieces

        def operation(state: PlacementState, request_id: str) -> PlacementState:
            if pieces and state.local_status is PlacementStatus.PLACING:
                state = self.placement.load_layout(state, pieces, request_id)
            return self.placement.confirm(state, request_id)

        self._run_placement(player_id, connection, message, operation)

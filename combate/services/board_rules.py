"""
Service: board_rules.py
Role:
- Pure move / combat / victory logic. No state of its own: every function
  takes a snapshot and returns a new one (or raises).

Public functions:
- validate_move(piece, target, pieces) -> error message | None
- resolve_combat(attacker, defender) -> CombatOutcome
- apply_move(state, piece_id, target, requester_id) -> GameState (raises MoveError)
- check_victory(state, mover_id) -> GameState
- view_for(state, player_id) -> dict (opponent's hidden ranks masked)
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, Iterator, List, Optional

from combate.models.board import (
    DEMINER_RANK,
    FLAG_RANK,
    IMMOBILE_RANKS,
    MULTI_MOVE_RANK,
    RANKS,
    SPY_RANK,
    TOP_RANK,
    TRAP_RANK,
    GameState,
    Piece,
    Position,
)

logger = logging.getLogger(__name__)


class MoveError(ValueError):
    """A move request was rejected. The state it was checked against is unchanged."""


class CombatOutcome(str, Enum):
    ATTACKER_WINS = "ATTACKER_WINS"
    DEFENDER_WINS = "DEFENDER_WINS"
    TIE = "TIE"


def _piece_at(pieces: Iterable[Piece], position: Position) -> Optional[Piece]:
    for piece in pieces:
        if piece.position.key == position.key:
            return piece
    return None


def _cells_between(origin: Position, target: Position) -> Iterator[Position]:
    """Cells strictly between two positions on the same row or column."""
    if origin.row == target.row:
        step = 1 if target.col > origin.col else -1
        for col in range(origin.col + step, target.col, step):
            yield Position(row=origin.row, col=col)
    else:
        step = 1 if target.row > origin.row else -1
        for row in range(origin.row + step, target.row, step):
            yield Position(row=row, col=origin.col)


def _check_clear_path(origin: Position, target: Position, pieces: Iterable[Piece]) -> Optional[str]:
    occupied = {piece.position.key for piece in pieces}
    for cell in _cells_between(origin, target):
        if cell.key in occupied or cell.is_lake():
            return "The scout's path is blocked."
    return None


def validate_move(piece: Piece, target: Position, pieces: Iterable[Piece]) -> Optional[str]:
    """Return why `piece` may not move to `target`, or None when the move is legal."""
    pieces = list(pieces)
    origin = piece.position

    if piece.rank in IMMOBILE_RANKS:
        return "This piece cannot move."
    if not target.in_bounds():
        return "Target is outside the board."
    if origin.key == target.key:
        return "Invalid move."
    if origin.row != target.row and origin.col != target.col:
        return "Diagonal moves are not allowed."
    if target.is_lake():
        return "Cannot move into a lake."

    occupant = _piece_at(pieces, target)
    if occupant is not None and occupant.team == piece.team:
        return "Cannot move onto a friendly piece."

    distance = abs(origin.row - target.row) + abs(origin.col - target.col)
    if distance > 1:
        if piece.rank != MULTI_MOVE_RANK:
            return "This piece can only move one cell at a time."
        return _check_clear_path(origin, target, pieces)
    return None


def resolve_combat(attacker: Piece, defender: Piece) -> CombatOutcome:
    # The spy only beats the top rank when it strikes first
    if attacker.rank == SPY_RANK and defender.rank == TOP_RANK:
        return CombatOutcome.ATTACKER_WINS

    if defender.rank == TRAP_RANK:
        if attacker.rank == DEMINER_RANK:
            return CombatOutcome.ATTACKER_WINS
        return CombatOutcome.DEFENDER_WINS

    attack = RANKS[attacker.rank].strength
    defence = RANKS[defender.rank].strength
    if attack > defence:
        return CombatOutcome.ATTACKER_WINS
    if defence > attack:
        return CombatOutcome.DEFENDER_WINS
    return CombatOutcome.TIE


def _fight(pieces: List[Piece], attacker: Piece, defender: Piece, target: Position) -> List[Piece]:
    outcome = resolve_combat(attacker, defender)
    logger.info(
        "Combat resolved",
        extra={"attacker": attacker.rank, "defender": defender.rank, "outcome": outcome.value},
    )
    survivors = [p for p in pieces if p.id not in (attacker.id, defender.id)]
    if outcome is CombatOutcome.ATTACKER_WINS:
        survivors.append(attacker.model_copy(update={"position": target, "revealed": True}))
    elif outcome is CombatOutcome.DEFENDER_WINS:
        survivors.append(defender.model_copy(update={"revealed": True}))
    return survivors


def apply_move(state: GameState, piece_id: str, target: Position, requester_id: str) -> GameState:
    """
    Validate and apply one move, returning the next snapshot.

    Raises MoveError (state untouched) when the piece is unknown, belongs to the
    other team, it is not the requester's turn, the match is over, or the move
    itself is illegal.
    """
    if state.finished:
        raise MoveError("The game is over.")

    piece = state.piece_by_id(piece_id)
    if piece is None:
        raise MoveError("Piece not found.")

    mover = state.player(requester_id)
    if mover is None or mover.team != piece.team:
        raise MoveError("Piece does not belong to player.")

    if state.turn_player_id != requester_id:
        raise MoveError("It is not your turn.")

    error = validate_move(piece, target, state.pieces)
    if error:
        raise MoveError(error)

    pieces = list(state.pieces)
    defender = _piece_at(pieces, target)
    if defender is not None:
        pieces = _fight(pieces, piece, defender, target)
    else:
        pieces = [p.model_copy(update={"position": target}) if p.id == piece.id else p for p in pieces]

    opponent = state.opponent_of(requester_id)
    next_state = state.model_copy(update={"pieces": tuple(pieces), "turn_player_id": opponent.id})
    return check_victory(next_state, requester_id)


def check_victory(state: GameState, mover_id: str) -> GameState:
    """Mark the mover as winner if the opponent lost its flag or every mobile piece."""
    mover = state.player(mover_id)
    opponent_team = mover.team.other
    opponent_pieces = [p for p in state.pieces if p.team == opponent_team]

    has_flag = any(p.rank == FLAG_RANK for p in opponent_pieces)
    has_mobile = any(p.rank not in IMMOBILE_RANKS for p in opponent_pieces)
    if has_flag and has_mobile:
        return state

    logger.info(
        "Victory",
        extra={"match_id": state.match_id, "winner_id": mover_id, "flag_captured": not has_flag},
    )
    return state.model_copy(update={"finished": True, "winner_id": mover_id})


def view_for(state: GameState, player_id: str) -> dict:
    """
    Wire snapshot for one player: unrevealed opponent ranks are sent as null.

    Pieces are listed by board position, so the list order says nothing about
    ranks or about the order in which an army was set up.
    """
    viewer = state.player(player_id)
    data = state.to_wire()
    data["pieces"].sort(key=lambda piece: (piece["position"]["row"], piece["position"]["col"]))
    if viewer is None:
        return data
    for piece in data["pieces"]:
        if piece["team"] != viewer.team.value and not piece["revealed"]:
            piece["rank"] = None
    return data

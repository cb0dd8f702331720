"""
Service: placement_engine.py
Role:
- Per-player staging of an army before the match starts (place, move/swap,
  remove, bulk layout, random arrangement, confirmation).
- Promotion of two Ready placements into the authoritative GameState.

Every operation returns a NEW PlacementState or raises PlacementError; the
state passed in is never modified. Mutating operations go through the
RateLimiter first, then validation, and are recorded in the audit log.

Rate classes:
- place / remove / auto-arrange -> PIECE_PLACEMENT
- move / swap                   -> PIECE_MOVEMENT
- confirm                       -> PLACEMENT_CONFIRMATION
"""
from __future__ import annotations

import logging
import random
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from combate.models.board import (
    ARMY_SIZE,
    BOARD_SIZE,
    RANKS,
    REQUIRED_COMPOSITION,
    GameState,
    Piece,
    Player,
    Position,
    Team,
    home_rows_for,
)
from combate.models.placement import PlacementState, PlacementStatus
from combate.services.placement_errors import (
    PlacementAuditLog,
    PlacementError,
    PlacementErrorType,
    new_request_id,
)
from combate.services.rate_limiter import (
    PIECE_MOVEMENT,
    PIECE_PLACEMENT,
    PLACEMENT_CONFIRMATION,
    RateLimiter,
)


def _new_piece_id() -> str:
    return uuid4().hex


def _rank_name(rank: str) -> str:
    info = RANKS.get(rank)
    return info.display_name if info else rank


@dataclass
class PlacementEngine:
    rate_limiter: RateLimiter = field(default_factory=RateLimiter)
    audit: PlacementAuditLog = field(default_factory=PlacementAuditLog)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def create_initial(self, match_id: str, player_id: str, team: Team) -> PlacementState:
        return PlacementState(
            match_id=match_id,
            player_id=player_id,
            team=team,
            remaining_inventory=dict(REQUIRED_COMPOSITION),
            staged_pieces=(),
            home_rows=home_rows_for(team),
        )

    # ------------------------------------------------------------------
    # Guard: ready lock + rate limit + audit
    # ------------------------------------------------------------------
    def _guarded(
        self,
        state: PlacementState,
        operation: str,
        rate_class: Optional[str],
        action: Callable[[], PlacementState],
        request_id: Optional[str] = None,
        editable: bool = True,
    ) -> PlacementState:
        started = time.perf_counter()
        context: Dict[str, Any] = {
            "matchId": state.match_id,
            "playerId": state.player_id,
            "operation": operation,
            "requestId": request_id or new_request_id(),
        }
        try:
            if editable and state.local_status is PlacementStatus.READY:
                raise PlacementError(
                    PlacementErrorType.WRONG_GAME_PHASE,
                    f"{operation} refused: placement already confirmed",
                    "Your army is already confirmed.",
                )
            if rate_class is not None:
                self._check_rate(state.player_id, rate_class)
            result = action()
        except PlacementError as exc:
            exc.request_id = context["requestId"]
            exc.context.setdefault("matchId", state.match_id)
            self.audit.record(logging.WARNING, exc.message, context, error=exc, started_at=started)
            raise
        self.audit.record(logging.INFO, f"{operation} accepted", context, started_at=started)
        return result

    def _check_rate(self, player_id: str, rate_class: str) -> None:
        decision = self.rate_limiter.check(player_id, rate_class)
        if decision.allowed:
            return
        seconds = -(-decision.retry_after_ms // 1000)
        raise PlacementError(
            PlacementErrorType.RATE_LIMIT_EXCEEDED,
            f"Rate limit exceeded for {rate_class}",
            f"Too many requests. Wait {seconds} seconds.",
            {"operation": rate_class, "limit": decision.limit, "retryAfterMs": decision.retry_after_ms},
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def _validate_cell(self, state: PlacementState, position: Position) -> None:
        if not position.in_bounds():
            raise PlacementError(
                PlacementErrorType.POSITION_OUT_OF_BOUNDS,
                f"Position out of bounds: ({position.row}, {position.col})",
                "Position is outside the board.",
                {"position": position.to_wire(), "bounds": {"min": 0, "max": BOARD_SIZE - 1}},
            )
        if position.row not in state.home_rows:
            raise PlacementError(
                PlacementErrorType.INVALID_POSITION,
                f"Position outside player area: row {position.row}",
                "Position is outside your placement area.",
                {"position": position.to_wire(), "homeRows": list(state.home_rows)},
            )
        if position.is_lake():
            raise PlacementError(
                PlacementErrorType.INVALID_POSITION,
                "Cannot place pieces on lake positions",
                "Pieces cannot be placed on a lake.",
                {"position": position.to_wire()},
            )

    def validate_placement(self, state: PlacementState, rank: str, position: Position) -> None:
        """Raise PlacementError unless `rank` can be staged at `position`."""
        if rank not in RANKS:
            raise PlacementError(
                PlacementErrorType.INVALID_PIECE_TYPE,
                f"Invalid piece type: {rank}",
                f"Unknown piece type: {rank}",
                {"rank": rank, "availableTypes": list(RANKS)},
            )
        if state.remaining_inventory.get(rank, 0) <= 0:
            raise PlacementError(
                PlacementErrorType.PIECE_NOT_AVAILABLE,
                f"Piece not available in inventory: {rank}",
                f"No {_rank_name(rank)} left to place.",
                {"rank": rank, "availableCount": 0},
            )
        self._validate_cell(state, position)
        occupant = state.staged_at(position)
        if occupant is not None:
            raise PlacementError(
                PlacementErrorType.POSITION_OCCUPIED,
                f"Position already occupied by piece {occupant.id}",
                "That cell is already occupied.",
                {"position": position.to_wire(), "existingPiece": {"id": occupant.id, "rank": occupant.rank}},
            )

    def validate_completion(self, state: PlacementState) -> None:
        remaining = state.remaining_total()
        if remaining > 0:
            missing = [
                {"rank": rank, "name": _rank_name(rank), "count": count}
                for rank, count in state.remaining_inventory.items()
                if count > 0
            ]
            raise PlacementError(
                PlacementErrorType.INCOMPLETE_PLACEMENT,
                f"{remaining} pieces still need to be placed",
                f"{remaining} pieces still need to be placed.",
                {"remainingPieces": remaining, "missingPieces": missing},
            )

        staged = len(state.staged_pieces)
        if staged != ARMY_SIZE:
            raise PlacementError(
                PlacementErrorType.INVALID_PIECE_COMPOSITION,
                f"Incorrect number of pieces: {staged}/{ARMY_SIZE}",
                f"Incorrect number of pieces: {staged}/{ARMY_SIZE}.",
                {"actualCount": staged, "expectedCount": ARMY_SIZE},
            )

        actual = Counter(piece.rank for piece in state.staged_pieces)
        mismatches = [
            f"{_rank_name(rank)}: expected {required}, got {actual.get(rank, 0)}"
            for rank, required in REQUIRED_COMPOSITION.items()
            if actual.get(rank, 0) != required
        ]
        mismatches.extend(
            f"{rank}: expected 0, got {count}" for rank, count in actual.items() if rank not in REQUIRED_COMPOSITION
        )
        if mismatches:
            raise PlacementError(
                PlacementErrorType.INVALID_PIECE_COMPOSITION,
                f"Invalid piece composition: {', '.join(mismatches)}",
                f"Incorrect army composition: {', '.join(mismatches)}",
                {
                    "compositionErrors": mismatches,
                    "actualComposition": dict(actual),
                    "expectedComposition": dict(REQUIRED_COMPOSITION),
                },
            )

        outside = [piece for piece in state.staged_pieces if piece.position.row not in state.home_rows]
        if outside:
            raise PlacementError(
                PlacementErrorType.INVALID_POSITION,
                f"{len(outside)} pieces are outside player area",
                f"{len(outside)} pieces are outside your placement area.",
                {
                    "invalidPieces": [{"id": p.id, "position": p.position.to_wire()} for p in outside],
                    "homeRows": list(state.home_rows),
                },
            )

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------
    def place(
        self, state: PlacementState, rank: str, position: Position, request_id: Optional[str] = None
    ) -> PlacementState:
        def action() -> PlacementState:
            self.validate_placement(state, rank, position)
            inventory = dict(state.remaining_inventory)
            inventory[rank] -= 1
            piece = Piece(id=_new_piece_id(), rank=rank, team=state.team, position=position, revealed=False)
            return state.model_copy(
                update={"remaining_inventory": inventory, "staged_pieces": state.staged_pieces + (piece,)}
            )

        return self._guarded(state, "place", PIECE_PLACEMENT, action, request_id)

    def move(
        self, state: PlacementState, piece_id: str, new_position: Position, request_id: Optional[str] = None
    ) -> PlacementState:
        """Relocate a staged piece; if the target holds another staged piece the two swap."""

        def action() -> PlacementState:
            piece = state.staged_by_id(piece_id)
            if piece is None:
                raise PlacementError(
                    PlacementErrorType.PIECE_NOT_AVAILABLE,
                    f"Staged piece not found: {piece_id}",
                    "That piece is not on the board.",
                    {"pieceId": piece_id},
                )
            self._validate_cell(state, new_position)
            other = state.staged_at(new_position)

            staged: List[Piece] = []
            for current in state.staged_pieces:
                if current.id == piece.id:
                    staged.append(current.model_copy(update={"position": new_position}))
                elif other is not None and current.id == other.id:
                    staged.append(current.model_copy(update={"position": piece.position}))
                else:
                    staged.append(current)
            return state.model_copy(update={"staged_pieces": tuple(staged)})

        return self._guarded(state, "move", PIECE_MOVEMENT, action, request_id)

    def remove(self, state: PlacementState, piece_id: str, request_id: Optional[str] = None) -> PlacementState:
        def action() -> PlacementState:
            piece = state.staged_by_id(piece_id)
            if piece is None:
                raise PlacementError(
                    PlacementErrorType.PIECE_NOT_AVAILABLE,
                    f"Staged piece not found: {piece_id}",
                    "That piece is not on the board.",
                    {"pieceId": piece_id},
                )
            inventory = dict(state.remaining_inventory)
            inventory[piece.rank] = inventory.get(piece.rank, 0) + 1
            staged = tuple(p for p in state.staged_pieces if p.id != piece_id)
            return state.model_copy(update={"remaining_inventory": inventory, "staged_pieces": staged})

        return self._guarded(state, "remove", PIECE_PLACEMENT, action, request_id)

    def load_layout(
        self, state: PlacementState, pieces: Iterable[Any], request_id: Optional[str] = None
    ) -> PlacementState:
        """
        Replace the staged pieces with a full client-side layout.

        Each item needs `rank` and `position`; ids are always issued by the server.
        Inventory is recomputed from the required composition so the
        conservation invariant still holds; too many pieces of one rank is
        refused right away.
        """

        def action() -> PlacementState:
            draft = state.model_copy(
                update={"remaining_inventory": dict(REQUIRED_COMPOSITION), "staged_pieces": ()}
            )
            staged: List[Piece] = []
            for item in pieces:
                self.validate_placement(draft, item.rank, item.position)
                inventory = dict(draft.remaining_inventory)
                inventory[item.rank] -= 1
                piece = Piece(
                    id=_new_piece_id(),
                    rank=item.rank,
                    team=state.team,
                    position=item.position,
                )
                staged.append(piece)
                draft = draft.model_copy(update={"remaining_inventory": inventory, "staged_pieces": tuple(staged)})
            return draft

        return self._guarded(state, "load_layout", None, action, request_id)

    def auto_arrange(
        self, state: PlacementState, seed: Optional[int] = None, request_id: Optional[str] = None
    ) -> PlacementState:
        """Put every remaining piece on a random free home cell."""

        def action() -> PlacementState:
            rng = random.Random(seed) if seed is not None else random
            free = [
                Position(row=row, col=col)
                for row in state.home_rows
                for col in range(BOARD_SIZE)
                if not Position(row=row, col=col).is_lake() and state.staged_at(Position(row=row, col=col)) is None
            ]
            rng.shuffle(free)

            staged = list(state.staged_pieces)
            cells = iter(free)
            for rank, count in state.remaining_inventory.items():
                for _ in range(count):
                    staged.append(Piece(id=_new_piece_id(), rank=rank, team=state.team, position=next(cells)))
            inventory = {rank: 0 for rank in state.remaining_inventory}
            return state.model_copy(update={"remaining_inventory": inventory, "staged_pieces": tuple(staged)})

        return self._guarded(state, "auto_arrange", PIECE_PLACEMENT, action, request_id)

    # ------------------------------------------------------------------
    # Confirmation / promotion
    # ------------------------------------------------------------------
    def confirm(self, state: PlacementState, request_id: Optional[str] = None) -> PlacementState:
        if state.local_status is PlacementStatus.READY:
            return state

        def action() -> PlacementState:
            self.validate_completion(state)
            return state.model_copy(update={"local_status": PlacementStatus.READY})

        return self._guarded(state, "confirm", PLACEMENT_CONFIRMATION, action, request_id, editable=False)

    @staticmethod
    def set_opponent_status(state: PlacementState, status: PlacementStatus) -> PlacementState:
        return state.model_copy(update={"opponent_status": status})

    @staticmethod
    def both_ready(first: PlacementState, second: PlacementState) -> bool:
        return first.local_status is PlacementStatus.READY and second.local_status is PlacementStatus.READY

    @staticmethod
    def promote(first: PlacementState, second: PlacementState, players: Sequence[Player]) -> GameState:
        """Merge two confirmed armies; the first-paired player moves first."""
        by_player = {first.player_id: first, second.player_id: second}
        pieces: List[Piece] = []
        for player in players:
            pieces.extend(by_player[player.id].staged_pieces)
        return GameState(
            match_id=first.match_id,
            players=(players[0], players[1]),
            pieces=tuple(pieces),
            turn_player_id=players[0].id,
            finished=False,
            winner_id=None,
        )

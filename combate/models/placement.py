"""
Models / placement.py
Role:
- Per-player staging area used before the match starts.

Fields:
- remaining_inventory: rank id -> pieces still to place.
- staged_pieces: pieces already put on the board (not yet authoritative).
- home_rows: the 4 rows the player may use.
- local_status / opponent_status: PLACING until the player confirms.

Invariant: sum(remaining_inventory) + len(staged_pieces) == ARMY_SIZE.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import ConfigDict

from combate.models.board import Piece, Position, Team, WireModel


class PlacementStatus(str, Enum):
    PLACING = "PLACING"
    READY = "READY"


class PlacementState(WireModel):
    model_config = ConfigDict(frozen=True)

    match_id: str
    player_id: str
    team: Team
    remaining_inventory: Dict[str, int]
    staged_pieces: Tuple[Piece, ...] = ()
    home_rows: Tuple[int, ...]
    local_status: PlacementStatus = PlacementStatus.PLACING
    opponent_status: PlacementStatus = PlacementStatus.PLACING

    def staged_at(self, position: Position) -> Optional[Piece]:
        for piece in self.staged_pieces:
            if piece.position.key == position.key:
                return piece
        return None

    def staged_by_id(self, piece_id: str) -> Optional[Piece]:
        for piece in self.staged_pieces:
            if piece.id == piece_id:
                return piece
        return None

    def remaining_total(self) -> int:
        return sum(self.remaining_inventory.values())

"""
Models / board.py
Role:
- Static rank catalog, board geometry (size, lakes, home rows) and the
  immutable snapshots exchanged with clients (Position, Piece, Player, GameState).

Notes:
- Python attributes are snake_case, wire keys are camelCase (alias generator).
- `Piece` and `GameState` are frozen: a move produces a new snapshot, never
  an in-place edit.
- The catalog below is the one canonical army: 12 ranks, 40 pieces.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Team(str, Enum):
    A = "A"
    B = "B"

    @property
    def other(self) -> "Team":
        return Team.B if self is Team.A else Team.A


class WireModel(BaseModel):
    """Base for every model sent over the wire (camelCase keys)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class Rank(WireModel):
    model_config = ConfigDict(frozen=True)

    id: str
    strength: int
    display_name: str


# Rank ids
FLAG = "flag"
SPY = "spy"
SCOUT = "scout"
MINER = "miner"
SERGEANT = "sergeant"
LIEUTENANT = "lieutenant"
CAPTAIN = "captain"
MAJOR = "major"
COLONEL = "colonel"
GENERAL = "general"
MARSHAL = "marshal"
BOMB = "bomb"

RANKS: Dict[str, Rank] = {
    FLAG: Rank(id=FLAG, strength=0, display_name="Flag"),
    SPY: Rank(id=SPY, strength=1, display_name="Spy"),
    SCOUT: Rank(id=SCOUT, strength=2, display_name="Scout"),
    MINER: Rank(id=MINER, strength=3, display_name="Miner"),
    SERGEANT: Rank(id=SERGEANT, strength=4, display_name="Sergeant"),
    LIEUTENANT: Rank(id=LIEUTENANT, strength=5, display_name="Lieutenant"),
    CAPTAIN: Rank(id=CAPTAIN, strength=6, display_name="Captain"),
    MAJOR: Rank(id=MAJOR, strength=7, display_name="Major"),
    COLONEL: Rank(id=COLONEL, strength=8, display_name="Colonel"),
    GENERAL: Rank(id=GENERAL, strength=9, display_name="General"),
    MARSHAL: Rank(id=MARSHAL, strength=10, display_name="Marshal"),
    BOMB: Rank(id=BOMB, strength=11, display_name="Bomb"),
}

# Special roles inside the catalog
FLAG_RANK = FLAG            # capturing it ends the match
TRAP_RANK = BOMB            # destroys every attacker except the de-miner
DEMINER_RANK = MINER
SPY_RANK = SPY              # beats the top rank when attacking
TOP_RANK = MARSHAL
MULTI_MOVE_RANK = SCOUT     # straight-line moves over empty cells
IMMOBILE_RANKS: FrozenSet[str] = frozenset({FLAG, BOMB})

# Army composition, per rank (sum = ARMY_SIZE)
REQUIRED_COMPOSITION: Dict[str, int] = {
    FLAG: 1,
    SPY: 1,
    SCOUT: 8,
    MINER: 5,
    SERGEANT: 4,
    LIEUTENANT: 4,
    CAPTAIN: 4,
    MAJOR: 3,
    COLONEL: 2,
    GENERAL: 1,
    MARSHAL: 1,
    BOMB: 6,
}
ARMY_SIZE = 40

BOARD_SIZE = 10
LAKES: FrozenSet[Tuple[int, int]] = frozenset(
    {(4, 2), (4, 3), (5, 2), (5, 3), (4, 6), (4, 7), (5, 6), (5, 7)}
)

# Team A is paired first and sits on the bottom edge
HOME_ROWS: Dict[Team, Tuple[int, ...]] = {
    Team.A: (6, 7, 8, 9),
    Team.B: (0, 1, 2, 3),
}


class Position(WireModel):
    model_config = ConfigDict(frozen=True)

    row: int
    col: int

    @property
    def key(self) -> Tuple[int, int]:
        return (self.row, self.col)

    def in_bounds(self) -> bool:
        return 0 <= self.row < BOARD_SIZE and 0 <= self.col < BOARD_SIZE

    def is_lake(self) -> bool:
        return self.key in LAKES


class Piece(WireModel):
    model_config = ConfigDict(frozen=True)

    id: str
    rank: str
    team: Team
    position: Position
    revealed: bool = False


class Player(WireModel):
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    team: Team


class GameState(WireModel):
    """Authoritative state of one match once both armies are locked in."""

    model_config = ConfigDict(frozen=True)

    match_id: str
    players: Tuple[Player, Player]
    pieces: Tuple[Piece, ...] = ()
    turn_player_id: str
    finished: bool = False
    winner_id: Optional[str] = None

    def piece_by_id(self, piece_id: str) -> Optional[Piece]:
        for piece in self.pieces:
            if piece.id == piece_id:
                return piece
        return None

    def piece_at(self, position: Position) -> Optional[Piece]:
        for piece in self.pieces:
            if piece.position.key == position.key:
                return piece
        return None

    def player(self, player_id: str) -> Optional[Player]:
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def opponent_of(self, player_id: str) -> Optional[Player]:
        for player in self.players:
            if player.id != player_id:
                return player
        return None


def home_rows_for(team: Team) -> Tuple[int, ...]:
    return HOME_ROWS[team]

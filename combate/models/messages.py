"""
Models / messages.py
Role:
- Closed tagged union of inbound messages: `{type, matchId?, playerId?, payload}`.
  Each tag has its own validated payload; `parse_inbound` refuses anything else.
- Outbound message kinds and the envelope builder used by every sender.

Notes:
- `INBOUND_TYPES` lets the dispatcher tell an unknown tag (answered explicitly)
  from a known tag with a malformed payload (logged and dropped).
"""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import Field, TypeAdapter

from combate.models.board import Position, WireModel


# ----------------------------------------------------------------------
# Inbound payloads
# ----------------------------------------------------------------------
class SetNamePayload(WireModel):
    name: str = Field(..., min_length=1, max_length=40)


class MovePiecePayload(WireModel):
    piece_id: str
    target: Position


class PlacementUpdatePayload(WireModel):
    rank: Optional[str] = None
    piece_id: Optional[str] = None
    position: Position


class PlacementRemovePayload(WireModel):
    piece_id: str


class StagedPieceIn(WireModel):
    rank: str
    position: Position


class PlacementReadyPayload(WireModel):
    all_pieces: Optional[List[StagedPieceIn]] = None


class PlacementAutoPayload(WireModel):
    seed: Optional[int] = None


class EmptyPayload(WireModel):
    pass


# ----------------------------------------------------------------------
# Inbound envelopes
# ----------------------------------------------------------------------
class _Inbound(WireModel):
    match_id: Optional[str] = None
    player_id: Optional[str] = None


class SetName(_Inbound):
    type: Literal["SET_NAME"]
    payload: SetNamePayload


class MovePiece(_Inbound):
    type: Literal["MOVE_PIECE"]
    payload: MovePiecePayload


class PlacementUpdate(_Inbound):
    type: Literal["PLACEMENT_UPDATE"]
    payload: PlacementUpdatePayload


class PlacementRemove(_Inbound):
    type: Literal["PLACEMENT_REMOVE"]
    payload: PlacementRemovePayload


class PlacementReady(_Inbound):
    type: Literal["PLACEMENT_READY"]
    payload: PlacementReadyPayload = Field(default_factory=PlacementReadyPayload)


class PlacementAuto(_Inbound):
    type: Literal["PLACEMENT_AUTO"]
    payload: PlacementAutoPayload = Field(default_factory=PlacementAutoPayload)


class Ping(_Inbound):
    type: Literal["PING"]
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


InboundMessage = Annotated[
    Union[SetName, MovePiece, PlacementUpdate, PlacementRemove, PlacementReady, PlacementAuto, Ping],
    Field(discriminator="type"),
]

INBOUND_TYPES = frozenset(
    {"SET_NAME", "MOVE_PIECE", "PLACEMENT_UPDATE", "PLACEMENT_REMOVE", "PLACEMENT_READY", "PLACEMENT_AUTO", "PING"}
)

_INBOUND_ADAPTER: TypeAdapter = TypeAdapter(InboundMessage)


def parse_inbound(data: Any) -> InboundMessage:
    """Validate a decoded frame (raises pydantic.ValidationError)."""
    return _INBOUND_ADAPTER.validate_python(data)


# ----------------------------------------------------------------------
# Outbound
# ----------------------------------------------------------------------
class Outbound(str, Enum):
    CONNECTED = "CONNECTED"
    SERVER_MESSAGE = "SERVER_MESSAGE"
    STATE_UPDATE = "STATE_UPDATE"
    MOVE_ERROR = "MOVE_ERROR"
    PLACEMENT_STATUS = "PLACEMENT_STATUS"
    PLACEMENT_ERROR = "PLACEMENT_ERROR"
    GAME_START = "GAME_START"
    PLACEMENT_OPPONENT_DISCONNECTED = "PLACEMENT_OPPONENT_DISCONNECTED"
    PLACEMENT_OPPONENT_RECONNECTED = "PLACEMENT_OPPONENT_RECONNECTED"
    PLACEMENT_OPPONENT_ABANDONED = "PLACEMENT_OPPONENT_ABANDONED"
    PONG = "PONG"


def outbound(kind: Outbound, payload: Dict[str, Any], match_id: Optional[str] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"type": kind.value, "payload": payload}
    if match_id:
        message["matchId"] = match_id
    return message


def server_message(text: str, match_id: Optional[str] = None) -> Dict[str, Any]:
    return outbound(Outbound.SERVER_MESSAGE, {"text": text}, match_id)


def move_error(message: str, match_id: Optional[str] = None) -> Dict[str, Any]:
    return outbound(Outbound.MOVE_ERROR, {"message": message}, match_id)

"""
Service: placement_errors.py
Role:
- Error taxonomy for placement operations (type + stable client code).
- `PlacementError`: the exception raised by the placement engine and sent
  back to the client as PLACEMENT_ERROR.
- `PlacementAuditLog`: bounded in-memory journal of placement operations,
  read by the admin stats endpoint.

Codes:
- P40xx validation, P41xx game state, P42xx authorization,
  P43xx rate limiting, P50xx server.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import RLock
from typing import Any, Dict, List, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)

MAX_AUDIT_ENTRIES = 1000


class PlacementErrorType(str, Enum):
    # Validation
    INVALID_POSITION = "INVALID_POSITION"
    PIECE_NOT_AVAILABLE = "PIECE_NOT_AVAILABLE"
    INCOMPLETE_PLACEMENT = "INCOMPLETE_PLACEMENT"
    INVALID_PIECE_COMPOSITION = "INVALID_PIECE_COMPOSITION"
    POSITION_OUT_OF_BOUNDS = "POSITION_OUT_OF_BOUNDS"
    POSITION_OCCUPIED = "POSITION_OCCUPIED"
    INVALID_PIECE_TYPE = "INVALID_PIECE_TYPE"
    # Game state
    INVALID_GAME_STATE = "INVALID_GAME_STATE"
    PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
    GAME_NOT_FOUND = "GAME_NOT_FOUND"
    WRONG_GAME_PHASE = "WRONG_GAME_PHASE"
    # Authorization
    UNAUTHORIZED_OPERATION = "UNAUTHORIZED_OPERATION"
    PLAYER_NOT_IN_GAME = "PLAYER_NOT_IN_GAME"
    # Rate limiting
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    # Server
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


ERROR_CODES: Dict[PlacementErrorType, str] = {
    PlacementErrorType.INVALID_POSITION: "P4001",
    PlacementErrorType.PIECE_NOT_AVAILABLE: "P4002",
    PlacementErrorType.INCOMPLETE_PLACEMENT: "P4003",
    PlacementErrorType.INVALID_PIECE_COMPOSITION: "P4004",
    PlacementErrorType.POSITION_OUT_OF_BOUNDS: "P4005",
    PlacementErrorType.POSITION_OCCUPIED: "P4006",
    PlacementErrorType.INVALID_PIECE_TYPE: "P4007",
    PlacementErrorType.INVALID_GAME_STATE: "P4101",
    PlacementErrorType.PLAYER_NOT_FOUND: "P4102",
    PlacementErrorType.GAME_NOT_FOUND: "P4103",
    PlacementErrorType.WRONG_GAME_PHASE: "P4104",
    PlacementErrorType.UNAUTHORIZED_OPERATION: "P4201",
    PlacementErrorType.PLAYER_NOT_IN_GAME: "P4202",
    PlacementErrorType.RATE_LIMIT_EXCEEDED: "P4301",
    PlacementErrorType.INTERNAL_SERVER_ERROR: "P5001",
}


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_request_id() -> str:
    return f"req_{uuid4().hex[:12]}"


class PlacementError(ValueError):
    """
    A placement operation was refused. The placement state is unchanged.

    `message` is meant for logs, `user_message` for the player.
    """

    def __init__(
        self,
        error_type: PlacementErrorType,
        message: str,
        user_message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.type = error_type
        self.code = ERROR_CODES[error_type]
        self.message = message
        self.user_message = user_message or message
        self.context: Dict[str, Any] = dict(context or {})
        self.timestamp = _iso_now()
        self.request_id = request_id or new_request_id()

    def to_payload(self) -> Dict[str, Any]:
        """Client-facing shape: the developer message stays server-side."""
        return {
            "type": self.type.value,
            "code": self.code,
            "userMessage": self.user_message,
            "context": {**self.context, "timestamp": self.timestamp, "requestId": self.request_id},
        }


@dataclass
class PlacementAuditLog:
    """Bounded journal (oldest entries dropped past MAX_AUDIT_ENTRIES)."""

    max_entries: int = MAX_AUDIT_ENTRIES
    _lock: RLock = field(default_factory=RLock, init=False, repr=False)
    entries: List[Dict[str, Any]] = field(default_factory=list)

    def _trim(self) -> None:
        overflow = len(self.entries) - self.max_entries
        if overflow > 0:
            del self.entries[:overflow]

    def record(
        self,
        level: int,
        message: str,
        context: Dict[str, Any],
        error: Optional[PlacementError] = None,
        started_at: Optional[float] = None,
    ) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "level": logging.getLevelName(level),
            "message": message,
            "context": context,
            "timestamp": _iso_now(),
        }
        if error is not None:
            entry["error"] = {"type": error.type.value, "code": error.code, "message": error.message}
        if started_at is not None:
            entry["durationMs"] = round((time.perf_counter() - started_at) * 1000.0, 3)
        with self._lock:
            self.entries.append(entry)
            self._trim()
        logger.log(level, message, extra={"placement_context": context})
        return entry

    def recent(self, count: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self.entries[-count:])

    def clear(self) -> None:
        with self._lock:
            self.entries.clear()

"""
Game store
==========

Process-scoped registry shared by the matchmaker, the lifecycle manager and
the dispatcher:
- the single pending (unpaired) player slot,
- the session table (match_id -> GameSession),
- disconnect records (player_id -> match_id + timestamp),
- abandonment timers keyed by (match_id, player_id).

Built once by the server and torn down with `close()`; dropping a session
always cancels every timer of that match.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from threading import RLock
from typing import Dict, List, Optional, Tuple

from combate.services.game_session import GameSession, PlayerSlot
from combate.services.scheduler import TimerHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DisconnectRecord:
    match_id: str
    timestamp: float


@dataclass
class GameStore:
    _lock: RLock = field(default_factory=RLock, init=False, repr=False)
    pending: Optional[PlayerSlot] = None
    sessions: Dict[str, GameSession] = field(default_factory=dict)
    disconnected: Dict[str, DisconnectRecord] = field(default_factory=dict)
    timers: Dict[Tuple[str, str], TimerHandle] = field(default_factory=dict)

    # -----------------------------
    # Pending slot
    # -----------------------------
    def pair_or_park(self, slot: PlayerSlot) -> Optional[PlayerSlot]:
        """Return the waiting player (slot emptied), or park `slot` and return None."""
        with self._lock:
            waiting = self.pending
            if waiting is None:
                self.pending = slot
                return None
            self.pending = None
            return waiting

    def clear_pending(self, player_id: str) -> bool:
        with self._lock:
            if self.pending is None or self.pending.player.id != player_id:
                return False
            self.pending = None
            return True

    # -----------------------------
    # Sessions
    # -----------------------------
    def add_session(self, session: GameSession) -> None:
        with self._lock:
            self.sessions[session.id] = session

    def get_session(self, match_id: str) -> Optional[GameSession]:
        with self._lock:
            return self.sessions.get(match_id)

    def find_session_by_player(self, player_id: str) -> Optional[GameSession]:
        with self._lock:
            for session in self.sessions.values():
                if session.has_player(player_id):
                    return session
        return None

    def drop_session(self, match_id: str) -> Optional[GameSession]:
        """Remove a session with its timers and disconnect records."""
        with self._lock:
            session = self.sessions.pop(match_id, None)
            self.cancel_match_timers(match_id)
            for player_id in [pid for pid, rec in self.disconnected.items() if rec.match_id == match_id]:
                self.disconnected.pop(player_id, None)
        if session is not None:
            logger.info("Session dropped", extra={"match_id": match_id})
        return session

    # -----------------------------
    # Timers
    # -----------------------------
    def set_timer(self, match_id: str, player_id: str, handle: TimerHandle) -> None:
        with self._lock:
            previous = self.timers.pop((match_id, player_id), None)
            if previous is not None:
                previous.cancel()
            self.timers[(match_id, player_id)] = handle

    def cancel_timer(self, match_id: str, player_id: str) -> bool:
        with self._lock:
            handle = self.timers.pop((match_id, player_id), None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_match_timers(self, match_id: str) -> int:
        with self._lock:
            keys: List[Tuple[str, str]] = [key for key in self.timers if key[0] == match_id]
            for key in keys:
                self.timers.pop(key).cancel()
        return len(keys)

    # -----------------------------
    # Teardown / stats
    # -----------------------------
    def close(self) -> None:
        """Cancel every timer and forget every session (shutdown / admin reset)."""
        with self._lock:
            for handle in self.timers.values():
                handle.cancel()
            self.timers.clear()
            self.disconnected.clear()
            self.sessions.clear()
            self.pending = None

    def stats(self) -> dict:
        with self._lock:
            phases: Dict[str, int] = {}
            for session in self.sessions.values():
                phases[session.phase.value] = phases.get(session.phase.value, 0) + 1
            return {
                "sessions_total": len(self.sessions),
                "sessions_by_phase": phases,
                "pending_player": self.pending.player.id if self.pending else None,
                "active_timers": len(self.timers),
            }

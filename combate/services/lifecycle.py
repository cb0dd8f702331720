"""
Service: lifecycle.py
Role:
- Per-player connection state machine inside a session:
  Connected -> Disconnected -> (Reconnected -> Connected | Abandoned).
- One disconnect policy per phase (placement / active). A policy with a grace
  of 0 tears the match down at once; otherwise an abandonment timer keyed by
  (match_id, player_id) is scheduled and cancelled on reconnection.

Teardown always goes through `GameStore.drop_session`, which cancels every
timer of the match. A timer that fires for a session that is gone, or for a
player that is connected again, does nothing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Dict

from combate.config.settings import settings
from combate.models.messages import Outbound, outbound, server_message
from combate.services.game_session import GameSession, PlayerSlot, SessionPhase
from combate.services.game_store import DisconnectRecord, GameStore
from combate.services.matchmaker import Matchmaker
from combate.services.scheduler import LoopScheduler, Scheduler
from combate.services.ws_manager import Connection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DisconnectPolicy:
    grace_seconds: float

    @property
    def immediate(self) -> bool:
        return self.grace_seconds <= 0


def _placement_policy() -> DisconnectPolicy:
    return DisconnectPolicy(settings.PLACEMENT_DISCONNECT_GRACE_SECONDS)


def _active_policy() -> DisconnectPolicy:
    return DisconnectPolicy(settings.ACTIVE_DISCONNECT_GRACE_SECONDS)


@dataclass
class ConnectionLifecycleManager:
    store: GameStore
    matchmaker: Matchmaker
    scheduler: Scheduler = field(default_factory=LoopScheduler)
    placement_policy: DisconnectPolicy = field(default_factory=_placement_policy)
    active_policy: DisconnectPolicy = field(default_factory=_active_policy)

    def _policy_for(self, session: GameSession) -> DisconnectPolicy:
        if session.phase is SessionPhase.PLACEMENT:
            return self.placement_policy
        if session.phase is SessionPhase.ACTIVE:
            return self.active_policy
        # nothing left to wait for once the match is over
        return DisconnectPolicy(0)

    # -----------------------------
    # Close
    # -----------------------------
    def handle_close(self, player_id: str, connection: Connection) -> None:
        if self.matchmaker.pending_closed(player_id):
            return

        session = self.store.find_session_by_player(player_id)
        if session is None:
            return
        slot = session.slot(player_id)
        if slot.connection is not connection:
            # an older socket of a player who already reconnected
            return

        slot.connected = False
        slot.connection = None
        policy = self._policy_for(session)
        logger.info(
            "Player disconnected",
            extra={"match_id": session.id, "player_id": player_id, "phase": session.phase.value},
        )

        if policy.immediate:
            if session.phase is SessionPhase.PLACEMENT:
                session.send_to_opponent(player_id, self._notice(Outbound.PLACEMENT_OPPONENT_ABANDONED, session, player_id))
            else:
                session.send_to_opponent(player_id, server_message("Opponent disconnected.", session.id))
            self.teardown(session)
            return

        self.store.disconnected[player_id] = DisconnectRecord(match_id=session.id, timestamp=self.scheduler.now())
        if session.phase is SessionPhase.PLACEMENT:
            session.send_to_opponent(player_id, self._notice(Outbound.PLACEMENT_OPPONENT_DISCONNECTED, session, player_id))
        else:
            session.send_to_opponent(
                player_id, server_message("Opponent disconnected. Waiting for reconnection...", session.id)
            )
        handle = self.scheduler.call_later(policy.grace_seconds, partial(self._abandon, session.id, player_id))
        self.store.set_timer(session.id, player_id, handle)

    # -----------------------------
    # Reconnect
    # -----------------------------
    def reconnect(self, player_id: str, connection: Connection) -> bool:
        """Rebind a disconnected player to a new connection; False if nothing to resume."""
        record = self.store.disconnected.pop(player_id, None)
        if record is None:
            logger.info("Reconnection refused: no pending disconnect", extra={"player_id": player_id})
            return False

        self.store.cancel_timer(record.match_id, player_id)
        session = self.store.get_session(record.match_id)
        slot = session.slot(player_id) if session else None
        if slot is None:
            logger.info("Reconnection refused: session gone", extra={"player_id": player_id})
            return False

        slot.connection = connection
        slot.connected = True
        connection.send(
            outbound(
                Outbound.CONNECTED,
                {"playerId": player_id, "team": slot.player.team.value, "reconnected": True},
                session.id,
            )
        )
        snapshot = session.snapshot_for(player_id)
        if snapshot is not None:
            connection.send(snapshot)

        if session.phase is SessionPhase.PLACEMENT:
            session.send_to_opponent(player_id, self._notice(Outbound.PLACEMENT_OPPONENT_RECONNECTED, session, player_id))
        else:
            session.send_to_opponent(player_id, server_message("Opponent reconnected.", session.id))
        logger.info("Player reconnected", extra={"match_id": session.id, "player_id": player_id})
        return True

    # -----------------------------
    # Abandonment / teardown
    # -----------------------------
    def _abandon(self, match_id: str, player_id: str) -> None:
        self.store.timers.pop((match_id, player_id), None)
        self.store.disconnected.pop(player_id, None)
        session = self.store.get_session(match_id)
        if session is None:
            return
        slot = session.slot(player_id)
        if slot is None or slot.connected:
            return

        logger.info("Match abandoned", extra={"match_id": match_id, "player_id": player_id})
        if session.phase is SessionPhase.PLACEMENT:
            session.send_to_opponent(player_id, self._notice(Outbound.PLACEMENT_OPPONENT_ABANDONED, session, player_id))
        else:
            session.send_to_opponent(player_id, server_message("Opponent abandoned the match.", match_id))
        self.teardown(session)

    def teardown(self, session: GameSession) -> None:
        """Drop the session (timers included) and send a still-connected opponent back to matchmaking."""
        self.store.drop_session(session.id)
        survivors = [slot for slot in session.slots if slot.connected and slot.connection is not None]
        for slot in session.slots:
            self.matchmaker.placement.rate_limiter.forget_player(slot.player.id)
        for slot in survivors:
            self.matchmaker.enqueue(PlayerSlot(player=slot.player, connection=slot.connection))

    # -----------------------------
    # Messages / stats
    # -----------------------------
    @staticmethod
    def _notice(kind: Outbound, session: GameSession, player_id: str) -> Dict[str, Any]:
        text = {
            Outbound.PLACEMENT_OPPONENT_DISCONNECTED: "Opponent disconnected. Waiting for reconnection...",
            Outbound.PLACEMENT_OPPONENT_RECONNECTED: "Opponent reconnected. Placement continues...",
            Outbound.PLACEMENT_OPPONENT_ABANDONED: "Opponent abandoned the match. Returning to matchmaking...",
        }[kind]
        return outbound(kind, {"message": text, "playerId": player_id}, session.id)

    def stats(self) -> dict:
        now = self.scheduler.now()
        return {
            "disconnected_players": len(self.store.disconnected),
            "active_timers": len(self.store.timers),
            "disconnected": [
                {
                    "player_id": pid,
                    "match_id": rec.match_id,
                    "disconnected_for_s": round(now - rec.timestamp, 3),
                }
                for pid, rec in self.store.disconnected.items()
            ],
        }

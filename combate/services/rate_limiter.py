"""
Service: rate_limiter.py
Role:
- Fixed-window request counters keyed by (player_id, operation class).
- A window resets wholesale once its duration has elapsed (no rolling average).

Operation classes:
- PIECE_PLACEMENT         (place / remove a staged piece)
- PIECE_MOVEMENT          (move / swap a staged piece)
- PLACEMENT_CONFIRMATION  (ready confirmation, tighter)
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import RLock
from typing import Callable, Dict, Tuple

from combate.config.settings import settings

PIECE_PLACEMENT = "PIECE_PLACEMENT"
PIECE_MOVEMENT = "PIECE_MOVEMENT"
PLACEMENT_CONFIRMATION = "PLACEMENT_CONFIRMATION"


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_ms: int


@dataclass
class RateLimitWindow:
    count: int
    window_start_ms: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    limit: int
    retry_after_ms: int = 0


def default_limits() -> Dict[str, RateLimitConfig]:
    return {
        PIECE_PLACEMENT: RateLimitConfig(settings.RATE_LIMIT_PLACEMENT_MAX, settings.RATE_LIMIT_PLACEMENT_WINDOW_MS),
        PIECE_MOVEMENT: RateLimitConfig(settings.RATE_LIMIT_MOVEMENT_MAX, settings.RATE_LIMIT_MOVEMENT_WINDOW_MS),
        PLACEMENT_CONFIRMATION: RateLimitConfig(
            settings.RATE_LIMIT_CONFIRMATION_MAX, settings.RATE_LIMIT_CONFIRMATION_WINDOW_MS
        ),
    }


def _now_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class RateLimiter:
    limits: Dict[str, RateLimitConfig] = field(default_factory=default_limits)
    clock_ms: Callable[[], float] = field(default=_now_ms, repr=False)
    _lock: RLock = field(default_factory=RLock, init=False, repr=False)
    _windows: Dict[Tuple[str, str], RateLimitWindow] = field(default_factory=dict, init=False)

    def check(self, player_id: str, operation: str) -> RateLimitDecision:
        """Count one request; refuse it if the current window is already full."""
        config = self.limits[operation]
        key = (player_id, operation)
        now = self.clock_ms()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now - window.window_start_ms >= config.window_ms:
                self._windows[key] = RateLimitWindow(count=1, window_start_ms=now)
                return RateLimitDecision(allowed=True, count=1, limit=config.max_requests)

            if window.count >= config.max_requests:
                retry_after = config.window_ms - (now - window.window_start_ms)
                return RateLimitDecision(
                    allowed=False,
                    count=window.count,
                    limit=config.max_requests,
                    retry_after_ms=max(1, int(retry_after)),
                )

            window.count += 1
            return RateLimitDecision(allowed=True, count=window.count, limit=config.max_requests)

    def forget_player(self, player_id: str) -> None:
        with self._lock:
            for key in [k for k in self._windows if k[0] == player_id]:
                self._windows.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()

    def stats(self) -> Dict[str, dict]:
        with self._lock:
            return {
                f"{pid}:{op}": {"count": w.count, "limit": self.limits[op].max_requests}
                for (pid, op), w in self._windows.items()
            }

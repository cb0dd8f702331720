"""
Service: scheduler.py
Role:
- Cancellable delayed callbacks for the abandonment timers.
- `LoopScheduler` wraps the running asyncio loop (`call_later` returns a
  TimerHandle with `.cancel()`); tests swap in a manual scheduler.
"""
from __future__ import annotations

import asyncio
import time
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def now(self) -> float: ...


class LoopScheduler:
    """Schedules on the event loop serving the WebSocket connections."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)

    def now(self) -> float:
        return time.time()

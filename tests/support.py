from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from combate.models.board import ARMY_SIZE, BOARD_SIZE, Position, Team, home_rows_for
from combate.services import wire

# Front row first: scouts in front, bombs and flag at the back
LAYOUT_ORDER: List[str] = (
    ["scout"] * 8
    + ["miner"] * 5
    + ["sergeant"] * 4
    + ["lieutenant"] * 4
    + ["captain"] * 4
    + ["major"] * 3
    + ["colonel"] * 2
    + ["general", "marshal", "spy"]
    + ["bomb"] * 6
    + ["flag"]
)
assert len(LAYOUT_ORDER) == ARMY_SIZE


class FakeConnection:
    """Records what the server sends; `open=False` makes sends fail."""

    def __init__(self) -> None:
        self.connection_id = uuid4().hex
        self.sent: List[Dict[str, Any]] = []
        self.open = True

    def send(self, message: Dict[str, Any]) -> bool:
        if not self.open:
            return False
        # through the codec, as a real socket would
        self.sent.append(wire.decode(wire.encode(message)))
        return True

    def types(self) -> List[str]:
        return [m["type"] for m in self.sent]

    def last(self, kind: str) -> Optional[Dict[str, Any]]:
        for message in reversed(self.sent):
            if message["type"] == kind:
                return message
        return None

    def texts(self) -> List[str]:
        return [m["payload"]["text"] for m in self.sent if m["type"] == "SERVER_MESSAGE"]

    def clear(self) -> None:
        self.sent.clear()


class FakeTimer:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Manual clock: timers only fire on `advance()`."""

    def __init__(self) -> None:
        self.clock = 0.0
        self.timers: List[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.clock + delay, callback)
        self.timers.append(timer)
        return timer

    def now(self) -> float:
        return self.clock

    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        self.clock += seconds
        for timer in sorted(self.pending(), key=lambda t: t.due):
            if timer.due <= self.clock and not timer.cancelled:
                timer.cancelled = True
                timer.callback()


def layout_for(team: Team) -> List[Tuple[str, Position]]:
    """A full, valid army for `team` following LAYOUT_ORDER."""
    rows = sorted(home_rows_for(team), reverse=(team == Team.B))
    cells = [Position(row=row, col=col) for row in rows for col in range(BOARD_SIZE)]
    return list(zip(LAYOUT_ORDER, cells))


def layout_wire(team: Team) -> List[Dict[str, Any]]:
    return [{"rank": rank, "position": pos.to_wire()} for rank, pos in layout_for(team)]


def frame(kind: str, payload: Optional[Dict[str, Any]] = None, match_id: Optional[str] = None) -> str:
    message: Dict[str, Any] = {"type": kind, "payload": payload or {}}
    if match_id:
        message["matchId"] = match_id
    return wire.encode(message)

import pytest

from combate.services.server import GameServer
from support import FakeConnection, FakeScheduler


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def server(scheduler) -> GameServer:
    return GameServer(scheduler=scheduler, instant_setup=False)


@pytest.fixture
def paired(server):
    """Two connected players in a fresh PLACEMENT session: (server, session, (pid_a, conn_a), (pid_b, conn_b))."""
    conn_a, conn_b = FakeConnection(), FakeConnection()
    pid_a = server.on_connect(conn_a)
    pid_b = server.on_connect(conn_b)
    session = server.store.find_session_by_player(pid_a)
    return server, session, (pid_a, conn_a), (pid_b, conn_b)

import sys
from pathlib import Path

import pytest
import pytest_asyncio

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fakes import SocketFactory  # noqa: E402
from matchclient.config import ClientConfig  # noqa: E402
from matchclient.ws_client import MatchmakingClient  # noqa: E402


@pytest.fixture
def socket_factory() -> SocketFactory:
    return SocketFactory()


@pytest_asyncio.fixture
async def make_client(socket_factory):
    """
    Build clients wired to the in-memory socket factory. Timers default to
    values long enough that they never fire unless a test shortens them.
    """
    clients = []

    def _make(identity=None, **overrides) -> MatchmakingClient:
        settings = {"heartbeat_interval": 30.0, "reconnect_delay": 30.0, "handshake_timeout": 1.0}
        settings.update(overrides)
        client = MatchmakingClient(ClientConfig(**settings), identity=identity, connect_factory=socket_factory)
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.disconnect()

from __future__ import annotations
import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from matchclient.events import ClientEvent, EventChannels

_CLOSED = object()


class DummyWebSocket:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self, responder: Optional[Callable[["DummyWebSocket", dict], None]] = None) -> None:
        self.sent_messages: list[str] = []
        self.closed = False
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self._responder = responder
        self._incoming: asyncio.Queue = asyncio.Queue()
        # When set, close() blocks until the event fires (a slow closing handshake)
        self.close_gate: Optional[asyncio.Event] = None

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent_messages.append(data)
        if self._responder is not None:
            self._responder(self, json.loads(data))

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        if self.close_gate is not None:
            await self.close_gate.wait()
        if not self.closed:
            self.closed = True
            self.close_code = code
            self.close_reason = reason
            self._incoming.put_nowait(_CLOSED)

    def feed(self, frame: Any) -> None:
        """Queue an inbound frame (dicts are serialised to JSON)."""
        if not isinstance(frame, (str, bytes)):
            frame = json.dumps(frame)
        self._incoming.put_nowait(frame)

    def server_close(self) -> None:
        """Clean close from the server side."""
        self.closed = True
        self._incoming.put_nowait(_CLOSED)

    def drop(self) -> None:
        """Abnormal close, as when the network goes away."""
        self.closed = True
        self._incoming.put_nowait(ConnectionClosedError(None, None))

    def sent(self) -> List[dict]:
        return [json.loads(m) for m in self.sent_messages]

    def sent_types(self) -> List[str]:
        return [m["type"] for m in self.sent()]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item


class SocketFactory:
    """
    Replaces ``websockets.connect``: every call opens a new DummyWebSocket.

    ``greeting`` is queued on open (connection_established by default) and
    ``replies`` maps an outbound type to a function returning the server's answer.
    """

    def __init__(self) -> None:
        self.sockets: List[DummyWebSocket] = []
        self.urls: List[str] = []
        self.fail_next = 0
        self.greeting: Optional[dict] = None
        self.replies: Dict[str, Callable[[dict], Optional[dict]]] = {}

    async def __call__(self, url: str, open_timeout: float) -> DummyWebSocket:
        self.urls.append(url)
        if self.fail_next:
            self.fail_next -= 1
            raise OSError("Connection refused")
        ws = DummyWebSocket(responder=self._respond)
        if self.greeting is not None:
            ws.feed(self.greeting)
        self.sockets.append(ws)
        return ws

    def _respond(self, ws: DummyWebSocket, message: dict) -> None:
        reply = self.replies.get(message["type"])
        if reply is None:
            return
        answer = reply(message)
        if answer is not None:
            ws.feed(answer)

    @property
    def latest(self) -> DummyWebSocket:
        return self.sockets[-1]


def record_events(events: EventChannels) -> List[tuple]:
    """Subscribe to every channel; returns the (event, args) list it appends to."""
    seen: List[tuple] = []
    for event in ClientEvent:
        events.on(event, lambda *args, event=event: seen.append((event, args)))
    return seen


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


CONNECTION_ESTABLISHED = {"type": "connection_established", "connectionId": "C1", "timestamp": 1700000000}


def auth_success(player_id: str = "P1", session_id: str = "S1") -> dict:
    return {"type": "authentication_response", "status": "success", "sessionId": session_id, "playerId": player_id}


def match_found(player1: str = "P1", player2: str = "P2", game_session_id: str = "G1",
                table_type: str = "small", play_in_amount: int = 10) -> dict:
    return {
        "type": "match_found",
        "gameSessionId": game_session_id,
        "player1": player1,
        "player2": player2,
        "tableType": table_type,
        "playInAmount": play_in_amount,
    }


async def open_session(client, factory: SocketFactory, authenticate: bool = True,
                       player_id: str = "P1", session_id: str = "S1") -> DummyWebSocket:
    """Drive a client through connect -> connection_established [-> authenticated]."""
    assert await client.connect() is True
    await eventually(lambda: client.is_connected)
    ws = factory.latest
    ws.feed(CONNECTION_ESTABLISHED)
    await eventually(lambda: client.is_connection_established)
    if authenticate:
        assert await client.authenticate_user("ADDR1") is True
        ws.feed(auth_success(player_id, session_id))
        await eventually(lambda: client.is_authenticated)
    return ws

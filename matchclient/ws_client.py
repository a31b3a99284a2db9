from __future__ import annotations
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed

from matchclient.config import ClientConfig
from matchclient.connection import ConnectionState, ConnectionStateMachine
from matchclient.dispatcher import MessageDispatcher
from matchclient.events import ClientEvent, EventChannels
from matchclient.heartbeat import HeartbeatMonitor
from matchclient.identity import IdentityProvider
from matchclient.reconnect import ReconnectionSupervisor
from matchclient.state import SessionState
from matchclient.waiter import StateWaiter
from shared.log import get_logger, log_protocol_message
from shared.messages import (
    Authentication,
    BettingAction,
    CancelMatch,
    CardAction,
    DelegationReady,
    EncodeError,
    Heartbeat,
    LockIn,
    RelicSelection,
    RequestMatch,
    TableType,
    encode,
)

logger = get_logger(__name__)


ConnectFactory = Callable[[str, float], Awaitable[Any]]


async def open_websocket(url: str, open_timeout: float) -> websockets.ClientConnection:
    """Open a fresh WebSocket to the matchmaking server."""
    return await websockets.connect(url, open_timeout=open_timeout, ping_interval=15, ping_timeout=45)


class MatchmakingClient:
    """
    Matchmaking session client: owns the socket and drives the handshake
    connect -> connection_established -> authenticated.

    Every public operation checks its precondition and updates local state
    before its first await, then returns True if it acted. A failed
    precondition is logged and returns False; nothing raises to the caller.

    Event handlers run inside the receive task, one frame at a time. A handler
    that awaits further client state (for example connect_and_authenticate
    from a CONNECTION_ESTABLISHED handler) stalls dispatch until it times out;
    start such work with asyncio.create_task instead.

    Usage:
        client = MatchmakingClient(ClientConfig(host="localhost"))

        @client.events.on(ClientEvent.CONNECTION_ESTABLISHED)
        async def ready(connection_id):
            await client.authenticate_user(address)

        await client.connect()
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        identity: Optional[IdentityProvider] = None,
        connect_factory: Optional[ConnectFactory] = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.identity = identity
        self.events = EventChannels()
        self.state = SessionState()
        self.connection = ConnectionStateMachine()
        self.dispatcher = MessageDispatcher(self.state, self.connection, self.events)
        self.waiter = StateWaiter()
        self.reconnector = ReconnectionSupervisor(
            self.connect,
            lambda: self.connection.is_disconnected,
            delay=self.config.reconnect_delay,
        )
        self.connection.on_transition(lambda _old, _new: self.waiter.notify())

        self._connect_factory: ConnectFactory = connect_factory or open_websocket
        self._websocket: Optional[Any] = None
        self._heartbeat: Optional[HeartbeatMonitor] = None
        self._reader: Optional[asyncio.Task] = None
        self._generation = 0

    # ========================================
    #           STATUS
    # ========================================

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.state

    @property
    def is_connected(self) -> bool:
        return self.connection.is_connected

    @property
    def is_connection_established(self) -> bool:
        return self.connection.is_connection_established

    @property
    def is_authenticated(self) -> bool:
        return self.connection.is_authenticated and self.state.is_authenticated

    @property
    def is_in_matchmaking(self) -> bool:
        return self.state.is_in_matchmaking

    @property
    def player_id(self) -> Optional[str]:
        return self.state.player_id

    @property
    def session_id(self) -> Optional[str]:
        return self.state.session_id

    @property
    def current_table_type(self) -> Optional[str]:
        return self.state.table_type

    @property
    def current_game_session_id(self) -> Optional[str]:
        return self.state.game_session_id

    @property
    def opponent(self) -> Optional[str]:
        return self.state.opponent

    @property
    def play_in_amount(self) -> int:
        return self.state.play_in_amount

    @property
    def heartbeat(self) -> Optional[HeartbeatMonitor]:
        return self._heartbeat

    def connection_status(self) -> str:
        """One-line summary for diagnostics."""
        return (
            f"Connected: {self.is_connected}, "
            f"ConnectionEstablished: {self.is_connection_established}, "
            f"Authenticated: {self.is_authenticated}, "
            f"InMatchmaking: {self.is_in_matchmaking}, "
            f"Player: {self.player_id or 'None'}, "
            f"GameSession: {self.current_game_session_id or 'None'}"
        )

    def snapshot(self) -> Dict[str, Any]:
        return {
            "url": self.config.url,
            "state": self.connection_state.name,
            "connection_id": self.dispatcher.connection_id,
            "reconnect_armed": self.reconnector.armed,
            **self.state.to_dict(),
        }

    async def wait_until(self, predicate: Callable[[], bool], timeout: Optional[float] = None) -> bool:
        """Wait for ``predicate`` to hold; False on timeout or when the connection is torn down."""
        return await self.waiter.wait_for(predicate, timeout or self.config.handshake_timeout)

    # ========================================
    #           CONNECTION LIFECYCLE
    # ========================================

    async def connect(self) -> bool:
        """Open a new socket and start the handshake. No-op unless DISCONNECTED."""
        if not self.connection.is_disconnected:
            logger.info("Already connected or connecting (state %s)", self.connection_state)
            return False

        self.reconnector.disarm()
        self.connection.transition(ConnectionState.CONNECTING)
        self._generation += 1
        self._reader = asyncio.create_task(self._run(self._generation))
        return True

    async def disconnect(self) -> bool:
        """
        Caller-initiated teardown. Never schedules a reconnection.

        Returns False if there was nothing to disconnect.
        """
        was_active = not self.connection.is_disconnected
        self.reconnector.disarm()
        websocket = self._teardown()

        reader, self._reader = self._reader, None
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()

        if websocket is not None:
            await self._close_socket(websocket)

        if was_active:
            logger.info("Disconnected from server")
            await self.events.emit(ClientEvent.DISCONNECTED)
        return was_active

    async def __aenter__(self) -> "MatchmakingClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    async def _run(self, generation: int) -> None:
        url = self.config.url
        logger.info("Connecting to %s", url)
        try:
            websocket = await self._connect_factory(url, self.config.open_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Failed to open connection to %s: %s", url, e)
            if generation == self._generation:
                await self._handle_close(f"open failed: {e}")
            return

        if generation != self._generation:
            # Torn down while the socket was opening
            await self._close_socket(websocket)
            return

        self._websocket = websocket
        await self._on_open()

        reason = "closed by server"
        try:
            if generation == self._generation:
                async for raw in websocket:
                    try:
                        await self.dispatcher.dispatch(raw)
                    except Exception as e:
                        logger.error("Error processing message: %s", e)
                    self.waiter.notify()
                    if generation != self._generation:
                        return
        except ConnectionClosed as e:
            reason = f"connection lost: {e}"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Error reading from %s: %s", url, e)
            reason = str(e)

        if generation == self._generation:
            await self._handle_close(reason)

    async def _on_open(self) -> None:
        self.connection.transition(ConnectionState.CONNECTED)
        self.dispatcher.clear_session()

        # A fresh monitor per connection; nothing survives from the previous socket
        self._heartbeat = HeartbeatMonitor(
            self.send_heartbeat,
            lambda: self.connection.is_connected,
            interval=self.config.heartbeat_interval,
        )
        self._heartbeat.start()

        logger.info("WebSocket connection opened to %s", self.config.url)
        await self.events.emit(ClientEvent.CONNECTED)

    async def _handle_close(self, reason: str) -> None:
        """Unexpected close: teardown, then arm a single reconnection attempt."""
        logger.warning("Connection closed: %s", reason)
        if self._reader is asyncio.current_task():
            self._reader = None
        websocket = self._teardown()
        # Armed before the first await so a disconnect() during the close cancels it
        if self.config.auto_reconnect:
            self.reconnector.arm()
        if websocket is not None:
            await self._close_socket(websocket)
        await self.events.emit(ClientEvent.DISCONNECTED)

    def _teardown(self) -> Optional[Any]:
        """Synchronous part of every teardown. Returns the socket still to be closed."""
        self._generation += 1
        if self._heartbeat is not None:
            self._heartbeat.stop()
            self._heartbeat = None
        websocket, self._websocket = self._websocket, None
        # Abort waiters before the state change wakes them to re-check
        self.waiter.abort()
        self.connection.reset()
        self.dispatcher.reset()
        return websocket

    async def _close_socket(self, websocket: Any) -> None:
        try:
            await websocket.close()
        except Exception as e:
            logger.warning("Error closing connection: %s", e)

    # ========================================
    #           OUTBOUND
    # ========================================

    async def _send(self, message: Any) -> bool:
        websocket = self._websocket
        if websocket is None or not self.connection.is_connected:
            logger.error("Cannot send %s: not connected to server", message.type)
            return False
        try:
            frame = encode(message)
        except EncodeError as e:
            logger.error("Failed to encode %s: %s", message.type, e)
            return False
        try:
            await websocket.send(frame)
        except ConnectionClosed:
            logger.warning("Connection closed while sending %s", message.type)
            return False
        except Exception as e:
            logger.error("Error sending message: %s", e)
            return False
        log_protocol_message(logger, "debug", f"Sent message: {frame}", wire=message,
                             player_id=self.player_id)
        return True

    async def authenticate_user(self, public_address: str) -> bool:
        """Send an authentication request for ``public_address``."""
        if not self.is_connected:
            logger.error("Cannot authenticate: not connected to server")
            return False
        if not self.is_connection_established:
            logger.error("Cannot authenticate: connection not yet established with server")
            return False
        if not public_address:
            logger.error("Cannot authenticate: empty public address")
            return False

        if not await self._send(Authentication(public_address=public_address)):
            return False
        logger.info("Authentication request sent for player: %s", public_address)
        return True

    async def authenticate_with_identity(self) -> bool:
        """Authenticate with the address of the injected identity provider."""
        identity = self.identity
        if identity is None or not identity.is_connected() or not identity.address():
            logger.error("Cannot authenticate: no wallet connected")
            return False
        return await self.authenticate_user(identity.address())

    async def request_match(self, table_type: Union[TableType, str]) -> bool:
        if not self.is_authenticated:
            logger.error("Cannot request match: not authenticated")
            return False
        if not self.is_connection_established:
            logger.error("Cannot request match: connection not established")
            return False
        if self.is_in_matchmaking:
            logger.error("Already in matchmaking")
            return False
        try:
            table = TableType(table_type)
        except ValueError:
            logger.error("Cannot request match: unknown table type %r", table_type)
            return False

        message = RequestMatch(table_type=table.value, player_id=self.player_id)
        self.dispatcher.record_match_requested(table.value)
        self.waiter.notify()
        if not await self._send(message):
            if self.is_connected:
                self.dispatcher.record_match_cancelled()
            return False

        logger.info("Match request sent for table type: %s", table.value)
        await self.events.emit(ClientEvent.MATCHMAKING_STARTED, table.value)
        return True

    async def cancel_matchmaking(self) -> bool:
        if not self.is_authenticated:
            logger.error("Cannot cancel matchmaking: not authenticated")
            return False
        if not self.is_in_matchmaking:
            logger.error("Not currently in matchmaking")
            return False

        message = CancelMatch(player_id=self.player_id, table_type=self.current_table_type)
        self.dispatcher.record_match_cancelled()
        self.waiter.notify()
        await self._send(message)

        logger.info("Matchmaking cancelled")
        await self.events.emit(ClientEvent.MATCHMAKING_CANCELLED)
        return True

    def end_game_session(self) -> None:
        """Forget the active game session (the game itself decides when it ends)."""
        if self.current_game_session_id:
            logger.info("Game session %s ended", self.current_game_session_id)
        self.dispatcher.end_game_session()
        self.waiter.notify()

    def _active_game_session(self, what: str) -> Optional[str]:
        if not self.state.has_game_session:
            logger.error("Cannot send %s: no active game session", what)
            return None
        return self.current_game_session_id

    async def send_delegation_ready(self, delegation_id: str) -> bool:
        game_session_id = self._active_game_session("delegation ready")
        if game_session_id is None:
            return False
        return await self._send(DelegationReady(
            game_session_id=game_session_id,
            player_id=self.player_id,
            delegation_id=delegation_id,
        ))

    async def send_relic_selection(self, relic_index: int, joker_plus: bool = False) -> bool:
        game_session_id = self._active_game_session("relic selection")
        if game_session_id is None:
            return False
        return await self._send(RelicSelection(
            game_session_id=game_session_id,
            relic_index=relic_index,
            joker_plus=joker_plus,
        ))

    async def send_card_action(self, action: str, data: Any = None) -> bool:
        game_session_id = self._active_game_session("card action")
        if game_session_id is None:
            return False
        return await self._send(CardAction(game_session_id=game_session_id, action=action, data=data))

    async def send_lock_in(self) -> bool:
        game_session_id = self._active_game_session("lock in")
        if game_session_id is None:
            return False
        return await self._send(LockIn(game_session_id=game_session_id))

    async def send_betting_action(self, action: str, amount: int = 0) -> bool:
        game_session_id = self._active_game_session("betting action")
        if game_session_id is None:
            return False
        if amount < 0:
            logger.error("Cannot send betting action: negative amount %d", amount)
            return False
        return await self._send(BettingAction(game_session_id=game_session_id, action=action, amount=amount))

    async def send_heartbeat(self) -> bool:
        if not self.is_connected:
            logger.error("Cannot send heartbeat: not connected to server")
            return False
        return await self._send(Heartbeat())

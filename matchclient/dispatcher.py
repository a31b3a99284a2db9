from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional, Union

from matchclient.connection import ConnectionState, ConnectionStateMachine
from matchclient.events import ClientEvent, EventChannels
from matchclient.state import SessionState
from shared.log import get_logger, log_protocol_message
from shared.messages import (
    AuthenticationResponse,
    ConnectionEstablished,
    DecodeError,
    Disconnection,
    ErrorMessage,
    GameStateUpdate,
    MatchFound,
    MessageType,
    UnknownMessage,
    decode,
)

logger = get_logger(__name__)

# Type alias for handler functions
MessageHandler = Callable[[Any], Awaitable[None]]

AUTH_FAILED_REASON = "Authentication failed"


class MessageDispatcher:
    """
    Routes decoded inbound messages to their handlers, in arrival order.

    The dispatcher is the only writer of SessionState. Inbound frames update it
    through the handlers below; the client's outbound matchmaking bookkeeping
    and teardown go through the ``record_*`` / ``reset`` methods.
    """

    def __init__(
        self,
        state: SessionState,
        connection: ConnectionStateMachine,
        events: EventChannels,
    ) -> None:
        self.state = state
        self.connection = connection
        self.events = events
        self.connection_id: Optional[str] = None
        self.dispatched = 0
        self.dropped = 0
        self._handlers: Dict[str, MessageHandler] = {
            MessageType.CONNECTION_ESTABLISHED.value: self._handle_connection_established,
            MessageType.AUTHENTICATION_RESPONSE.value: self._handle_authentication_response,
            MessageType.MATCH_FOUND.value: self._handle_match_found,
            MessageType.GAME_STATE_UPDATE.value: self._handle_game_state_update,
            MessageType.DISCONNECTION.value: self._handle_disconnection,
            MessageType.ERROR.value: self._handle_error,
        }

    async def dispatch(self, raw: Union[str, bytes]) -> Optional[Any]:
        """
        Decode one frame and run its handler.

        Returns the decoded message, or None if the frame could not be decoded.
        """
        try:
            message = decode(raw)
        except DecodeError as e:
            self.dropped += 1
            logger.error("Failed to decode inbound frame: %s", e)
            return None

        handler = self._handlers.get(message.type)
        if handler is None:
            if isinstance(message, UnknownMessage):
                logger.debug("Unknown message type: %s", message.type)
            else:
                logger.warning("Ignoring client-bound message type from server: %s", message.type)
            return message

        log_protocol_message(logger, "debug", "Processing inbound message", wire=message,
                             connection_id=self.connection_id)
        await handler(message)
        self.dispatched += 1
        return message

    # ========================================
    #           INBOUND HANDLERS
    # ========================================

    async def _handle_connection_established(self, message: ConnectionEstablished) -> None:
        if self.connection.state not in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.warning("Ignoring connection_established in state %s", self.connection.state)
            return
        self.connection_id = message.connection_id
        self.connection.transition(ConnectionState.CONNECTION_ESTABLISHED)
        log_protocol_message(logger, "info", "Connection established with server", wire=message,
                             connection_id=message.connection_id)
        await self.events.emit(ClientEvent.CONNECTION_ESTABLISHED, message.connection_id)

    async def _handle_authentication_response(self, message: AuthenticationResponse) -> None:
        if self.connection.state is not ConnectionState.CONNECTION_ESTABLISHED:
            logger.warning("Ignoring authentication_response in state %s", self.connection.state)
            return

        if message.succeeded:
            self.state.session.session_id = message.session_id
            self.state.session.player_id = message.player_id
            self.state.session.is_authenticated = True
            self.connection.transition(ConnectionState.AUTHENTICATED)
            log_protocol_message(logger, "info", "Authentication successful", wire=message,
                                 session_id=message.session_id, player_id=message.player_id)
            await self.events.emit(ClientEvent.AUTHENTICATION_SUCCESS, message.player_id)
        else:
            self.state.session.clear()
            logger.error("Authentication failed: %s", message.status)
            await self.events.emit(ClientEvent.AUTHENTICATION_FAILED, AUTH_FAILED_REASON)

    async def _handle_match_found(self, message: MatchFound) -> None:
        opponent = message.opponent_of(self.state.player_id)

        self.state.matchmaking.clear()
        self.state.game.game_session_id = message.game_session_id
        self.state.game.opponent = opponent
        self.state.game.table_type = message.table_type
        self.state.game.play_in_amount = message.play_in_amount

        log_protocol_message(
            logger, "info",
            f"Match found: opponent {opponent}, table {message.table_type}, play-in {message.play_in_amount}",
            wire=message, player_id=self.state.player_id,
        )
        await self.events.emit(
            ClientEvent.MATCH_FOUND,
            message.game_session_id,
            opponent,
            message.table_type,
            message.play_in_amount,
        )

    async def _handle_game_state_update(self, message: GameStateUpdate) -> None:
        log_protocol_message(logger, "debug", f"Game state update: {message.state}", wire=message)
        await self.events.emit(ClientEvent.GAME_STATE_UPDATE, message.state, message.data)

    async def _handle_disconnection(self, message: Disconnection) -> None:
        logger.info("Opponent disconnected: %s", message.message)
        await self.events.emit(ClientEvent.OPPONENT_DISCONNECTED, self.state.game_session_id)

    async def _handle_error(self, message: ErrorMessage) -> None:
        logger.error("Server error: %s - %s", message.code, message.message)
        if message.deauthenticates:
            self._deauthenticate()
            await self.events.emit(ClientEvent.AUTHENTICATION_FAILED, message.message)
        await self.events.emit(ClientEvent.ERROR, message.code, message.message)

    # ========================================
    #           LOCAL BOOKKEEPING
    # ========================================

    def record_match_requested(self, table_type: str) -> None:
        self.state.matchmaking.is_in_matchmaking = True
        self.state.matchmaking.table_type = table_type

    def record_match_cancelled(self) -> None:
        self.state.matchmaking.clear()

    def end_game_session(self) -> None:
        self.state.game.clear()

    def clear_session(self) -> None:
        self.state.session.clear()

    def reset(self) -> None:
        """Teardown: forget identity, matchmaking and the game session."""
        self.connection_id = None
        self.state.reset()

    def _deauthenticate(self) -> None:
        self.state.session.clear()
        if self.connection.is_authenticated:
            self.connection.transition(ConnectionState.CONNECTION_ESTABLISHED)

"""Typed event channels the client publishes to its host application."""

from __future__ import annotations
import inspect
from collections import defaultdict
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from shared.log import get_logger

logger = get_logger(__name__)


class ClientEvent(str, Enum):
    """
    Event channels and the positional arguments each one carries.
    """
    CONNECTED = "connected"                             # ()
    DISCONNECTED = "disconnected"                       # ()
    CONNECTION_ESTABLISHED = "connection_established"   # (connection_id)
    AUTHENTICATION_SUCCESS = "authentication_success"   # (player_id)
    AUTHENTICATION_FAILED = "authentication_failed"     # (reason)
    MATCHMAKING_STARTED = "matchmaking_started"         # (table_type)
    MATCHMAKING_CANCELLED = "matchmaking_cancelled"     # ()
    MATCH_FOUND = "match_found"                         # (game_session_id, opponent, table_type, play_in_amount)
    GAME_STATE_UPDATE = "game_state_update"             # (state, data)
    OPPONENT_DISCONNECTED = "opponent_disconnected"     # (game_session_id)
    ERROR = "error"                                     # (code, message)


EventHandler = Callable[..., Union[None, Awaitable[None]]]


class EventChannels:
    """
    Fixed set of publish channels. Handlers may be plain functions or coroutines;
    they run in registration order and a failing handler never affects the client.
    """

    def __init__(self) -> None:
        self._handlers: Dict[ClientEvent, List[EventHandler]] = defaultdict(list)

    def on(self, event: ClientEvent, handler: Optional[EventHandler] = None):
        """
        Register ``handler`` for ``event``. Without a handler, works as a decorator:

            @client.events.on(ClientEvent.MATCH_FOUND)
            async def found(game_session_id, opponent, table_type, play_in_amount): ...
        """
        event = ClientEvent(event)

        def decorator(fn: EventHandler) -> EventHandler:
            self._handlers[event].append(fn)
            return fn

        if handler is None:
            return decorator
        return decorator(handler)

    def off(self, event: ClientEvent, handler: EventHandler) -> None:
        handlers = self._handlers.get(ClientEvent(event), [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: ClientEvent, *args: Any) -> None:
        for handler in list(self._handlers.get(event, [])):
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Handler error for '%s': %s", event.value, e)

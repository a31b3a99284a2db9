"""Connection state machine for the matchmaking handshake."""

from __future__ import annotations
from enum import Enum, auto
from typing import Callable, Dict, List

from shared.log import get_logger

logger = get_logger(__name__)


class ConnectionState(Enum):
    """
    Handshake states.

    State transitions:
        DISCONNECTED -> CONNECTING -> CONNECTED -> CONNECTION_ESTABLISHED -> AUTHENTICATED
                             \\            |                |                   |
                              ------------ + --> DISCONNECTED <-----------------

    AUTHENTICATED falls back to CONNECTION_ESTABLISHED when the server
    revokes authentication (AUTH_REQUIRED / INVALID_ADDRESS).
    """

    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    CONNECTION_ESTABLISHED = auto()
    AUTHENTICATED = auto()

    def __str__(self) -> str:
        return self.name


OPEN_STATES = frozenset({
    ConnectionState.CONNECTED,
    ConnectionState.CONNECTION_ESTABLISHED,
    ConnectionState.AUTHENTICATED,
})

ESTABLISHED_STATES = frozenset({
    ConnectionState.CONNECTION_ESTABLISHED,
    ConnectionState.AUTHENTICATED,
})


class InvalidStateTransition(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: ConnectionState, to_state: ConnectionState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid state transition: {from_state.name} -> {to_state.name}"
        )


StateTransitionCallback = Callable[[ConnectionState, ConnectionState], None]


class ConnectionStateMachine:
    """
    Tracks the handshake state and enforces valid transitions.
    """

    VALID_TRANSITIONS: Dict[ConnectionState, List[ConnectionState]] = {
        ConnectionState.DISCONNECTED: [ConnectionState.CONNECTING],
        ConnectionState.CONNECTING: [
            ConnectionState.CONNECTED,
            ConnectionState.CONNECTION_ESTABLISHED,
            ConnectionState.DISCONNECTED,  # Open failed
        ],
        ConnectionState.CONNECTED: [
            ConnectionState.CONNECTION_ESTABLISHED,
            ConnectionState.DISCONNECTED,
        ],
        ConnectionState.CONNECTION_ESTABLISHED: [
            ConnectionState.AUTHENTICATED,
            ConnectionState.DISCONNECTED,
        ],
        ConnectionState.AUTHENTICATED: [
            ConnectionState.CONNECTION_ESTABLISHED,  # Server revoked authentication
            ConnectionState.DISCONNECTED,
        ],
    }

    def __init__(self, initial_state: ConnectionState = ConnectionState.DISCONNECTED):
        self._state = initial_state
        self._listeners: List[StateTransitionCallback] = []

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """Socket is open."""
        return self._state in OPEN_STATES

    @property
    def is_connection_established(self) -> bool:
        """Server confirmed logical readiness."""
        return self._state in ESTABLISHED_STATES

    @property
    def is_authenticated(self) -> bool:
        return self._state is ConnectionState.AUTHENTICATED

    @property
    def is_disconnected(self) -> bool:
        return self._state is ConnectionState.DISCONNECTED

    def can_transition_to(self, new_state: ConnectionState) -> bool:
        return new_state in self.VALID_TRANSITIONS.get(self._state, [])

    def transition(self, new_state: ConnectionState) -> None:
        """
        Transition to a new state.

        Raises:
            InvalidStateTransition: If the transition is not valid.
        """
        if not self.can_transition_to(new_state):
            raise InvalidStateTransition(self._state, new_state)
        self._set(new_state)

    def reset(self) -> None:
        """Return to DISCONNECTED from any state (teardown)."""
        if self._state is not ConnectionState.DISCONNECTED:
            self._set(ConnectionState.DISCONNECTED)

    def on_transition(self, callback: StateTransitionCallback) -> None:
        self._listeners.append(callback)

    def _set(self, new_state: ConnectionState) -> None:
        old_state = self._state
        self._state = new_state
        logger.debug("Connection state %s -> %s", old_state, new_state)
        for listener in self._listeners:
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.error("State listener failed: %s", e)

from __future__ import annotations
from dataclasses import MISSING, dataclass, field, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Set, Type, Union, get_args, get_origin, get_type_hints
import json

from shared.utils import now_seconds, to_wire_name


class ProtocolError(Exception):
    """Base class for matchmaking wire protocol errors."""
    pass
class DecodeError(ProtocolError):
    """Raised when an inbound frame is not valid JSON or does not match its schema."""
    pass
class EncodeError(ProtocolError):
    """Raised when an outbound message cannot be serialised."""
    pass
class UnknownTypeError(ProtocolError):
    """Raised when a message type is not part of the catalog."""
    pass


class MessageType(str, Enum):
    """Matchmaking protocol message types."""

    # Client -> Server
    AUTHENTICATION = "authentication"
    REQUEST_MATCH = "request_match"
    CANCEL_MATCH = "cancel_match"
    DELEGATION_READY = "delegation_ready"
    RELIC_SELECTION = "relic_selection"
    CARD_ACTION = "card_action"
    LOCK_IN = "lock_in"
    BETTING_ACTION = "betting_action"
    HEARTBEAT = "heartbeat"

    # Server -> Client
    CONNECTION_ESTABLISHED = "connection_established"
    AUTHENTICATION_RESPONSE = "authentication_response"
    MATCH_FOUND = "match_found"
    GAME_STATE_UPDATE = "game_state_update"
    DISCONNECTION = "disconnection"
    ERROR = "error"

    @classmethod
    def from_string(cls, value: str) -> MessageType:
        """Convert string to MessageType enum, raise UnknownTypeError if unknown."""
        try:
            return cls(value)
        except ValueError:
            raise UnknownTypeError(f"Unknown message type: {value}")

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if string is a valid message type."""
        try:
            cls(value)
            return True
        except ValueError:
            return False


class TableType(str, Enum):
    """Matchmaking table categories. The server maps each to a play-in/pot ceiling."""
    SMALL = "small"
    MEDIUM = "medium"
    BIG = "big"


class ErrorCode(str, Enum):
    """Error codes reported by the server in ``error`` messages."""
    AUTH_REQUIRED = "AUTH_REQUIRED"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    INVALID_TIMESTAMP = "INVALID_TIMESTAMP"
    ALREADY_CONNECTED = "ALREADY_CONNECTED"
    INVALID_TABLE_TYPE = "INVALID_TABLE_TYPE"
    DELEGATION_ERROR = "DELEGATION_ERROR"
    RELIC_SELECTION_ERROR = "RELIC_SELECTION_ERROR"
    CARD_ACTION_ERROR = "CARD_ACTION_ERROR"
    LOCK_IN_ERROR = "LOCK_IN_ERROR"
    BETTING_ACTION_ERROR = "BETTING_ACTION_ERROR"
    INVALID_FORMAT = "INVALID_FORMAT"
    UNKNOWN_TYPE = "UNKNOWN_TYPE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Server error codes that invalidate the local authentication
DEAUTHENTICATING_ERRORS: Set[str] = {
    ErrorCode.AUTH_REQUIRED.value,
    ErrorCode.INVALID_ADDRESS.value,
}

AUTH_SUCCESS_STATUS = "success"


# ========================================
#           MESSAGE SCHEMAS
# ========================================

MESSAGE_REGISTRY: Dict[str, Type[Any]] = {}

def register(cls: Type[Any]) -> Type[Any]:
    MESSAGE_REGISTRY[cls.type] = cls
    return cls


@register
@dataclass(frozen=True)
class Authentication:
    public_address: str
    timestamp: int = field(default_factory=now_seconds)
    type: ClassVar[str] = MessageType.AUTHENTICATION.value


# request_match and cancel_match carry neither session id nor timestamp: the server ignores them
@register
@dataclass(frozen=True)
class RequestMatch:
    table_type: str
    player_id: Optional[str]
    type: ClassVar[str] = MessageType.REQUEST_MATCH.value


@register
@dataclass(frozen=True)
class CancelMatch:
    player_id: Optional[str]
    table_type: Optional[str]
    type: ClassVar[str] = MessageType.CANCEL_MATCH.value


@register
@dataclass(frozen=True)
class DelegationReady:
    game_session_id: str
    player_id: Optional[str]
    delegation_id: str
    type: ClassVar[str] = MessageType.DELEGATION_READY.value


@register
@dataclass(frozen=True)
class RelicSelection:
    game_session_id: str
    relic_index: int
    joker_plus: bool = False
    type: ClassVar[str] = MessageType.RELIC_SELECTION.value


@register
@dataclass(frozen=True)
class CardAction:
    game_session_id: str
    action: str
    data: Any = None
    type: ClassVar[str] = MessageType.CARD_ACTION.value


@register
@dataclass(frozen=True)
class LockIn:
    game_session_id: str
    type: ClassVar[str] = MessageType.LOCK_IN.value


@register
@dataclass(frozen=True)
class BettingAction:
    game_session_id: str
    action: str
    amount: int = 0
    type: ClassVar[str] = MessageType.BETTING_ACTION.value


@register
@dataclass(frozen=True)
class Heartbeat:
    type: ClassVar[str] = MessageType.HEARTBEAT.value


@register
@dataclass(frozen=True)
class ConnectionEstablished:
    connection_id: str
    timestamp: Optional[int] = None
    type: ClassVar[str] = MessageType.CONNECTION_ESTABLISHED.value


@register
@dataclass(frozen=True)
class AuthenticationResponse:
    status: str
    session_id: Optional[str] = None
    player_id: Optional[str] = None
    timestamp: Optional[int] = None
    type: ClassVar[str] = MessageType.AUTHENTICATION_RESPONSE.value

    @property
    def succeeded(self) -> bool:
        return self.status == AUTH_SUCCESS_STATUS


@register
@dataclass(frozen=True)
class MatchFound:
    game_session_id: str
    player1: str
    player2: str
    table_type: str
    play_in_amount: int
    timestamp: Optional[int] = None
    type: ClassVar[str] = MessageType.MATCH_FOUND.value

    def __post_init__(self) -> None:
        if self.play_in_amount < 0:
            raise DecodeError(f"playInAmount must be non-negative, got {self.play_in_amount}")

    def opponent_of(self, player_id: Optional[str]) -> str:
        """Whichever of player1/player2 is not ``player_id``."""
        return self.player2 if self.player1 == player_id else self.player1


@register
@dataclass(frozen=True)
class GameStateUpdate:
    state: str
    game_session_id: Optional[str] = None
    data: Any = None
    timestamp: Optional[int] = None
    type: ClassVar[str] = MessageType.GAME_STATE_UPDATE.value


@register
@dataclass(frozen=True)
class Disconnection:
    message: str = ""
    timestamp: Optional[int] = None
    type: ClassVar[str] = MessageType.DISCONNECTION.value


@register
@dataclass(frozen=True)
class ErrorMessage:
    code: str
    message: str = ""
    timestamp: Optional[int] = None
    type: ClassVar[str] = MessageType.ERROR.value

    @property
    def deauthenticates(self) -> bool:
        return self.code in DEAUTHENTICATING_ERRORS


@dataclass(frozen=True)
class UnknownMessage:
    """A well-formed frame whose ``type`` is not in the catalog. Never dispatched."""
    type_name: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def type(self) -> str:
        return self.type_name


OUTBOUND_MESSAGES: Set[str] = {
    MessageType.AUTHENTICATION.value,
    MessageType.REQUEST_MATCH.value,
    MessageType.CANCEL_MATCH.value,
    MessageType.DELEGATION_READY.value,
    MessageType.RELIC_SELECTION.value,
    MessageType.CARD_ACTION.value,
    MessageType.LOCK_IN.value,
    MessageType.BETTING_ACTION.value,
    MessageType.HEARTBEAT.value,
}

INBOUND_MESSAGES: Set[str] = {t.value for t in MessageType} - OUTBOUND_MESSAGES

Message = Union[
    Authentication, RequestMatch, CancelMatch, DelegationReady, RelicSelection,
    CardAction, LockIn, BettingAction, Heartbeat, ConnectionEstablished,
    AuthenticationResponse, MatchFound, GameStateUpdate, Disconnection,
    ErrorMessage, UnknownMessage,
]


# ========================================
#           ENCODE / DECODE
# ========================================

def to_dict(message: Any) -> Dict[str, Any]:
    """Convert a message to its wire dictionary (``type`` first, ``None`` timestamps omitted)."""
    if isinstance(message, UnknownMessage):
        return {"type": message.type_name, **message.payload}
    if message.__class__ not in MESSAGE_REGISTRY.values():
        raise EncodeError(f"Not a protocol message: {message!r}")
    result: Dict[str, Any] = {"type": message.type}
    for f in fields(message):
        value = getattr(message, f.name)
        if f.name == "timestamp" and value is None:
            continue
        if isinstance(value, Enum):
            value = value.value
        result[to_wire_name(f.name)] = value
    return result

def encode(message: Any) -> str:
    """Serialise a message to a compact JSON frame."""
    try:
        return json.dumps(to_dict(message), separators=(',', ':'))
    except (TypeError, ValueError) as e:
        raise EncodeError(f"Cannot encode {getattr(message, 'type', message)!r}: {e}")

def peek_type(raw: Union[str, bytes]) -> tuple[str, Dict[str, Any]]:
    """
    Parse a frame and extract only its ``type`` discriminator.

    Returns the type string and the parsed object.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecodeError(f"Frame is not UTF-8: {e}")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON: {e}")
    if not isinstance(data, dict):
        raise DecodeError("Frame must be a JSON object")
    msg_type = data.get('type')
    if not isinstance(msg_type, str):
        raise DecodeError("'type' must be a string")
    return msg_type, data

def decode(raw: Union[str, bytes]) -> Message:
    """Decode a frame into the message class registered for its type."""
    msg_type, data = peek_type(raw)
    return from_dict(msg_type, data)

def from_dict(msg_type: str, data: Dict[str, Any]) -> Message:
    """Validate ``data`` against the schema registered for ``msg_type``."""
    cls = MESSAGE_REGISTRY.get(msg_type)
    if cls is None:
        payload = {k: v for k, v in data.items() if k != 'type'}
        return UnknownMessage(type_name=msg_type, payload=payload)

    hints = get_type_hints(cls)
    kwargs: Dict[str, Any] = {}
    for f in fields(cls):
        wire_name = to_wire_name(f.name)
        if wire_name not in data:
            if _has_default(f):
                continue
            if _is_optional(hints[f.name]):
                kwargs[f.name] = None
                continue
            raise DecodeError(f"{msg_type}: missing required field '{wire_name}'")
        value = data[wire_name]
        if not _matches(value, hints[f.name]):
            raise DecodeError(f"{msg_type}: field '{wire_name}' has invalid value {value!r}")
        kwargs[f.name] = value
    return cls(**kwargs)

def build_message(msg_type: str, **wire_fields: Any) -> Message:
    """
    Construct an outbound message from wire-named fields, e.g.
    build_message("lock_in", gameSessionId="G1").
    """
    MessageType.from_string(msg_type)
    return from_dict(msg_type, wire_fields)


def _has_default(f: Any) -> bool:
    return f.default is not MISSING or f.default_factory is not MISSING

def _is_optional(hint: Any) -> bool:
    return get_origin(hint) is Union and type(None) in get_args(hint)

def _matches(value: Any, hint: Any) -> bool:
    if hint is Any:
        return True
    if get_origin(hint) is Union:
        return any(_matches(value, arg) for arg in get_args(hint))
    if hint is type(None):
        return value is None
    if hint is int:
        return isinstance(value, int) and not isinstance(value, bool)
    if hint is bool:
        return isinstance(value, bool)
    if hint is str:
        return isinstance(value, str)
    return isinstance(value, hint)

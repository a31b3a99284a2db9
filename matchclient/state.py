from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional


@dataclass
class Session:
    session_id: Optional[str] = None
    player_id: Optional[str] = None
    is_authenticated: bool = False

    def clear(self) -> None:
        self.session_id = None
        self.player_id = None
        self.is_authenticated = False


@dataclass
class MatchmakingRequest:
    table_type: Optional[str] = None
    is_in_matchmaking: bool = False

    def clear(self) -> None:
        self.table_type = None
        self.is_in_matchmaking = False


@dataclass
class GameSession:
    game_session_id: Optional[str] = None
    opponent: Optional[str] = None
    table_type: Optional[str] = None
    play_in_amount: int = 0

    @property
    def active(self) -> bool:
        return bool(self.game_session_id)

    def clear(self) -> None:
        self.game_session_id = None
        self.opponent = None
        self.table_type = None
        self.play_in_amount = 0


@dataclass
class SessionState:
    """
    Identity, matchmaking and game-session state of one client.

    Written only by the MessageDispatcher; everything else reads the properties.
    """
    session: Session = field(default_factory=Session)
    matchmaking: MatchmakingRequest = field(default_factory=MatchmakingRequest)
    game: GameSession = field(default_factory=GameSession)

    @property
    def is_authenticated(self) -> bool:
        return self.session.is_authenticated

    @property
    def session_id(self) -> Optional[str]:
        return self.session.session_id

    @property
    def player_id(self) -> Optional[str]:
        return self.session.player_id

    @property
    def is_in_matchmaking(self) -> bool:
        return self.matchmaking.is_in_matchmaking

    @property
    def table_type(self) -> Optional[str]:
        return self.matchmaking.table_type

    @property
    def game_session_id(self) -> Optional[str]:
        return self.game.game_session_id

    @property
    def has_game_session(self) -> bool:
        return self.game.active

    @property
    def opponent(self) -> Optional[str]:
        return self.game.opponent

    @property
    def play_in_amount(self) -> int:
        return self.game.play_in_amount

    def reset(self) -> None:
        self.session.clear()
        self.matchmaking.clear()
        self.game.clear()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session": asdict(self.session),
            "matchmaking": asdict(self.matchmaking),
            "game": asdict(self.game),
        }

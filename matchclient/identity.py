from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Optional

# Used by the test sequences when no wallet is connected
TEST_ADDRESS = "11111111111111111111111111111111"


class IdentityProvider(ABC):
    """
    Source of the caller's public address (typically a connected wallet).

    Supplied by the host application; the client never looks one up globally.
    """

    @abstractmethod
    def is_connected(self) -> bool:
        """True when an address is currently available."""

    @abstractmethod
    def address(self) -> Optional[str]:
        """The public address, or None when not connected."""


class StaticIdentityProvider(IdentityProvider):
    """Fixed address, or no wallet at all when ``address`` is None."""

    def __init__(self, address: Optional[str] = None) -> None:
        self._address = address or None

    def is_connected(self) -> bool:
        return self._address is not None

    def address(self) -> Optional[str]:
        return self._address

    def __repr__(self) -> str:
        return f"StaticIdentityProvider({self._address!r})"

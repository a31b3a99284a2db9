"""
Scripted flows used by the CLI and for manual smoke testing against a live server.
"""

from __future__ import annotations
import asyncio
from typing import List, Optional, Union

from matchclient.events import ClientEvent
from matchclient.identity import TEST_ADDRESS, IdentityProvider
from matchclient.ws_client import MatchmakingClient
from shared.log import get_logger
from shared.messages import TableType

logger = get_logger(__name__)


async def connect_and_authenticate(
    client: MatchmakingClient,
    address: str,
    timeout: Optional[float] = None,
) -> bool:
    """
    Connect (if needed), wait for connection_established, authenticate and
    wait for the server's answer. Returns True once authenticated.
    """
    if client.is_authenticated:
        return True
    if client.connection.is_disconnected:
        await client.connect()

    if not await client.wait_until(lambda: client.is_connection_established, timeout):
        logger.error("Timed out waiting for connection_established")
        return False
    failures: List[str] = []
    client.events.on(ClientEvent.AUTHENTICATION_FAILED, failures.append)
    try:
        if not await client.authenticate_user(address):
            return False
        done = await client.wait_until(lambda: client.is_authenticated or bool(failures), timeout)
    finally:
        client.events.off(ClientEvent.AUTHENTICATION_FAILED, failures.append)

    if failures:
        logger.error("Authentication rejected for %s: %s", address, failures[0])
        return False
    if not done:
        logger.error("Authentication did not complete for %s", address)
    return done


async def run_match_sequence(
    client: MatchmakingClient,
    identity: Optional[IdentityProvider] = None,
    table_type: Union[TableType, str] = TableType.SMALL,
    timeout: Optional[float] = None,
    settle_delay: float = 1.0,
) -> bool:
    """
    Full happy path: connect, authenticate with the wallet address (or the
    test address when no wallet is connected), heartbeat, then request a match.
    """
    if identity is not None and identity.is_connected() and identity.address():
        address = identity.address()
    else:
        logger.warning("No wallet connected, using test address")
        address = TEST_ADDRESS

    if not await connect_and_authenticate(client, address, timeout):
        return False

    await client.send_heartbeat()
    await asyncio.sleep(settle_delay)
    return await client.request_match(table_type)

import asyncio
import json

import pytest

from fakes import (
    CONNECTION_ESTABLISHED,
    auth_success,
    eventually,
    match_found,
    open_session,
    record_events,
    settle,
)
from matchclient.connection import ConnectionState
from matchclient.events import ClientEvent
from matchclient.identity import StaticIdentityProvider


@pytest.mark.asyncio
async def test_connect_opens_socket_without_establishing(make_client, socket_factory):
    client = make_client(host="match.example.com", port=4000)
    seen = record_events(client.events)

    assert await client.connect() is True
    await eventually(lambda: client.is_connected)

    assert socket_factory.urls == ["ws://match.example.com:4000"]
    assert client.connection_state is ConnectionState.CONNECTED
    assert not client.is_connection_established
    assert seen == [(ClientEvent.CONNECTED, ())]


@pytest.mark.asyncio
async def test_connect_is_noop_while_connected(make_client, socket_factory):
    client = make_client()
    await client.connect()
    await eventually(lambda: client.is_connected)

    assert await client.connect() is False
    await settle()
    assert len(socket_factory.sockets) == 1


@pytest.mark.asyncio
async def test_full_handshake(make_client, socket_factory):
    client = make_client()
    seen = record_events(client.events)

    ws = await open_session(client, socket_factory)

    assert client.connection_state is ConnectionState.AUTHENTICATED
    assert client.player_id == "P1"
    assert client.session_id == "S1"
    auth = ws.sent()[0]
    assert auth["type"] == "authentication"
    assert auth["publicAddress"] == "ADDR1"
    assert isinstance(auth["timestamp"], int)
    assert [event for event, _ in seen] == [
        ClientEvent.CONNECTED,
        ClientEvent.CONNECTION_ESTABLISHED,
        ClientEvent.AUTHENTICATION_SUCCESS,
    ]


@pytest.mark.asyncio
async def test_authenticate_requires_connection_established(make_client, socket_factory):
    client = make_client()
    assert await client.authenticate_user("ADDR1") is False

    await client.connect()
    await eventually(lambda: client.is_connected)
    assert await client.authenticate_user("ADDR1") is False
    assert socket_factory.latest.sent_messages == []


@pytest.mark.asyncio
async def test_authenticate_with_identity(make_client, socket_factory):
    client = make_client(identity=StaticIdentityProvider("WALLET9"))
    ws = await open_session(client, socket_factory, authenticate=False)

    assert await client.authenticate_with_identity() is True
    assert ws.sent()[-1]["publicAddress"] == "WALLET9"


@pytest.mark.asyncio
async def test_authenticate_with_identity_needs_a_wallet(make_client, socket_factory):
    client = make_client(identity=StaticIdentityProvider(None))
    ws = await open_session(client, socket_factory, authenticate=False)

    assert await client.authenticate_with_identity() is False
    assert ws.sent_messages == []


@pytest.mark.asyncio
async def test_request_match_requires_authentication(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory, authenticate=False)

    assert await client.request_match("small") is False
    assert not client.is_in_matchmaking
    assert ws.sent_messages == []


@pytest.mark.asyncio
async def test_request_match(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)
    seen = record_events(client.events)

    assert await client.request_match("small") is True

    assert ws.sent()[-1] == {"type": "request_match", "tableType": "small", "playerId": "P1"}
    assert client.is_in_matchmaking
    assert client.current_table_type == "small"
    assert seen == [(ClientEvent.MATCHMAKING_STARTED, ("small",))]


@pytest.mark.asyncio
async def test_concurrent_match_requests_send_one_frame(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)

    results = await asyncio.gather(client.request_match("small"), client.request_match("big"))

    assert results == [True, False]
    assert ws.sent_types().count("request_match") == 1
    assert client.current_table_type == "small"


@pytest.mark.asyncio
async def test_request_match_rejects_unknown_table(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)

    assert await client.request_match("huge") is False
    assert not client.is_in_matchmaking
    assert ws.sent_types() == ["authentication"]


@pytest.mark.asyncio
async def test_cancel_matchmaking(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)
    assert await client.cancel_matchmaking() is False

    await client.request_match("medium")
    seen = record_events(client.events)
    assert await client.cancel_matchmaking() is True

    assert ws.sent()[-1] == {"type": "cancel_match", "playerId": "P1", "tableType": "medium"}
    assert not client.is_in_matchmaking
    assert client.current_table_type is None
    assert seen == [(ClientEvent.MATCHMAKING_CANCELLED, ())]


@pytest.mark.asyncio
async def test_game_actions_need_a_game_session(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)

    assert await client.send_lock_in() is False
    assert await client.send_card_action("play", {"card": 3}) is False
    assert await client.send_betting_action("call") is False
    assert await client.send_relic_selection(1) is False
    assert await client.send_delegation_ready("D1") is False
    assert ws.sent_types() == ["authentication"]


@pytest.mark.asyncio
async def test_game_actions_carry_the_game_session(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)
    await client.request_match("small")
    ws.feed(match_found(player1="P1", player2="P2", game_session_id="G7"))
    await eventually(lambda: client.current_game_session_id == "G7")

    assert client.opponent == "P2"
    assert client.play_in_amount == 10
    assert not client.is_in_matchmaking

    assert await client.send_delegation_ready("D1") is True
    assert await client.send_relic_selection(2, joker_plus=True) is True
    assert await client.send_card_action("play", {"card": 3}) is True
    assert await client.send_betting_action("raise", 40) is True
    assert await client.send_lock_in() is True

    assert ws.sent()[-5:] == [
        {"type": "delegation_ready", "gameSessionId": "G7", "playerId": "P1", "delegationId": "D1"},
        {"type": "relic_selection", "gameSessionId": "G7", "relicIndex": 2, "jokerPlus": True},
        {"type": "card_action", "gameSessionId": "G7", "action": "play", "data": {"card": 3}},
        {"type": "betting_action", "gameSessionId": "G7", "action": "raise", "amount": 40},
        {"type": "lock_in", "gameSessionId": "G7"},
    ]


@pytest.mark.asyncio
async def test_betting_action_rejects_negative_amount(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)
    ws.feed(match_found())
    await eventually(lambda: client.current_game_session_id == "G1")

    assert await client.send_betting_action("raise", -1) is False
    assert "betting_action" not in ws.sent_types()


@pytest.mark.asyncio
async def test_end_game_session(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)
    ws.feed(match_found())
    await eventually(lambda: client.current_game_session_id == "G1")

    client.end_game_session()

    assert client.current_game_session_id is None
    assert client.opponent is None
    assert client.play_in_amount == 0
    assert client.is_authenticated


@pytest.mark.asyncio
async def test_disconnect_clears_all_state(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)
    await client.request_match("small")
    ws.feed(match_found())
    await eventually(lambda: client.current_game_session_id == "G1")
    seen = record_events(client.events)

    assert await client.disconnect() is True

    assert ws.closed
    assert client.connection_state is ConnectionState.DISCONNECTED
    assert not client.is_authenticated
    assert client.player_id is None
    assert client.session_id is None
    assert not client.is_in_matchmaking
    assert client.current_game_session_id is None
    assert client.play_in_amount == 0
    assert not client.reconnector.armed
    assert seen == [(ClientEvent.DISCONNECTED, ())]
    assert await client.disconnect() is False


@pytest.mark.asyncio
async def test_frames_from_a_closed_socket_are_ignored(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)
    await client.disconnect()

    ws.feed(CONNECTION_ESTABLISHED)
    ws.feed(auth_success())
    await settle()

    assert client.connection_state is ConnectionState.DISCONNECTED
    assert client.player_id is None


@pytest.mark.asyncio
async def test_disconnect_from_an_event_handler(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)

    @client.events.on(ClientEvent.MATCH_FOUND)
    async def leave(game_session_id, opponent, table_type, amount):
        await client.disconnect()

    ws.feed(match_found())
    ws.feed('{"type":"game_state_update","state":"late"}')
    await eventually(lambda: client.connection.is_disconnected)
    await settle()

    assert ws.closed
    assert client.current_game_session_id is None
    assert not client.reconnector.armed
    assert len(socket_factory.sockets) == 1


@pytest.mark.asyncio
async def test_server_close_schedules_reconnection(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)
    seen = record_events(client.events)

    ws.server_close()
    await eventually(lambda: client.connection.is_disconnected)

    assert not client.is_authenticated
    assert client.player_id is None
    assert client.reconnector.armed
    assert seen == [(ClientEvent.DISCONNECTED, ())]


@pytest.mark.asyncio
async def test_abnormal_close_is_handled_like_server_close(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)

    ws.drop()
    await eventually(lambda: client.connection.is_disconnected)

    assert client.reconnector.armed


@pytest.mark.asyncio
async def test_no_reconnection_when_disabled(make_client, socket_factory):
    client = make_client(auto_reconnect=False)
    ws = await open_session(client, socket_factory)

    ws.server_close()
    await eventually(lambda: client.connection.is_disconnected)

    assert not client.reconnector.armed


@pytest.mark.asyncio
async def test_failed_open_returns_to_disconnected(make_client, socket_factory):
    client = make_client()
    socket_factory.fail_next = 1
    seen = record_events(client.events)

    assert await client.connect() is True
    await eventually(lambda: client.connection.is_disconnected)

    assert socket_factory.sockets == []
    assert client.reconnector.armed
    assert seen == [(ClientEvent.DISCONNECTED, ())]


@pytest.mark.asyncio
async def test_malformed_frames_do_not_break_the_connection(make_client, socket_factory):
    client = make_client()
    await client.connect()
    await eventually(lambda: client.is_connected)
    ws = socket_factory.latest

    ws.feed("definitely not json")
    ws.feed('{"type":"mystery"}')
    ws.feed(json.dumps(CONNECTION_ESTABLISHED))
    await eventually(lambda: client.is_connection_established)

    assert client.dispatcher.dropped == 1


@pytest.mark.asyncio
async def test_wait_until_is_released_by_disconnect(make_client, socket_factory):
    client = make_client()
    await open_session(client, socket_factory, authenticate=False)

    waiting = asyncio.create_task(client.wait_until(lambda: client.is_authenticated, 5.0))
    await settle()
    await client.disconnect()

    assert await asyncio.wait_for(waiting, 1.0) is False


@pytest.mark.asyncio
async def test_connection_status(make_client, socket_factory):
    client = make_client()
    assert client.connection_status() == (
        "Connected: False, ConnectionEstablished: False, Authenticated: False, "
        "InMatchmaking: False, Player: None, GameSession: None"
    )

    ws = await open_session(client, socket_factory)
    ws.feed(match_found())
    await eventually(lambda: client.current_game_session_id == "G1")

    assert client.connection_status() == (
        "Connected: True, ConnectionEstablished: True, Authenticated: True, "
        "InMatchmaking: False, Player: P1, GameSession: G1"
    )
    snapshot = client.snapshot()
    assert snapshot["state"] == "AUTHENTICATED"
    assert snapshot["connection_id"] == "C1"
    assert snapshot["game"]["opponent"] == "P2"


@pytest.mark.asyncio
async def test_async_context_manager(make_client, socket_factory):
    client = make_client()
    async with client:
        await eventually(lambda: client.is_connected)
    assert client.connection.is_disconnected
    assert socket_factory.latest.closed


@pytest.mark.asyncio
async def test_send_on_a_closed_socket_returns_false(make_client, socket_factory):
    client = make_client()
    ws = await open_session(client, socket_factory)
    ws.closed = True

    assert await client.send_heartbeat() is False
    assert ws.sent_types() == ["authentication"]

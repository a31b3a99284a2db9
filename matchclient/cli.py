#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import json
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import typer
from aioconsole import ainput
from rich.console import Console
from rich.table import Table

from matchclient.config import ClientConfig, ConfigError
from matchclient.events import ClientEvent
from matchclient.identity import TEST_ADDRESS, StaticIdentityProvider
from matchclient.sequences import connect_and_authenticate, run_match_sequence
from matchclient.ws_client import MatchmakingClient
from shared.log import get_logger
from shared.messages import ProtocolError, build_message, encode

app = typer.Typer(help="Matchmaking session client CLI")
console = Console()
logger = get_logger(__name__)

HELP_TEXT = (
    "/status, /match <small|medium|big>, /cancel, /card <action> [json], "
    "/bet <action> [amount], /lockin, /relic <index> [joker], /delegate <id>, /end, /quit"
)


def _parse_fields(pairs: List[str]) -> Dict[str, Any]:
    """key=value pairs; values are parsed as JSON when they parse, else kept as strings."""
    result: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--field")
        try:
            result[key] = json.loads(value)
        except json.JSONDecodeError:
            result[key] = value
    return result


def _load_config(config: Optional[Path], **overrides: Any) -> ClientConfig:
    try:
        return ClientConfig.load(config, **overrides)
    except ConfigError as e:
        console.print(f"[red]Config error[/]: {e}")
        raise typer.Exit(code=2)


@app.command("encode")
def encode_command(
    msg_type: str = typer.Argument(..., help="Message type, e.g. request_match"),
    field: List[str] = typer.Option([], "--field", "-f", help="Wire field as key=value"),
):
    """Print the wire frame for a message and exit."""
    try:
        message = build_message(msg_type, **_parse_fields(field))
        console.print(encode(message), highlight=False, markup=False, soft_wrap=True)
    except ProtocolError as e:
        console.print(f"[red]Cannot build {msg_type}[/]: {e}")
        raise typer.Exit(code=1)


@app.command()
def status(
    config: Optional[Path] = typer.Option(None, help="YAML config file"),
):
    """Show the effective client configuration."""
    cfg = _load_config(config)
    table = Table(title="Client Configuration")
    table.add_column("Setting")
    table.add_column("Value")
    for f in fields(cfg):
        table.add_row(f.name, str(getattr(cfg, f.name)))
    table.add_row("url", cfg.url)
    console.print(table)


def _print_events(client: MatchmakingClient) -> None:
    on = client.events.on
    on(ClientEvent.CONNECTED, lambda: console.print("[green]Socket open[/]"))
    on(ClientEvent.DISCONNECTED, lambda: console.print("[yellow]Disconnected[/]"))
    on(ClientEvent.CONNECTION_ESTABLISHED,
       lambda connection_id: console.print(f"[green]Connection established[/] ({connection_id})"))
    on(ClientEvent.AUTHENTICATION_SUCCESS,
       lambda player_id: console.print(f"[bold green]Authenticated[/] as {player_id}"))
    on(ClientEvent.AUTHENTICATION_FAILED,
       lambda reason: console.print(f"[red]Authentication failed[/]: {reason}"))
    on(ClientEvent.MATCHMAKING_STARTED,
       lambda table_type: console.print(f"Searching for a match on the {table_type} table..."))
    on(ClientEvent.MATCHMAKING_CANCELLED, lambda: console.print("Matchmaking cancelled"))
    on(ClientEvent.MATCH_FOUND,
       lambda game_session_id, opponent, table_type, amount: console.print(
           f"[bold cyan]Match found[/] {game_session_id}: vs {opponent} ({table_type}, play-in {amount})"))
    on(ClientEvent.GAME_STATE_UPDATE,
       lambda state, data: console.print(f"[dim]state {state}[/] {json.dumps(data) if data is not None else ''}"))
    on(ClientEvent.OPPONENT_DISCONNECTED,
       lambda game_session_id: console.print(f"[yellow]Opponent left game {game_session_id}[/]"))
    on(ClientEvent.ERROR, lambda code, message: console.print(f"[red]ERROR {code}[/]: {message}"))


def _status_table(client: MatchmakingClient) -> Table:
    snapshot = client.snapshot()
    table = Table(title="Session")
    table.add_column("Field")
    table.add_column("Value")
    for key in ("url", "state", "connection_id", "reconnect_armed"):
        table.add_row(key, str(snapshot[key]))
    for section in ("session", "matchmaking", "game"):
        for key, value in snapshot[section].items():
            table.add_row(f"{section}.{key}", str(value))
    return table


async def handle_command(client: MatchmakingClient, line: str) -> bool:
    """Run one interactive command. Returns False when the user asked to quit."""
    cmd, _, rest = line.strip().partition(" ")
    rest = rest.strip()

    if cmd in {"/quit", "/exit"}:
        return False
    if cmd == "/help":
        console.print(HELP_TEXT)
    elif cmd == "/status":
        console.print(client.connection_status())
        console.print(_status_table(client))
    elif cmd == "/match":
        await client.request_match(rest or "small")
    elif cmd == "/cancel":
        await client.cancel_matchmaking()
    elif cmd == "/card":
        action, _, raw = rest.partition(" ")
        if not action:
            console.print("Usage: /card <action> [json]")
            return True
        try:
            data = json.loads(raw) if raw else None
        except json.JSONDecodeError:
            console.print("[red]Card data must be JSON[/]")
            return True
        await client.send_card_action(action, data)
    elif cmd == "/bet":
        action, _, amount = rest.partition(" ")
        if not action or (amount and not amount.strip().isdigit()):
            console.print("Usage: /bet <action> [amount]")
            return True
        await client.send_betting_action(action, int(amount) if amount else 0)
    elif cmd == "/lockin":
        await client.send_lock_in()
    elif cmd == "/relic":
        index, _, joker = rest.partition(" ")
        if not index.isdigit():
            console.print("Usage: /relic <index> [joker]")
            return True
        await client.send_relic_selection(int(index), joker.strip().lower() in {"joker", "true", "1"})
    elif cmd == "/delegate":
        if not rest:
            console.print("Usage: /delegate <id>")
            return True
        await client.send_delegation_ready(rest)
    elif cmd == "/end":
        client.end_game_session()
    else:
        console.print("Unknown command. /help")
    return True


@app.command()
def run(
    host: Optional[str] = typer.Option(None, help="Matchmaking server host"),
    port: Optional[int] = typer.Option(None, help="Matchmaking server port"),
    address: Optional[str] = typer.Option(None, help="Public address to authenticate with"),
    table: Optional[str] = typer.Option(None, help="Request a match on this table once authenticated"),
    config: Optional[Path] = typer.Option(None, help="YAML config file"),
):
    """Connect, authenticate and start the interactive client loop."""
    cfg = _load_config(config, host=host, port=port)
    identity = StaticIdentityProvider(address)
    console.print(f"[bold green]Matchmaking client starting[/] on {cfg.url}")

    async def main_loop() -> None:
        client = MatchmakingClient(cfg, identity=identity)
        _print_events(client)
        try:
            if table:
                ok = await run_match_sequence(client, identity, table, timeout=cfg.handshake_timeout)
            else:
                ok = await connect_and_authenticate(client, address or TEST_ADDRESS, cfg.handshake_timeout)
            if not ok:
                console.print("[red]Could not start a session[/]")
                return

            while True:
                line = (await ainput(": ")).strip()
                if not line:
                    continue
                if not await handle_command(client, line):
                    break
        finally:
            await client.disconnect()

    try:
        asyncio.run(main_loop())
    except (KeyboardInterrupt, EOFError):
        console.print("Bye")


def main() -> None:
    app()


if __name__ == "__main__":
    main()

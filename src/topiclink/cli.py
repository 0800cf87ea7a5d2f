"""Typer-based example application driving the connection manager.

The CLI runs against the in-memory server so that reconnection and
subscription replay can be observed without a real messaging server.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

import typer

from topiclink.config import BackoffSettings, ConnectionSettings, load_settings, settings_from_env
from topiclink.connection import ConnectionManager
from topiclink.domain.errors import TopicLinkError
from topiclink.domain.events import EventBus, ReconnectScheduled, SessionStateChanged, SubscriptionsReplayed
from topiclink.domain.types import SessionState
from topiclink.infrastructure import InMemoryServer, InMemoryTransport
from topiclink.logger import get_logger, setup_logger

logger = get_logger("cli")
app = typer.Typer(
    name="topiclink",
    help="Resilient publish/subscribe session with automatic subscription replay",
    add_completion=False,
)

CommandHandler = Callable[[ConnectionManager, InMemoryServer, str], Awaitable[None]]

DEMO_TOPICS = {
    "prices/eur": 1.07,
    "prices/gbp": 0.86,
    "news/headline": "markets open",
}


def _resolve_settings(config: Optional[Path]) -> ConnectionSettings:
    return load_settings(config) if config is not None else settings_from_env()


def _watch(bus: EventBus) -> None:
    def on_state(event: SessionStateChanged) -> None:
        suffix = f" ({event.error})" if event.error else ""
        typer.echo(f"[state] {event.previous_state.value} -> {event.state.value}{suffix}")

    def on_retry(event: ReconnectScheduled) -> None:
        typer.echo(f"[retry] attempt {event.attempt} in {event.delay:.2f}s")

    def on_replay(event: SubscriptionsReplayed) -> None:
        typer.echo(f"[replay] {', '.join(event.selectors) or '(none)'}")

    bus.subscribe(SessionStateChanged, on_state)
    bus.subscribe(ReconnectScheduled, on_retry)
    bus.subscribe(SubscriptionsReplayed, on_replay)


# ------------------------------------------------------------------------- #
# Interactive commands
# ------------------------------------------------------------------------- #


async def _handle_connect(manager: ConnectionManager, _: InMemoryServer, payload: str) -> None:
    session = await manager.connect(payload.strip() or None)
    typer.echo(f"Connected to {session.url}")


async def _handle_close(manager: ConnectionManager, _: InMemoryServer, __: str) -> None:
    await manager.close()


async def _handle_subscribe(manager: ConnectionManager, _: InMemoryServer, payload: str) -> None:
    if not await manager.subscribe(payload.strip()):
        typer.echo("Already subscribed.")


async def _handle_unsubscribe(manager: ConnectionManager, _: InMemoryServer, payload: str) -> None:
    if not await manager.unsubscribe(payload.strip()):
        typer.echo("Not subscribed.")


async def _handle_test(manager: ConnectionManager, _: InMemoryServer, payload: str) -> None:
    values = await manager.test_connection(payload.strip() or None)
    typer.echo(json.dumps(values, indent=2))


async def _handle_drop(_: ConnectionManager, server: InMemoryServer, payload: str) -> None:
    server.failed_reconnects = int(payload) if payload.strip() else 0
    server.drop_connections()


async def _handle_status(manager: ConnectionManager, _: InMemoryServer, __: str) -> None:
    typer.echo(f"Status: {manager.status.value}")
    typer.echo(f"Selectors: {', '.join(sorted(manager.registry.selectors)) or '(none)'}")
    info = manager.reconnect_info
    typer.echo(f"Attempts: {info['attempts']}  next retry: {info['next_retry_delay']}")


COMMANDS: Dict[str, CommandHandler] = {
    "connect": _handle_connect,
    "close": _handle_close,
    "subscribe": _handle_subscribe,
    "unsubscribe": _handle_unsubscribe,
    "test": _handle_test,
    "drop": _handle_drop,
    "status": _handle_status,
}


def _sanitize_command(text: str) -> str:
    """Normalize command text by removing carriage returns and trimming whitespace."""
    return text.replace("\r", "").strip()


async def _read_command(prompt: str) -> str:
    typer.echo(prompt, nl=False)
    sys.stdout.flush()
    line = await asyncio.get_running_loop().run_in_executor(None, sys.stdin.readline)
    if line == "":
        raise EOFError
    return _sanitize_command(line)


async def _dispatch_command(manager: ConnectionManager, server: InMemoryServer, command: str) -> bool:
    command = _sanitize_command(command)
    if not command:
        return True
    if command == "quit":
        return False

    parts = command.split(maxsplit=1)
    handler = COMMANDS.get(parts[0])
    if handler is None:
        typer.echo(f"Unknown command. Try one of: {', '.join(COMMANDS)}, quit")
        return True

    try:
        await handler(manager, server, parts[1] if len(parts) > 1 else "")
    except TopicLinkError as exc:
        typer.echo(f"Error: {exc}")
    return True


async def _interactive_loop(manager: ConnectionManager, server: InMemoryServer) -> None:
    typer.echo("Commands:")
    typer.echo("  connect [url]           Open the session")
    typer.echo("  close                   Close the session")
    typer.echo("  subscribe <selector>    Add a selector")
    typer.echo("  unsubscribe <selector>  Remove a selector")
    typer.echo("  test [selector]         Fetch topics as a round trip")
    typer.echo("  drop [failures]         Simulate connection loss")
    typer.echo("  status                  Show session state")
    typer.echo("  quit                    Exit")

    while True:
        try:
            command = await _read_command("topiclink> ")
        except (KeyboardInterrupt, EOFError):
            typer.echo("")
            break
        if not await _dispatch_command(manager, server, command):
            break


# ------------------------------------------------------------------------- #
# Scripted demo
# ------------------------------------------------------------------------- #


async def run_demo(settings: ConnectionSettings, failures: int, bus: Optional[EventBus] = None) -> ConnectionManager:
    """
    Connect, subscribe, lose the connection and recover after ``failures`` failed retries.

    Returns:
        The manager, closed
    """
    server = InMemoryServer(topics=DEMO_TOPICS)
    manager = ConnectionManager(InMemoryTransport(server), settings=settings, event_bus=bus)

    try:
        await manager.connect()
        for selector in settings.selectors or ["?prices/.*", ">news/headline"]:
            await manager.subscribe(selector)

        server.failed_reconnects = failures
        server.drop_connections()
        await manager.wait_for(SessionState.CONNECTED, SessionState.CLOSED)

        if manager.is_connected:
            values = await manager.test_connection()
            typer.echo(f"Recovered; {len(values)} topic(s) reachable")
    finally:
        await manager.close()
    return manager


@app.command()
def demo(
    failures: int = typer.Option(3, "--failures", min=0, help="Reconnection attempts that fail before success"),
    max_delay: float = typer.Option(0.5, "--max-delay", min=0.001, help="Backoff ceiling in seconds"),
    initial_delay: float = typer.Option(0.05, "--initial-delay", min=0.001, help="First retry delay in seconds"),
    debug: bool = typer.Option(False, "--debug", help="Log to the console"),
) -> None:
    """Run a scripted disconnect/reconnect scenario against the in-memory server."""
    setup_logger(log_level="DEBUG" if debug else "INFO", console_output=debug)
    settings = ConnectionSettings(
        url="memory://demo",
        backoff=BackoffSettings(initial_delay=min(initial_delay, max_delay), max_delay=max_delay),
    )
    bus = EventBus()
    _watch(bus)
    asyncio.run(run_demo(settings, failures, bus))


@app.command()
def interactive(
    config: Optional[Path] = typer.Option(None, "--config", help="JSON settings file"),
    debug: bool = typer.Option(False, "--debug", help="Log to the console"),
) -> None:
    """Drive a session against the in-memory server from the keyboard."""
    setup_logger(log_level="DEBUG" if debug else "INFO", console_output=debug)
    settings = _resolve_settings(config)

    async def runner() -> None:
        bus = EventBus()
        _watch(bus)
        server = InMemoryServer(topics=DEMO_TOPICS)
        manager = ConnectionManager(InMemoryTransport(server), settings=settings, event_bus=bus)
        try:
            for selector in settings.selectors:
                await manager.subscribe(selector)
            await _interactive_loop(manager, server)
        except Exception as exc:
            typer.echo(f"Error: {exc}")
            logger.exception("Fatal error in CLI")
        finally:
            await manager.close()

    asyncio.run(runner())


@app.command("show-config")
def show_config(
    config: Optional[Path] = typer.Option(None, "--config", help="JSON settings file"),
) -> None:
    """Print the resolved settings."""
    typer.echo(_resolve_settings(config).model_dump_json(indent=2, exclude={"credentials"}))


if __name__ == "__main__":
    app()

"""Tests for the in-memory transport used by demos and scenario tests."""

import asyncio
from unittest.mock import MagicMock

import pytest

from tests.fakes import SERVER_URL
from topiclink.domain.errors import (
    EstablishmentError,
    SecurityError,
    SessionClosedError,
    SessionDisconnectedError,
)
from topiclink.domain.protocols import SessionConfiguration
from topiclink.domain.types import GiveUp, Retry, SessionState
from topiclink.infrastructure import InMemoryServer, InMemoryTransport, selector_matches


@pytest.mark.parametrize(
    "selector,path,expected",
    [
        (">prices/eur", "prices/eur", True),
        (">prices/eur", "prices/eur/bid", False),
        ("?prices/.*", "prices/gbp", True),
        ("?prices/.*", "news/headline", False),
        ("*.*", "anything", True),
        ("?[", "anything", False),
        ("news/headline", "news/headline", True),
    ],
)
def test_selector_matches(selector, path, expected):
    assert selector_matches(selector, path) is expected


def _configuration(strategy=None, principal=None, credentials=None):
    strategy = strategy or MagicMock()
    strategy.perform_reconnection.return_value = Retry(0.0)
    return SessionConfiguration(
        reconnection_strategy=strategy,
        listener=MagicMock(),
        principal=principal,
        credentials=credentials,
    )


@pytest.mark.asyncio
async def test_open_establishes_session():
    server = InMemoryServer()
    configuration = _configuration()

    session = await InMemoryTransport(server).open(SERVER_URL, configuration)

    assert session.state is SessionState.CONNECTED
    assert session.url == SERVER_URL
    assert server.sessions == [session]
    configuration.listener.assert_called_once_with(session, SessionState.CONNECTING, SessionState.CONNECTED, None)


@pytest.mark.asyncio
async def test_open_unavailable_server():
    server = InMemoryServer()
    server.available = False

    with pytest.raises(EstablishmentError):
        await InMemoryTransport(server).open(SERVER_URL, _configuration())

    assert server.sessions == []


@pytest.mark.asyncio
async def test_open_rejects_bad_credentials():
    server = InMemoryServer(principals={"admin": "secret"})

    with pytest.raises(SecurityError):
        await InMemoryTransport(server).open(SERVER_URL, _configuration(principal="admin", credentials="nope"))


@pytest.mark.asyncio
async def test_topics_record_requests():
    server = InMemoryServer(topics={"prices/eur": 1.07, "news/headline": "up"})
    session = await InMemoryTransport(server).open(SERVER_URL, _configuration())

    await session.topics.subscribe("?prices/.*")
    await session.topics.unsubscribe("?prices/.*")
    values = await session.topics.fetch(">news/headline")

    assert server.requests == [("subscribe", "?prices/.*", 1), ("unsubscribe", "?prices/.*", 1)]
    assert server.subscriptions(session) == set()
    assert values == {"news/headline": "up"}


@pytest.mark.asyncio
async def test_requests_sent_before_awaiting():
    server = InMemoryServer()
    session = await InMemoryTransport(server).open(SERVER_URL, _configuration())

    pending = session.topics.subscribe("A")

    assert server.requests == [("subscribe", "A", 1)]
    await pending
    assert server.subscriptions(session) == {"A"}


@pytest.mark.asyncio
async def test_denied_selector_is_recorded_and_rejected():
    server = InMemoryServer()
    server.denied_selectors.add("secret")
    session = await InMemoryTransport(server).open(SERVER_URL, _configuration())

    with pytest.raises(SecurityError):
        await session.topics.subscribe("secret")

    assert server.requests_for("subscribe") == ["secret"]
    assert server.subscriptions(session) == set()


@pytest.mark.asyncio
async def test_lose_connection_hands_over_to_strategy():
    server = InMemoryServer()
    configuration = _configuration()
    session = await InMemoryTransport(server).open(SERVER_URL, configuration)
    await session.topics.subscribe("A")

    server.drop_connections()

    assert session.state is SessionState.RECOVERING
    assert server.subscriptions(session) == set()
    configuration.reconnection_strategy.perform_reconnection.assert_called_once()
    with pytest.raises(SessionDisconnectedError):
        await session.topics.subscribe("B")


@pytest.mark.asyncio
async def test_started_attempt_reconnects():
    server = InMemoryServer()
    configuration = _configuration()
    session = await InMemoryTransport(server).open(SERVER_URL, configuration)
    server.drop_connections()
    attempt = configuration.reconnection_strategy.perform_reconnection.call_args.args[0]

    attempt.start()
    attempt.start()
    await asyncio.sleep(0)

    assert session.state is SessionState.CONNECTED
    configuration.reconnection_strategy.on_reconnected.assert_called_once()


@pytest.mark.asyncio
async def test_failed_reconnect_asks_strategy_again():
    server = InMemoryServer()
    configuration = _configuration()
    session = await InMemoryTransport(server).open(SERVER_URL, configuration)
    server.failed_reconnects = 1
    server.drop_connections()
    attempt = configuration.reconnection_strategy.perform_reconnection.call_args.args[0]

    attempt.start()
    await asyncio.sleep(0)

    assert session.state is SessionState.RECOVERING
    assert server.failed_reconnects == 0
    assert configuration.reconnection_strategy.perform_reconnection.call_count == 2


@pytest.mark.asyncio
async def test_aborted_attempt_closes_session():
    server = InMemoryServer()
    configuration = _configuration()
    configuration.reconnection_strategy.perform_reconnection.return_value = GiveUp("done")
    session = await InMemoryTransport(server).open(SERVER_URL, configuration)
    server.drop_connections()
    attempt = configuration.reconnection_strategy.perform_reconnection.call_args.args[0]

    attempt.abort()

    assert session.state is SessionState.CLOSED
    configuration.reconnection_strategy.on_must_close.assert_called_once()
    _, old, new, error = configuration.listener.call_args.args
    assert (old, new) == (SessionState.RECOVERING, SessionState.CLOSED)
    assert isinstance(error, SessionDisconnectedError)


@pytest.mark.asyncio
async def test_close_is_idempotent():
    server = InMemoryServer()
    configuration = _configuration()
    session = await InMemoryTransport(server).open(SERVER_URL, configuration)

    await session.close()
    await session.close()

    assert server.sessions == []
    configuration.reconnection_strategy.on_must_close.assert_called_once()
    with pytest.raises(SessionClosedError):
        await session.topics.fetch("*.*")

"""Shared fixtures for topiclink tests."""

import pytest

from tests.fakes import SERVER_URL
from topiclink.config import BackoffSettings, ConnectionSettings
from topiclink.connection import ConnectionManager
from topiclink.domain.events import EventBus
from topiclink.infrastructure import InMemoryServer, InMemoryTransport


@pytest.fixture
def fast_settings() -> ConnectionSettings:
    """Settings with millisecond backoff so reconnection tests run quickly."""
    return ConnectionSettings(
        url=SERVER_URL,
        backoff=BackoffSettings(initial_delay=0.01, max_delay=0.1, multiplier=2.0),
    )


@pytest.fixture
def server() -> InMemoryServer:
    return InMemoryServer(topics={"A": 1, "B": 2, "prices/eur": 1.07})


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def manager(server, fast_settings, event_bus) -> ConnectionManager:
    return ConnectionManager(InMemoryTransport(server), settings=fast_settings, event_bus=event_bus)

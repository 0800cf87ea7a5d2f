"""Capability contract of the external session transport.

The transport owns the wire protocol, authentication and value delivery.
topiclink consumes it only through the structural types below.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol

from topiclink.domain.types import ReconnectionOutcome, SessionState

__all__ = [
    "TopicsFeature",
    "Session",
    "SessionListener",
    "ReconnectionAttempt",
    "ReconnectionStrategy",
    "SessionConfiguration",
    "SessionFactory",
]


class TopicsFeature(Protocol):
    """Topic operations exposed by an open session.

    ``subscribe`` and ``unsubscribe`` send their request before returning and
    hand back an awaitable that completes when the server acknowledges it.
    """

    def subscribe(self, selector: str) -> Awaitable[None]:
        """Subscribe to the topics matching ``selector``."""
        ...

    def unsubscribe(self, selector: str) -> Awaitable[None]:
        """Unsubscribe from the topics matching ``selector``."""
        ...

    async def fetch(self, selector: str) -> Mapping[str, Any]:
        """Fetch the current values of topics matching ``selector``."""
        ...


class Session(Protocol):
    """A single logical connection to the messaging server."""

    @property
    def url(self) -> str: ...

    @property
    def state(self) -> SessionState: ...

    @property
    def topics(self) -> TopicsFeature: ...

    async def close(self) -> None:
        """Close the session. A closed session cannot be restarted."""
        ...


# Called by the transport on every session state change:
# (session, old_state, new_state, error)
SessionListener = Callable[[Session, SessionState, SessionState, Optional[BaseException]], None]


class ReconnectionAttempt(Protocol):
    """Handle the transport passes to the strategy for one reconnection."""

    def start(self) -> None:
        """Begin the transport-level reconnection now."""
        ...

    def abort(self) -> None:
        """Abandon reconnection; the transport closes the session."""
        ...


class ReconnectionStrategy(Protocol):
    """Policy object the transport consults when connectivity is lost."""

    def perform_reconnection(self, attempt: ReconnectionAttempt) -> ReconnectionOutcome:
        """Decide whether and when ``attempt`` should start."""
        ...

    def on_reconnected(self) -> None:
        """The transport reconnected successfully."""
        ...

    def on_must_close(self) -> None:
        """The session is closing; no further attempts may be scheduled."""
        ...


@dataclass
class SessionConfiguration:
    """Options handed to the transport when opening a session."""

    reconnection_strategy: ReconnectionStrategy
    listener: SessionListener
    principal: Optional[str] = None
    credentials: Optional[str] = None


class SessionFactory(Protocol):
    """Entry point of the transport library."""

    async def open(self, url: str, configuration: SessionConfiguration) -> Session:
        """Open a session, raising on establishment failure."""
        ...

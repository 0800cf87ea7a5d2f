"""In-memory transport simulating a messaging server.

This module implements the transport protocols against an in-process server
so that the connection layer can be exercised without a network. It is meant
for tests, demos and development. All callbacks run on the event loop that
opened the session.

Example:
    >>> server = InMemoryServer(topics={"prices/eur": 1.07})
    >>> transport = InMemoryTransport(server)
    >>> manager = ConnectionManager(transport)
    >>> session = await manager.connect("memory://prices")
    >>> server.drop_connections()   # session starts recovering
"""

import asyncio
import re
from typing import Any, Callable, Mapping, Optional

from topiclink.domain.errors import (
    EstablishmentError,
    SecurityError,
    SessionClosedError,
    SessionDisconnectedError,
    SessionError,
)
from topiclink.domain.protocols import SessionConfiguration
from topiclink.domain.types import SessionState
from topiclink.logger import get_logger

logger = get_logger("infrastructure.memory")


def selector_matches(selector: str, path: str) -> bool:
    """
    Match a topic path against a selector expression.

    ``>path`` selects exactly one path, ``?pattern`` and ``*pattern`` select
    paths matching a regular expression, and any other selector is treated as
    an exact path.
    """
    if selector.startswith(">"):
        return path == selector[1:]
    if selector[:1] in ("?", "*"):
        try:
            return re.fullmatch(selector[1:], path) is not None
        except re.error:
            return False
    return path == selector


class InMemoryServer:
    """A simulated messaging server with fault injection.

    Attributes:
        topics: Topic values keyed by path
        requests: Every subscribe/unsubscribe request received, in order, as
            (operation, selector, session id)
        available: Whether new connections and reconnections succeed
        failed_reconnects: Number of upcoming reconnection attempts to refuse
        denied_selectors: Selectors whose subscribe/unsubscribe is rejected
        principals: Accepted credentials by principal (any principal is
            accepted when empty)
        revoked: Principals refused from now on
    """

    def __init__(
        self,
        topics: Optional[Mapping[str, Any]] = None,
        principals: Optional[Mapping[str, str]] = None,
    ):
        self.topics: dict[str, Any] = dict(topics or {})
        self.principals: dict[str, str] = dict(principals or {})
        self.requests: list[tuple[str, str, int]] = []
        self.available = True
        self.failed_reconnects = 0
        self.denied_selectors: set[str] = set()
        self.revoked: set[str] = set()
        self._sessions: list["InMemorySession"] = []
        self._next_id = 1

    @property
    def sessions(self) -> list["InMemorySession"]:
        """Sessions that are not closed."""
        return [s for s in self._sessions if s.state is not SessionState.CLOSED]

    def subscriptions(self, session: "InMemorySession") -> set[str]:
        """Selectors currently subscribed by ``session``."""
        return set(session.subscribed)

    def requests_for(self, operation: str) -> list[str]:
        """Selectors of every request of the given operation, in order."""
        return [selector for op, selector, _ in self.requests if op == operation]

    def drop_connections(self) -> None:
        """Simulate a network failure for every connected session."""
        for session in self.sessions:
            if session.state is SessionState.CONNECTED:
                session.lose_connection()

    def revoke(self, principal: Optional[str]) -> None:
        """Stop accepting ``principal``; its reconnections fail with SecurityError."""
        self.revoked.add(principal or "")

    def _authenticate(self, principal: Optional[str], credentials: Optional[str]) -> None:
        if (principal or "") in self.revoked:
            raise SecurityError(f"Principal {principal!r} has been revoked")
        if not self.principals:
            return
        if principal is None or self.principals.get(principal) != credentials:
            raise SecurityError(f"Authentication failed for principal {principal!r}")

    def _register(self, configuration: SessionConfiguration, url: str) -> "InMemorySession":
        session = InMemorySession(self, url, configuration, self._next_id)
        self._next_id += 1
        self._sessions.append(session)
        return session


class InMemoryTopics:
    """Topics feature of an in-memory session."""

    def __init__(self, session: "InMemorySession"):
        self._session = session

    def subscribe(self, selector: str) -> "asyncio.Future[None]":
        """Send a subscribe request; the returned future carries the server's answer."""
        return self._request("subscribe", selector, self._session.subscribed.add)

    def unsubscribe(self, selector: str) -> "asyncio.Future[None]":
        """Send an unsubscribe request; the returned future carries the server's answer."""
        return self._request("unsubscribe", selector, self._session.subscribed.discard)

    async def fetch(self, selector: str) -> dict[str, Any]:
        self._session.ensure_connected()
        return {path: value for path, value in self._session.server.topics.items() if selector_matches(selector, path)}

    def _request(self, operation: str, selector: str, apply: Callable[[str], None]) -> "asyncio.Future[None]":
        session = self._session
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        try:
            session.ensure_connected()
            session.server.requests.append((operation, selector, session.session_id))
            if selector in session.server.denied_selectors:
                raise SecurityError(f"Permission denied to {operation} {selector}")
        except SessionError as e:
            future.set_exception(e)
            return future

        apply(selector)
        future.set_result(None)
        return future


class _Attempt:
    """Reconnection attempt handle given to the strategy."""

    def __init__(self, session: "InMemorySession"):
        self._session = session
        self._used = False

    def start(self) -> None:
        if self._used:
            return
        self._used = True
        asyncio.get_running_loop().call_soon(self._session._try_reconnect)

    def abort(self) -> None:
        if self._used:
            return
        self._used = True
        self._session._close(SessionDisconnectedError("Reconnection abandoned by strategy"))


class InMemorySession:
    """A session of the in-memory server."""

    def __init__(self, server: InMemoryServer, url: str, configuration: SessionConfiguration, session_id: int):
        self.server = server
        self.session_id = session_id
        self.configuration = configuration
        self.subscribed: set[str] = set()
        self._url = url
        self._state = SessionState.CONNECTING
        self._topics = InMemoryTopics(self)

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def topics(self) -> InMemoryTopics:
        return self._topics

    def ensure_connected(self) -> None:
        if self._state is SessionState.CLOSED:
            raise SessionClosedError(f"Session {self.session_id} is closed")
        if self._state is not SessionState.CONNECTED:
            raise SessionDisconnectedError(f"Session {self.session_id} is {self._state.value}")

    async def close(self) -> None:
        """Close the session locally. Closing twice is a no-op."""
        self._close(None)

    def lose_connection(self) -> None:
        """Simulate loss of connectivity and hand over to the strategy."""
        if self._state is not SessionState.CONNECTED:
            return
        # Server-side subscriptions do not survive the lost connection.
        self.subscribed.clear()
        self._set_state(SessionState.RECOVERING)
        self.configuration.reconnection_strategy.perform_reconnection(_Attempt(self))

    def _try_reconnect(self) -> None:
        if self._state is not SessionState.RECOVERING:
            return

        server = self.server
        try:
            server._authenticate(self.configuration.principal, self.configuration.credentials)
        except SecurityError as e:
            logger.warning(f"Session {self.session_id} reconnection rejected: {e}")
            self._close(e)
            return

        if not server.available or server.failed_reconnects > 0:
            if server.failed_reconnects > 0:
                server.failed_reconnects -= 1
            logger.debug(f"Session {self.session_id} reconnection attempt failed")
            self.configuration.reconnection_strategy.perform_reconnection(_Attempt(self))
            return

        self.configuration.reconnection_strategy.on_reconnected()
        self._set_state(SessionState.CONNECTED)

    def _establish(self) -> None:
        self._set_state(SessionState.CONNECTED)

    def _close(self, error: Optional[BaseException]) -> None:
        if self._state is SessionState.CLOSED:
            return
        self.subscribed.clear()
        self.configuration.reconnection_strategy.on_must_close()
        self._set_state(SessionState.CLOSED, error)

    def _set_state(self, state: SessionState, error: Optional[BaseException] = None) -> None:
        old_state, self._state = self._state, state
        logger.debug(f"Session {self.session_id}: {old_state.value} -> {state.value}")
        self.configuration.listener(self, old_state, state, error)


class InMemoryTransport:
    """Session factory connecting to an ``InMemoryServer``."""

    def __init__(self, server: Optional[InMemoryServer] = None, connect_delay: float = 0.0):
        """
        Initialize the transport.

        Args:
            server: Server to connect to (a new empty one when not provided)
            connect_delay: Seconds each open() takes
        """
        self.server = server or InMemoryServer()
        self._connect_delay = connect_delay

    async def open(self, url: str, configuration: SessionConfiguration) -> InMemorySession:
        """
        Open a session against the in-memory server.

        Raises:
            EstablishmentError: If the server is unavailable
            SecurityError: If the credentials are rejected
        """
        if self._connect_delay:
            await asyncio.sleep(self._connect_delay)
        if not self.server.available:
            raise EstablishmentError(url, ConnectionRefusedError("server unavailable"))
        self.server._authenticate(configuration.principal, configuration.credentials)

        session = self.server._register(configuration, url)
        session._establish()
        return session

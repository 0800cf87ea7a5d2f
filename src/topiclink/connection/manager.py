"""Connection manager owning the single session to the messaging server."""

import asyncio
from typing import Any, Callable, Mapping, Optional

from topiclink.config import ConnectionSettings
from topiclink.domain.errors import (
    EstablishmentError,
    NotConnectedError,
    SessionAlreadyOpenError,
    SessionClosedError,
    SessionDisconnectedError,
    SessionError,
)
from topiclink.domain.events import (
    EventBus,
    ReconnectScheduled,
    SessionStateChanged,
    SubscriptionsReplayed,
)
from topiclink.domain.protocols import Session, SessionConfiguration, SessionFactory
from topiclink.domain.types import SessionState
from topiclink.logger import get_logger
from topiclink.subscriptions import SubscriptionRegistry

from .backoff import BackoffPolicy
from .lifecycle import SessionLifecycle, StatusCallback
from .reconnect import BackoffReconnectionStrategy

logger = get_logger("connection.manager")


class ConnectionManager:
    """
    Maintains one resilient session and keeps its subscriptions alive.

    This manager coordinates:
    - The session lifecycle (connecting, connected, recovering, closed)
    - A backoff reconnection strategy handed to the transport for each session
    - Replay of the subscription registry on every (re)connection, completed
      before CONNECTED is reported

    Transport notifications may arrive on any thread; they are handled on the
    event loop that opened the session.
    """

    def __init__(
        self,
        transport: SessionFactory,
        registry: Optional[SubscriptionRegistry] = None,
        *,
        settings: Optional[ConnectionSettings] = None,
        lifecycle: Optional[SessionLifecycle] = None,
        event_bus: Optional[EventBus] = None,
        on_state_change: Optional[StatusCallback] = None,
    ):
        """
        Initialize connection manager.

        Args:
            transport: Transport library entry point used to open sessions
            registry: Subscription registry (a new one when not provided)
            settings: Default settings used by connect()
            lifecycle: Lifecycle instance (created if not provided)
            event_bus: Optional bus receiving state, retry and replay events
            on_state_change: Callback invoked with (new, old, error) on state changes
        """
        self._transport = transport
        self._registry = registry or SubscriptionRegistry()
        self._registry.bind(self._connected_session)
        self._settings = settings or ConnectionSettings()
        self._lifecycle = lifecycle or SessionLifecycle()
        self._event_bus = event_bus
        if on_state_change:
            self._lifecycle.add_observer(on_state_change)
        self._lifecycle.add_observer(self._publish_state)

        self._session: Optional[Session] = None
        self._strategy: Optional[BackoffReconnectionStrategy] = None
        self._url: Optional[str] = None
        self._active_settings: Optional[ConnectionSettings] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # --------------------------------------------------------------------- #
    # Properties
    # --------------------------------------------------------------------- #

    @property
    def status(self) -> SessionState:
        """Current session state."""
        return self._lifecycle.status

    @property
    def is_connected(self) -> bool:
        return self._lifecycle.is_connected and self._session is not None

    @property
    def session(self) -> Optional[Session]:
        """The open session, if any."""
        return self._session

    @property
    def url(self) -> Optional[str]:
        """URL of the current or most recent session."""
        return self._url

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._registry

    @property
    def last_error(self) -> Optional[BaseException]:
        """Error that closed the most recent session, if any."""
        return self._lifecycle.error

    @property
    def reconnect_info(self) -> dict[str, Any]:
        """
        Reconnection progress information.

        Returns:
            Dictionary with:
            - attempts: Retries since the last successful connection
            - max_attempts: Configured retry limit (None for unbounded)
            - next_retry_delay: Delay of the pending retry, if one is scheduled
            - error: Error that closed the last session, if any
        """
        strategy = self._strategy
        settings = self._active_settings or self._settings
        pending = strategy is not None and strategy.has_pending_retry
        return {
            "attempts": strategy.attempts if strategy else 0,
            "max_attempts": settings.backoff.max_attempts,
            "next_retry_delay": strategy.last_delay if pending and strategy else None,
            "error": self._lifecycle.error,
        }

    # --------------------------------------------------------------------- #
    # Connection lifecycle
    # --------------------------------------------------------------------- #

    async def connect(self, url: Optional[str] = None, settings: Optional[ConnectionSettings] = None) -> Session:
        """
        Open the session and replay registered subscriptions onto it.

        An open session to the same URL is reused.

        Args:
            url: Server URL (defaults to the settings URL)
            settings: Settings for this session (defaults to the manager's)

        Returns:
            The session; it is recovering if connectivity was lost before
            open() returned

        Raises:
            SessionAlreadyOpenError: If a different session is open or connecting
            EstablishmentError: If the session could not be established
            SecurityError: If the server rejected the credentials
            SessionClosedError: If close() was called while connecting
            SessionDisconnectedError: If the session closed before open() returned
        """
        settings = settings or self._settings
        url = url or settings.url

        if not self._lifecycle.is_closed:
            if self._session is not None and url == self._url:
                logger.info(f"Reusing open session to {url}")
                return self._session
            raise SessionAlreadyOpenError(
                f"A session to {self._url} is {self.status.value}; close it before connecting to {url}"
            )

        logger.info(f"Connecting to {url}")
        self._loop = asyncio.get_running_loop()
        self._url = url
        self._active_settings = settings
        self._lifecycle.set_status(SessionState.CONNECTING)

        strategy = BackoffReconnectionStrategy(
            BackoffPolicy.from_settings(settings.backoff),
            loop=self._loop,
            max_attempts=settings.backoff.max_attempts,
            on_retry_scheduled=self._on_retry_scheduled,
        )
        self._strategy = strategy
        configuration = SessionConfiguration(
            reconnection_strategy=strategy,
            listener=self._on_transport_state,
            principal=settings.principal,
            credentials=settings.credentials,
        )

        try:
            session = await self._transport.open(url, configuration)
        except asyncio.CancelledError:
            strategy.cancel()
            if self._lifecycle.status is SessionState.CONNECTING:
                self._lifecycle.set_status(SessionState.CLOSED)
            raise
        except Exception as e:
            strategy.cancel()
            error = e if isinstance(e, SessionError) else EstablishmentError(url, e)
            logger.error(f"Failed to establish session with {url}: {e}")
            if self._lifecycle.status is SessionState.CONNECTING:
                self._lifecycle.set_status(SessionState.CLOSED, error)
            if error is e:
                raise
            raise error from e

        if self._lifecycle.status is not SessionState.CONNECTING or self._strategy is not strategy:
            logger.info(f"Session to {url} was closed while connecting")
            strategy.cancel()
            await session.close()
            raise SessionClosedError(f"Session to {url} was closed while connecting")

        # Notifications sent before open() returned were not applied; catch up
        # with the state the transport reached in the meantime.
        state = session.state
        if state is SessionState.CLOSED:
            strategy.cancel()
            error = SessionDisconnectedError(f"Session to {url} closed while it was being established")
            logger.error(str(error))
            self._lifecycle.set_status(SessionState.CLOSED, error)
            raise error

        self._session = session
        if state is SessionState.RECOVERING:
            logger.warning(f"Connection to {url} lost while establishing; recovering")
            self._lifecycle.set_status(SessionState.RECOVERING)
            return session

        self._replay(session)
        self._lifecycle.set_status(SessionState.CONNECTED)
        logger.info(f"Connected to {url}")
        return session

    async def close(self) -> None:
        """
        Close the session and stop reconnecting. Idempotent.

        Registered selectors are kept for a future connect().
        """
        if self._lifecycle.is_closed:
            logger.debug("Close requested but no session is open")
            return

        logger.info(f"Closing session to {self._url}")
        session, strategy = self._session, self._strategy
        self._session = None
        if strategy is not None:
            strategy.cancel()
        self._lifecycle.set_status(SessionState.CLOSED)

        if session is not None:
            try:
                await session.close()
            except Exception as e:
                logger.error(f"Error closing session to {self._url}: {e}")
        logger.info("Session closed")

    async def wait_for(self, *states: SessionState, timeout: Optional[float] = None) -> SessionState:
        """Wait until the session reaches one of ``states``."""
        return await self._lifecycle.wait_for(*states, timeout=timeout)

    # --------------------------------------------------------------------- #
    # Subscriptions and diagnostics
    # --------------------------------------------------------------------- #

    async def subscribe(self, selector: str) -> bool:
        """Register ``selector``; see SubscriptionRegistry.add."""
        return await self._registry.add(selector)

    async def unsubscribe(self, selector: str) -> bool:
        """Deregister ``selector``; see SubscriptionRegistry.remove."""
        return await self._registry.remove(selector)

    async def test_connection(self, selector: Optional[str] = None) -> Mapping[str, Any]:
        """
        Fetch topics as a round trip to the server.

        Args:
            selector: Selector to fetch (defaults to the diagnostic selector)

        Returns:
            The fetched topic values keyed by path

        Raises:
            NotConnectedError: Immediately, if the session is not connected
        """
        session = self._connected_session()
        if session is None:
            raise NotConnectedError(f"Cannot test connection while {self.status.value}")

        selector = selector or (self._active_settings or self._settings).diagnostic_selector
        result = await session.topics.fetch(selector)
        logger.info(f"Connection test fetched {len(result)} topic(s) for {selector}")
        return result

    # --------------------------------------------------------------------- #
    # Transport notifications
    # --------------------------------------------------------------------- #

    def _on_transport_state(
        self,
        session: Session,
        old_state: SessionState,
        new_state: SessionState,
        error: Optional[BaseException] = None,
    ) -> None:
        """Session listener handed to the transport; may run on any thread."""
        self._call_on_loop(self._handle_transport_state, session, old_state, new_state, error)

    def _handle_transport_state(
        self,
        session: Session,
        old_state: SessionState,
        new_state: SessionState,
        error: Optional[BaseException],
    ) -> None:
        if session is not self._session:
            # Establishment notifications arrive before open() returns and
            # are handled by connect(); others belong to a closed session.
            logger.debug(f"Ignoring {old_state.value} -> {new_state.value} for inactive session")
            return

        logger.debug(f"Transport reported {old_state.value} -> {new_state.value}")
        status = self._lifecycle.status

        if new_state is SessionState.RECOVERING:
            if status is SessionState.CONNECTED:
                logger.warning(f"Connection to {self._url} lost; recovering")
                self._lifecycle.set_status(SessionState.RECOVERING)

        elif new_state is SessionState.CONNECTED:
            if status is SessionState.RECOVERING:
                self._replay(session)
                self._lifecycle.set_status(SessionState.CONNECTED)
                logger.info(f"Reconnected to {self._url}")

        elif new_state is SessionState.CLOSED:
            self._session = None
            if self._strategy is not None:
                self._strategy.cancel()
            if error is not None:
                logger.error(f"Session to {self._url} closed: {error}")
            else:
                logger.info(f"Session to {self._url} closed by transport")
            self._lifecycle.set_status(SessionState.CLOSED, error)

    # --------------------------------------------------------------------- #
    # Internal helpers
    # --------------------------------------------------------------------- #

    def _connected_session(self) -> Optional[Session]:
        """Session getter handed to the registry."""
        return self._session if self._lifecycle.is_connected else None

    def _replay(self, session: Session) -> None:
        self._registry.replay_all(session)
        self._publish(SubscriptionsReplayed(url=self._url, selectors=tuple(sorted(self._registry.selectors))))

    def _on_retry_scheduled(self, attempt: int, delay: float) -> None:
        event = ReconnectScheduled(url=self._url, attempt=attempt, delay=delay)
        self._call_on_loop(self._publish, event)

    def _call_on_loop(self, callback: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            callback(*args)
        else:
            loop.call_soon_threadsafe(callback, *args)

    def _publish_state(
        self,
        state: SessionState,
        previous_state: SessionState,
        error: Optional[BaseException],
    ) -> None:
        self._publish(SessionStateChanged(url=self._url, state=state, previous_state=previous_state, error=error))

    def _publish(self, event: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event)

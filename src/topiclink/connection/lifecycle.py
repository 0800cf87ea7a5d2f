"""Session lifecycle state machine."""

import asyncio
from typing import Callable, Optional

from topiclink.domain.types import SessionState
from topiclink.logger import get_logger

logger = get_logger("connection.lifecycle")

# Valid state transitions. CLOSED -> CONNECTING starts a new session.
VALID_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CLOSED: frozenset({SessionState.CONNECTING}),
    SessionState.CONNECTING: frozenset({SessionState.CONNECTED, SessionState.RECOVERING, SessionState.CLOSED}),
    SessionState.CONNECTED: frozenset({SessionState.RECOVERING, SessionState.CLOSED}),
    SessionState.RECOVERING: frozenset({SessionState.CONNECTED, SessionState.CLOSED}),
}

StatusCallback = Callable[[SessionState, SessionState, Optional[BaseException]], None]


class InvalidTransitionError(RuntimeError):
    """A state change not allowed by the lifecycle was requested."""


class SessionLifecycle:
    """Tracks the state of the managed session and notifies observers."""

    def __init__(self, on_status_change: Optional[StatusCallback] = None):
        """
        Initialize the lifecycle in the CLOSED state.

        Args:
            on_status_change: Callback invoked with (new, old, error) on every change
        """
        self._status = SessionState.CLOSED
        self._error: Optional[BaseException] = None
        self._observers: list[StatusCallback] = []
        if on_status_change:
            self._observers.append(on_status_change)
        self._waiters: list[tuple[frozenset[SessionState], asyncio.Future]] = []

    @property
    def status(self) -> SessionState:
        """Current session state."""
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status is SessionState.CONNECTED

    @property
    def is_closed(self) -> bool:
        return self._status is SessionState.CLOSED

    @property
    def error(self) -> Optional[BaseException]:
        """Error that closed the last session, if it closed abnormally."""
        return self._error

    def add_observer(self, callback: StatusCallback) -> None:
        if callback not in self._observers:
            self._observers.append(callback)

    def remove_observer(self, callback: StatusCallback) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    def can_transition(self, status: SessionState) -> bool:
        return status in VALID_TRANSITIONS[self._status]

    def set_status(self, status: SessionState, error: Optional[BaseException] = None) -> None:
        """
        Move to ``status`` and notify observers.

        Setting the current status again is a no-op.

        Args:
            status: New session state
            error: Terminal error, recorded when moving to CLOSED

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if status is self._status:
            return
        if not self.can_transition(status):
            raise InvalidTransitionError(f"Invalid transition {self._status.value} -> {status.value}")

        old_status = self._status
        self._status = status
        if status is SessionState.CLOSED:
            self._error = error
        elif status is SessionState.CONNECTING:
            self._error = None

        logger.debug(f"Status changed: {old_status.value} -> {status.value}")

        self._wake_waiters()
        for observer in list(self._observers):
            try:
                observer(status, old_status, self._error)
            except Exception as e:
                logger.error(f"Error in status change callback: {e}")

    async def wait_for(self, *states: SessionState, timeout: Optional[float] = None) -> SessionState:
        """
        Wait until the lifecycle reaches one of ``states``.

        Returns:
            The state that was reached

        Raises:
            asyncio.TimeoutError: If timeout elapses first
        """
        wanted = frozenset(states)
        if self._status in wanted:
            return self._status

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        entry = (wanted, future)
        self._waiters.append(entry)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            if entry in self._waiters:
                self._waiters.remove(entry)

    def _wake_waiters(self) -> None:
        for wanted, future in list(self._waiters):
            if self._status in wanted and not future.done():
                future.set_result(self._status)

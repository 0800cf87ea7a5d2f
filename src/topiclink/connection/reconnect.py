"""Reconnection strategy consulted by the transport when a session is lost."""

import asyncio
import threading
from typing import Callable, Optional

from topiclink.domain.protocols import ReconnectionAttempt
from topiclink.domain.types import GiveUp, ReconnectionOutcome, Retry
from topiclink.logger import get_logger

from .backoff import BackoffPolicy

logger = get_logger("connection.reconnect")


class _PendingTimer:
    """Stands in for a timer that is being armed on the loop."""

    def cancel(self) -> None:
        pass


_PENDING = _PendingTimer()


class BackoffReconnectionStrategy:
    """
    Schedule reconnection attempts with capped exponential backoff.

    The transport calls ``perform_reconnection`` each time it needs to start a
    reconnection attempt, possibly from one of its own threads. The attempt
    counter and the single pending timer are shared state guarded by a lock;
    timers always live on the strategy's event loop.

    The strategy never raises into the transport. Anything that prevents a
    retry from being scheduled turns into a give-up.
    """

    def __init__(
        self,
        policy: BackoffPolicy,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        max_attempts: Optional[int] = None,
        on_retry_scheduled: Optional[Callable[[int, float], None]] = None,
    ):
        """
        Initialize the strategy.

        Args:
            policy: Backoff policy computing each delay
            loop: Event loop owning the retry timers (defaults to the running loop)
            max_attempts: Give up after this many consecutive retries (None for unbounded)
            on_retry_scheduled: Callback invoked with (attempt number, delay) for each retry
        """
        self._policy = policy
        self._loop = loop or asyncio.get_running_loop()
        self._max_attempts = max_attempts
        self._on_retry_scheduled = on_retry_scheduled

        self._lock = threading.Lock()
        self._attempts = 0
        self._timer: Optional[asyncio.TimerHandle | _PendingTimer] = None
        # Bumped whenever the pending retry is superseded or cancelled.
        self._generation = 0
        self._closed = False
        self._last_delay: Optional[float] = None

    @property
    def attempts(self) -> int:
        """Retries scheduled since the last successful (re)connection."""
        with self._lock:
            return self._attempts

    @property
    def last_delay(self) -> Optional[float]:
        """Delay of the most recently scheduled retry."""
        with self._lock:
            return self._last_delay

    @property
    def has_pending_retry(self) -> bool:
        """Whether a retry timer is armed or about to be armed."""
        with self._lock:
            return self._timer is not None

    @property
    def is_closed(self) -> bool:
        with self._lock:
            return self._closed

    def perform_reconnection(self, attempt: ReconnectionAttempt) -> ReconnectionOutcome:
        """
        Decide whether ``attempt`` should start, and schedule it.

        Returns:
            Retry with the scheduled delay, or GiveUp after aborting the attempt
        """
        with self._lock:
            if self._closed:
                outcome: ReconnectionOutcome = GiveUp("strategy closed")
            elif self._max_attempts is not None and self._attempts >= self._max_attempts:
                outcome = GiveUp(f"gave up after {self._attempts} attempts")
            else:
                delay = self._policy.next_delay(self._attempts)
                self._attempts += 1
                self._cancel_timer_locked()
                generation = self._generation
                # Placeholder until the real handle is armed on the loop.
                self._timer = _PENDING
                self._last_delay = delay
                number = self._attempts
                outcome = Retry(delay)

        if isinstance(outcome, GiveUp):
            logger.warning(f"Reconnection abandoned: {outcome.reason}")
            self._abort(attempt)
            return outcome

        try:
            self._schedule(delay, generation, attempt)
        except Exception as e:
            logger.error(f"Unable to schedule reconnection attempt: {e}")
            self.cancel()
            self._abort(attempt)
            return GiveUp(f"scheduling failed: {e}")

        logger.info(f"Reconnection attempt {number} in {delay:.2f}s")
        if self._on_retry_scheduled:
            try:
                self._on_retry_scheduled(number, delay)
            except Exception as e:
                logger.error(f"Error in retry scheduled callback: {e}")
        return outcome

    def on_reconnected(self) -> None:
        """Reset the backoff sequence after a successful reconnection."""
        with self._lock:
            self._cancel_timer_locked()
            self._attempts = 0
        logger.debug("Reconnected; backoff reset")

    def on_must_close(self) -> None:
        """The transport is closing the session; stop for good."""
        self.cancel()

    def cancel(self) -> None:
        """Cancel any pending retry and refuse all further attempts. Idempotent."""
        with self._lock:
            if self._closed and self._timer is None:
                return
            self._closed = True
            self._cancel_timer_locked()
        logger.debug("Reconnection strategy closed")

    def _schedule(self, delay: float, generation: int, attempt: ReconnectionAttempt) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self._loop:
            self._arm(delay, generation, attempt)
        else:
            self._loop.call_soon_threadsafe(self._arm, delay, generation, attempt)

    def _arm(self, delay: float, generation: int, attempt: ReconnectionAttempt) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = self._loop.call_later(delay, self._fire, generation, attempt)

    def _fire(self, generation: int, attempt: ReconnectionAttempt) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None

        try:
            attempt.start()
        except Exception as e:
            logger.error(f"Reconnection attempt failed to start: {e}")
            self.cancel()
            self._abort(attempt)

    def _cancel_timer_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._generation += 1

    @staticmethod
    def _abort(attempt: ReconnectionAttempt) -> None:
        try:
            attempt.abort()
        except Exception as e:
            logger.error(f"Error aborting reconnection attempt: {e}")

"""Tests for the backoff reconnection strategy."""

import asyncio
from unittest.mock import MagicMock

import pytest

from topiclink.connection import BackoffPolicy, BackoffReconnectionStrategy
from topiclink.domain.types import GiveUp, Retry


def _attempt() -> MagicMock:
    return MagicMock(spec=["start", "abort"])


def _policy() -> BackoffPolicy:
    return BackoffPolicy(initial_delay=0.01, max_delay=0.05, multiplier=2.0)


class TestBackoffReconnectionStrategy:
    """Tests for BackoffReconnectionStrategy."""

    @pytest.mark.asyncio
    async def test_schedules_start_after_delay(self):
        strategy = BackoffReconnectionStrategy(_policy())
        attempt = _attempt()

        outcome = strategy.perform_reconnection(attempt)

        assert outcome == Retry(0.01)
        assert strategy.attempts == 1
        assert strategy.has_pending_retry
        attempt.start.assert_not_called()

        await asyncio.sleep(0.05)

        attempt.start.assert_called_once()
        attempt.abort.assert_not_called()
        assert not strategy.has_pending_retry

    @pytest.mark.asyncio
    async def test_delays_grow_and_cap(self):
        strategy = BackoffReconnectionStrategy(_policy())

        delays = [strategy.perform_reconnection(_attempt()).delay for _ in range(5)]

        assert delays == [0.01, 0.02, 0.04, 0.05, 0.05]
        strategy.cancel()

    @pytest.mark.asyncio
    async def test_new_attempt_cancels_pending_timer(self):
        strategy = BackoffReconnectionStrategy(_policy())
        first, second = _attempt(), _attempt()

        strategy.perform_reconnection(first)
        strategy.perform_reconnection(second)
        await asyncio.sleep(0.06)

        first.start.assert_not_called()
        second.start.assert_called_once()

    @pytest.mark.asyncio
    async def test_reconnected_resets_counter(self):
        strategy = BackoffReconnectionStrategy(_policy())
        for _ in range(3):
            strategy.perform_reconnection(_attempt())

        strategy.on_reconnected()

        assert strategy.attempts == 0
        assert not strategy.has_pending_retry
        assert strategy.perform_reconnection(_attempt()) == Retry(0.01)
        strategy.cancel()

    @pytest.mark.asyncio
    async def test_cancel_releases_timer_and_refuses_retries(self):
        strategy = BackoffReconnectionStrategy(_policy())
        pending = _attempt()
        strategy.perform_reconnection(pending)

        strategy.cancel()
        strategy.cancel()
        await asyncio.sleep(0.03)

        pending.start.assert_not_called()
        assert not strategy.has_pending_retry
        assert strategy.is_closed

        later = _attempt()
        outcome = strategy.perform_reconnection(later)

        assert isinstance(outcome, GiveUp)
        later.abort.assert_called_once()
        later.start.assert_not_called()

    @pytest.mark.asyncio
    async def test_must_close_stops_retries(self):
        strategy = BackoffReconnectionStrategy(_policy())
        strategy.on_must_close()

        attempt = _attempt()
        assert isinstance(strategy.perform_reconnection(attempt), GiveUp)
        attempt.abort.assert_called_once()

    @pytest.mark.asyncio
    async def test_max_attempts_gives_up(self):
        strategy = BackoffReconnectionStrategy(_policy(), max_attempts=2)

        assert isinstance(strategy.perform_reconnection(_attempt()), Retry)
        assert isinstance(strategy.perform_reconnection(_attempt()), Retry)

        last = _attempt()
        outcome = strategy.perform_reconnection(last)

        assert isinstance(outcome, GiveUp)
        last.abort.assert_called_once()
        strategy.cancel()

    @pytest.mark.asyncio
    async def test_invoked_from_transport_thread(self):
        strategy = BackoffReconnectionStrategy(_policy())
        attempt = _attempt()

        outcome = await asyncio.to_thread(strategy.perform_reconnection, attempt)
        await asyncio.sleep(0.05)

        assert outcome == Retry(0.01)
        attempt.start.assert_called_once()

    @pytest.mark.asyncio
    async def test_scheduling_failure_gives_up(self):
        dead_loop = asyncio.new_event_loop()
        dead_loop.close()
        strategy = BackoffReconnectionStrategy(_policy(), loop=dead_loop)
        attempt = _attempt()

        outcome = strategy.perform_reconnection(attempt)

        assert isinstance(outcome, GiveUp)
        attempt.abort.assert_called_once()
        assert strategy.is_closed
        assert not strategy.has_pending_retry

    @pytest.mark.asyncio
    async def test_start_failure_aborts(self):
        strategy = BackoffReconnectionStrategy(_policy())
        attempt = _attempt()
        attempt.start.side_effect = RuntimeError("transport gone")

        strategy.perform_reconnection(attempt)
        await asyncio.sleep(0.03)

        attempt.abort.assert_called_once()
        assert strategy.is_closed

    @pytest.mark.asyncio
    async def test_abort_errors_do_not_escape(self):
        strategy = BackoffReconnectionStrategy(_policy())
        strategy.cancel()
        attempt = _attempt()
        attempt.abort.side_effect = RuntimeError("boom")

        assert isinstance(strategy.perform_reconnection(attempt), GiveUp)

    @pytest.mark.asyncio
    async def test_retry_scheduled_callback(self):
        scheduled = []
        strategy = BackoffReconnectionStrategy(
            _policy(), on_retry_scheduled=lambda number, delay: scheduled.append((number, delay))
        )

        strategy.perform_reconnection(_attempt())
        strategy.perform_reconnection(_attempt())

        assert scheduled == [(1, 0.01), (2, 0.02)]
        strategy.cancel()

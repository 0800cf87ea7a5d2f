"""Tests for the synchronous event bus."""

from unittest.mock import MagicMock

import pytest

from tests.fakes import SERVER_URL
from topiclink.domain.events import EventBus, ReconnectScheduled, SessionStateChanged
from topiclink.domain.types import SessionState


def _state_event(state=SessionState.CONNECTED, previous=SessionState.CONNECTING):
    return SessionStateChanged(url=SERVER_URL, state=state, previous_state=previous)


def test_publish_calls_handlers_in_order():
    bus = EventBus()
    calls = []
    bus.subscribe(SessionStateChanged, lambda e: calls.append(("first", e.state)))
    bus.subscribe(SessionStateChanged, lambda e: calls.append(("second", e.state)))

    bus.publish(_state_event())

    assert calls == [("first", SessionState.CONNECTED), ("second", SessionState.CONNECTED)]


def test_publish_dispatches_by_exact_type():
    bus = EventBus()
    handler = MagicMock()
    bus.subscribe(ReconnectScheduled, handler)

    bus.publish(_state_event())

    handler.assert_not_called()


def test_duplicate_subscription_is_ignored():
    bus = EventBus()
    handler = MagicMock()
    bus.subscribe(SessionStateChanged, handler)
    bus.subscribe(SessionStateChanged, handler)

    bus.publish(_state_event())

    handler.assert_called_once()


def test_unsubscribe():
    bus = EventBus()
    handler = MagicMock()
    bus.subscribe(SessionStateChanged, handler)

    bus.unsubscribe(SessionStateChanged, handler)
    bus.unsubscribe(SessionStateChanged, handler)
    bus.publish(_state_event())

    handler.assert_not_called()
    assert not bus.has_subscribers(SessionStateChanged)


def test_failing_handler_does_not_stop_others():
    bus = EventBus()
    after = MagicMock()
    bus.subscribe(SessionStateChanged, MagicMock(side_effect=RuntimeError("boom")))
    bus.subscribe(SessionStateChanged, after)

    bus.publish(_state_event())

    after.assert_called_once()


def test_async_handler_rejected():
    bus = EventBus()

    async def handler(event):
        pass

    with pytest.raises(TypeError):
        bus.subscribe(SessionStateChanged, handler)


def test_clear():
    bus = EventBus()
    bus.subscribe(SessionStateChanged, MagicMock())

    bus.clear()

    assert not bus.has_subscribers(SessionStateChanged)


def test_events_carry_timestamp():
    event = ReconnectScheduled(url=SERVER_URL, attempt=1, delay=0.5)

    assert event.timestamp > 0
    assert event.attempt == 1

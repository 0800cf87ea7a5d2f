"""Synchronous event bus decoupling the connection layer from observers.

Handlers MUST be plain functions. A handler that needs async work schedules it
with ``asyncio.create_task()`` instead of awaiting it.
"""

import asyncio
from typing import Callable, Type, TypeVar

from topiclink.logger import get_logger

from .types import Event

logger = get_logger("events.bus")

T = TypeVar("T", bound=Event)

EventHandler = Callable[[Event], None]


class EventBus:
    """Publish events to the handlers registered for their exact type.

    Not thread-safe: publish and subscribe from the event loop thread.

    Example:
        ```python
        bus = EventBus()
        bus.subscribe(SessionStateChanged, lambda e: print(e.state.value))
        bus.publish(SessionStateChanged(url=url, state=..., previous_state=...))
        ```
    """

    def __init__(self) -> None:
        self._handlers: dict[Type[Event], list[EventHandler]] = {}

    def subscribe(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        """
        Register ``handler`` for events of ``event_type``.

        Registering the same handler twice is a no-op.

        Raises:
            TypeError: If handler is a coroutine function
        """
        if asyncio.iscoroutinefunction(handler):
            raise TypeError(
                f"Event handler {handler.__name__} must be synchronous; "
                f"schedule async work with asyncio.create_task() instead."
            )

        handlers = self._handlers.setdefault(event_type, [])
        if handler in handlers:
            logger.debug(f"Handler already subscribed for {event_type.__name__}, skipping")
            return
        handlers.append(handler)  # type: ignore[arg-type]
        logger.debug(f"Subscribed handler for {event_type.__name__}")

    def unsubscribe(self, event_type: Type[T], handler: Callable[[T], None]) -> None:
        """Remove ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)  # type: ignore[arg-type]
            logger.debug(f"Unsubscribed handler for {event_type.__name__}")

    def publish(self, event: Event) -> None:
        """
        Call every handler subscribed to the event's type, in order.

        A failing handler is logged and does not prevent the others from running.
        """
        event_type = type(event)
        handlers = list(self._handlers.get(event_type, []))
        if not handlers:
            return

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler for {event_type.__name__}: {e}")

    def has_subscribers(self, event_type: Type[Event]) -> bool:
        """Check whether any handler is registered for ``event_type``."""
        return bool(self._handlers.get(event_type))

    def clear(self) -> None:
        """Drop all subscriptions."""
        self._handlers.clear()

"""Event system for observing the connection layer.

Example:
    ```python
    from topiclink.domain.events import EventBus, SessionStateChanged

    bus = EventBus()
    bus.subscribe(SessionStateChanged, lambda event: print(event.state.value))
    manager = ConnectionManager(transport, event_bus=bus)
    ```
"""

from .bus import EventBus
from .types import Event, ReconnectScheduled, SessionStateChanged, SubscriptionsReplayed

__all__ = [
    "EventBus",
    "Event",
    "SessionStateChanged",
    "ReconnectScheduled",
    "SubscriptionsReplayed",
]

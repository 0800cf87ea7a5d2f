"""Event types published by the connection layer."""

import time
from dataclasses import dataclass, field
from typing import Optional

from topiclink.domain.types import SessionState


@dataclass
class Event:
    """Base class for all events.

    The timestamp field is set automatically when the event is created.
    """

    timestamp: float = field(default_factory=time.time, init=False)
    """Timestamp when the event was created (Unix timestamp)."""


@dataclass
class SessionStateChanged(Event):
    """Published whenever the managed session changes state.

    Attributes:
        url: Server URL of the session
        state: New session state
        previous_state: State before the change
        error: Terminal error when the session closed abnormally
    """

    url: Optional[str]
    state: SessionState
    previous_state: SessionState
    error: Optional[BaseException] = None


@dataclass
class ReconnectScheduled(Event):
    """Published each time a reconnection attempt is scheduled.

    Attributes:
        url: Server URL of the recovering session
        attempt: Reconnection attempt number (1-based)
        delay: Seconds until the attempt starts
    """

    url: Optional[str]
    attempt: int
    delay: float


@dataclass
class SubscriptionsReplayed(Event):
    """Published after the registry was replayed onto a new connection."""

    url: Optional[str]
    selectors: tuple[str, ...]

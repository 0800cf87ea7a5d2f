"""Session state and reconnection outcome types."""

from dataclasses import dataclass
from enum import Enum
from typing import Union

__all__ = ["SessionState", "Retry", "GiveUp", "ReconnectionOutcome"]


class SessionState(Enum):
    """State of a single logical session.

    A manager that holds no session reports CLOSED.
    """

    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECOVERING = "recovering"
    CLOSED = "closed"


@dataclass(frozen=True)
class Retry:
    """Retry the connection after ``delay`` seconds."""

    delay: float


@dataclass(frozen=True)
class GiveUp:
    """Stop reconnecting; the session will be closed."""

    reason: str = ""


ReconnectionOutcome = Union[Retry, GiveUp]

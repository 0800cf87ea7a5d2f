"""Connection management: backoff, reconnection, lifecycle and the manager."""

from .backoff import BackoffPolicy, next_delay
from .lifecycle import InvalidTransitionError, SessionLifecycle
from .manager import ConnectionManager
from .reconnect import BackoffReconnectionStrategy

__all__ = [
    "BackoffPolicy",
    "next_delay",
    "BackoffReconnectionStrategy",
    "SessionLifecycle",
    "InvalidTransitionError",
    "ConnectionManager",
]

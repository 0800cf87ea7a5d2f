"""topiclink: a resilient publish/subscribe session with subscription replay."""

from topiclink.config import BackoffSettings, ConnectionSettings
from topiclink.connection import BackoffPolicy, BackoffReconnectionStrategy, ConnectionManager, next_delay
from topiclink.domain.types import GiveUp, Retry, SessionState
from topiclink.subscriptions import SubscriptionRegistry

__version__ = "0.1.0"

__all__ = [
    "BackoffPolicy",
    "BackoffReconnectionStrategy",
    "BackoffSettings",
    "ConnectionManager",
    "ConnectionSettings",
    "GiveUp",
    "Retry",
    "SessionState",
    "SubscriptionRegistry",
    "next_delay",
]

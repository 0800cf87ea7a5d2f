"""Domain types shared across topiclink."""

from .connection import GiveUp, ReconnectionOutcome, Retry, SessionState

__all__ = [
    "SessionState",
    "Retry",
    "GiveUp",
    "ReconnectionOutcome",
]

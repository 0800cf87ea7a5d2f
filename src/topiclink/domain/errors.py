"""Error taxonomy for sessions, reconnection and subscriptions."""

from typing import Optional

__all__ = [
    "TopicLinkError",
    "ConfigurationError",
    "SessionError",
    "EstablishmentError",
    "SecurityError",
    "SessionDisconnectedError",
    "SessionClosedError",
    "SessionAlreadyOpenError",
    "NotConnectedError",
    "SubscriptionError",
    "InvalidSelectorError",
]


class TopicLinkError(Exception):
    """Base class for all topiclink errors."""


class ConfigurationError(TopicLinkError, ValueError):
    """Invalid configuration detected at construction time."""


class SessionError(TopicLinkError):
    """Base class for session-level failures."""


class EstablishmentError(SessionError):
    """The initial connection could not be established.

    No reconnection is attempted: retries only apply to a session that was
    established and then lost.
    """

    def __init__(self, url: str, cause: Optional[BaseException] = None):
        self.url = url
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Failed to establish session with {url}{detail}")


class SecurityError(SessionError):
    """The server rejected the session's credentials or permissions.

    Repeating the operation with the same credentials is expected to fail.
    """


class SessionDisconnectedError(SessionError):
    """The session closed after being lost and reconnection gave up."""


class SessionClosedError(SessionError):
    """The session was closed locally."""


class SessionAlreadyOpenError(SessionError):
    """A second session was requested while one is still open."""


class NotConnectedError(SessionError):
    """The operation requires a connected session."""


class SubscriptionError(TopicLinkError):
    """A subscribe or unsubscribe request for one selector was rejected."""

    def __init__(self, selector: str, message: str, cause: Optional[BaseException] = None):
        self.selector = selector
        self.cause = cause
        super().__init__(f"{message} '{selector}'" + (f": {cause}" if cause else ""))


class InvalidSelectorError(SubscriptionError, ValueError):
    """The selector is not a non-empty string."""

    def __init__(self, selector: object):
        super().__init__(repr(selector), "Invalid topic selector")

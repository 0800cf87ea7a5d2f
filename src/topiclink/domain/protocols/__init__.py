"""Domain protocols - interfaces of the external transport.

Using protocols keeps the connection layer independent of any concrete
transport library and makes it straightforward to substitute the in-memory
transport in tests.
"""

from topiclink.domain.protocols.transport import (
    ReconnectionAttempt,
    ReconnectionStrategy,
    Session,
    SessionConfiguration,
    SessionFactory,
    SessionListener,
    TopicsFeature,
)

__all__ = [
    "ReconnectionAttempt",
    "ReconnectionStrategy",
    "Session",
    "SessionConfiguration",
    "SessionFactory",
    "SessionListener",
    "TopicsFeature",
]

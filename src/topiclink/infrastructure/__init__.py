"""Transport implementations."""

from .memory import InMemoryServer, InMemorySession, InMemoryTransport, selector_matches

__all__ = ["InMemoryServer", "InMemorySession", "InMemoryTransport", "selector_matches"]

"""Registry of topic selectors that survives reconnections."""

import asyncio
import functools
import threading
from typing import Awaitable, Callable, Optional

from topiclink.domain.errors import InvalidSelectorError, SubscriptionError
from topiclink.domain.protocols import Session
from topiclink.logger import get_logger

logger = get_logger("subscriptions.registry")

SessionGetter = Callable[[], Optional[Session]]


class SubscriptionRegistry:
    """
    The authoritative set of selectors the caller has subscribed to.

    The registry outlives individual sessions. While a session is connected,
    ``add`` and ``remove`` issue requests against it immediately; after every
    (re)connection ``replay_all`` reissues a subscribe for each selector.

    Membership changes and request issuance happen under one lock, so the
    requests a session receives always agree with the order of the
    membership changes, including replays.
    """

    def __init__(self, session_getter: Optional[SessionGetter] = None):
        """
        Initialize an empty registry.

        Args:
            session_getter: Returns the connected session, or None while not connected
        """
        self._session_getter: SessionGetter = session_getter or (lambda: None)
        self._selectors: set[str] = set()
        self._lock = threading.RLock()
        self._replays: set[asyncio.Future] = set()

    def bind(self, session_getter: SessionGetter) -> None:
        """Attach the registry to the owner of the connected session."""
        self._session_getter = session_getter

    @property
    def selectors(self) -> frozenset[str]:
        """Snapshot of the registered selectors."""
        with self._lock:
            return frozenset(self._selectors)

    def __contains__(self, selector: object) -> bool:
        with self._lock:
            return selector in self._selectors

    def __len__(self) -> int:
        with self._lock:
            return len(self._selectors)

    async def add(self, selector: str) -> bool:
        """
        Register ``selector``, subscribing immediately when connected.

        Re-adding a registered selector is a no-op that issues no request.

        Returns:
            True if the selector was added, False if it was already present

        Raises:
            InvalidSelectorError: If selector is not a non-empty string
            SubscriptionError: If the server rejected the subscription. The
                selector stays registered and is replayed on reconnection.
        """
        _validate(selector)
        with self._lock:
            if selector in self._selectors:
                logger.debug(f"Selector already registered: {selector}")
                return False
            self._selectors.add(selector)
            session = self._session_getter()
            request = self._issue(session.topics.subscribe, selector) if session else None

        logger.info(f"Registered selector {selector}")
        if request is not None:
            await self._complete(request, selector, "Subscription rejected for")
        return True

    async def remove(self, selector: str) -> bool:
        """
        Deregister ``selector``, unsubscribing immediately when connected.

        Removing an unknown selector is a no-op.

        Returns:
            True if the selector was removed, False if it was not registered

        Raises:
            InvalidSelectorError: If selector is not a non-empty string
            SubscriptionError: If the server rejected the unsubscription
        """
        _validate(selector)
        with self._lock:
            if selector not in self._selectors:
                return False
            self._selectors.discard(selector)
            session = self._session_getter()
            request = self._issue(session.topics.unsubscribe, selector) if session else None

        logger.info(f"Deregistered selector {selector}")
        if request is not None:
            await self._complete(request, selector, "Unsubscription rejected for")
        return True

    def replay_all(self, onto: Session) -> list[asyncio.Future]:
        """
        Issue a subscribe request for every registered selector against ``onto``.

        Requests are issued before this method returns; acknowledgements
        arrive asynchronously and failures are logged per selector.

        Returns:
            One future per request, completing with its acknowledgement
        """
        with self._lock:
            requests = [(selector, self._issue(onto.topics.subscribe, selector)) for selector in sorted(self._selectors)]

        for selector, request in requests:
            self._replays.add(request)
            request.add_done_callback(functools.partial(self._on_replay_done, selector))

        logger.info(f"Replayed {len(requests)} subscription(s) onto {onto.url}")
        return [request for _, request in requests]

    @staticmethod
    def _issue(request: Callable[[str], Awaitable[None]], selector: str) -> asyncio.Future:
        # The transport sends the request when called; only the answer is awaited.
        try:
            return asyncio.ensure_future(request(selector))
        except Exception as e:
            failed = asyncio.get_running_loop().create_future()
            failed.set_exception(e)
            return failed

    @staticmethod
    async def _complete(request: asyncio.Future, selector: str, message: str) -> None:
        try:
            await request
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"{message} {selector}: {e}")
            raise SubscriptionError(selector, message, e) from e

    def _on_replay_done(self, selector: str, request: asyncio.Future) -> None:
        self._replays.discard(request)
        if request.cancelled():
            return
        error = request.exception()
        if error is not None:
            logger.warning(f"Replayed subscription to {selector} failed: {error}")


def _validate(selector: object) -> None:
    if not isinstance(selector, str) or not selector.strip():
        raise InvalidSelectorError(selector)

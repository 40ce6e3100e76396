"""
Refresh coordination for stale-while-revalidate reads.

Many call sites can read the same stale view at nearly the same time. The
coordinator remembers when a background refresh was last started for each
key so only the first of those reads asks for a refetch. It also carries the
global "refresh everything" broadcast.
"""
import itertools
import time
from typing import Callable, Dict, Optional

import structlog

from feedcache.config.logging import log_error
from feedcache.core import Clock, Freshness

logger = structlog.get_logger()

RefreshCallback = Callable[[], None]


class RefreshCoordinator:
    """
    De-duplicates background refresh signals per key.

    The de-duplication is time based and best effort: it is not a lock, and
    two reads in the same tick before either marks the key can both be told
    to refresh. The cache converges either way because writes are full
    replacements.
    """

    def __init__(self, stale_while_revalidate: float, clock: Clock = time.time):
        """
        Initialize the coordinator.

        Args:
            stale_while_revalidate: Seconds after a mark during which the same
                key is not asked to refresh again
            clock: Time source returning seconds
        """
        self._window = stale_while_revalidate
        self._clock = clock
        self._marks: Dict[str, float] = {}
        self._subscribers: Dict[int, RefreshCallback] = {}
        self._tokens = itertools.count()

    def should_refresh(self, key: str, freshness: Optional[Freshness]) -> bool:
        """
        Whether a background refresh should be started for a key.

        Args:
            key: Refresh key
            freshness: Current classification of the cached record, or None
                if nothing is cached

        Returns:
            True only for a stale record that has not been marked within the
            stale-while-revalidate window
        """
        if freshness is not Freshness.STALE:
            return False

        last = self._marks.get(key)
        if last is not None and self._clock() - last < self._window:
            return False
        return True

    def mark_refreshed(self, key: str) -> None:
        """
        Record that a refresh for ``key`` was started now.

        Marks older than the stale-while-revalidate window no longer suppress
        anything and are pruned here.
        """
        now = self._clock()
        # Re-inserting keeps the marks ordered oldest first
        self._marks.pop(key, None)
        self._marks[key] = now
        while self._marks:
            oldest = next(iter(self._marks))
            if now - self._marks[oldest] < self._window:
                break
            del self._marks[oldest]

    def last_marked(self, key: str) -> Optional[float]:
        return self._marks.get(key)

    def forget(self, key: str) -> None:
        self._marks.pop(key, None)

    def forget_prefix(self, prefix: str) -> None:
        for key in [k for k in self._marks if k.startswith(prefix)]:
            del self._marks[key]

    def clear_marks(self) -> None:
        self._marks.clear()

    def subscribe(self, callback: RefreshCallback) -> Callable[[], None]:
        """
        Register a callback for the global refresh broadcast.

        Args:
            callback: Called with no arguments on every broadcast

        Returns:
            A function that unregisters this subscription; calling it more
            than once is harmless
        """
        token = next(self._tokens)
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def broadcast(self) -> int:
        """
        Notify every subscriber in registration order.

        A subscriber that raises is logged and skipped; the remaining
        subscribers are still notified.

        Returns:
            Number of subscribers that completed without raising
        """
        delivered = 0
        for token, callback in list(self._subscribers.items()):
            try:
                callback()
            except Exception as e:
                log_error(logger, e, {"operation": "global_refresh", "subscriber": token})
                continue
            delivered += 1

        logger.info("Global refresh broadcast", subscribers=len(self._subscribers), delivered=delivered)
        return delivered

    def clear_subscribers(self) -> None:
        self._subscribers.clear()

    @property
    def mark_count(self) -> int:
        return len(self._marks)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

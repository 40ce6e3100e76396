"""
Integration of feedcache with the application's fetch functions.

The fetch functions that talk to the API live outside this package. The
Revalidator wraps them with the stale-while-revalidate read path: serve
from cache when possible, refetch in the background when a cached value has
gone stale, and only make the caller wait on a miss.
"""
import asyncio
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Set

import structlog

from feedcache.config.logging import log_error
from feedcache.engine import ListCache, QueryLike
from feedcache.keys import ListQuery

logger = structlog.get_logger()

ListFetcher = Callable[[ListQuery], Awaitable[Iterable[Mapping[str, Any]]]]
EntityFetcher = Callable[[Hashable], Awaitable[Optional[Mapping[str, Any]]]]


class Revalidator:
    """
    Read-through helper running on the application's event loop.

    Background refreshes are never cancelled; a late response is written
    like any other and the last write wins. A failed background refresh is
    logged and the stale value keeps being served.
    """

    def __init__(self, cache: ListCache):
        """
        Initialize the revalidator.

        Args:
            cache: The cache reads are served from and fetches are written to
        """
        self.cache = cache
        self._pending: Set[asyncio.Task] = set()

    async def read_list(self, query: QueryLike, fetch: ListFetcher) -> List[Dict[str, Any]]:
        """
        Read a list view through the cache.

        Args:
            query: Query model instance or mapping of its fields
            fetch: Coroutine function fetching the list for a query

        Returns:
            The list items, from cache or freshly fetched

        Raises:
            Exception: Whatever ``fetch`` raises on a miss; nothing cached
                means there is nothing to fall back to
        """
        query = self.cache.query(query)
        cached = self.cache.get_list(query)

        if cached is not None:
            if self.cache.needs_refresh(query):
                self.cache.mark_refreshed(query)
                self._spawn(self._refresh_list, query, fetch)
            return cached

        items = [dict(item) for item in await fetch(query)]
        self.cache.set_list(query, items)
        return items

    async def read_entity(self, entity_id: Hashable, fetch: EntityFetcher) -> Optional[Dict[str, Any]]:
        """
        Read a single entity through the cache.

        Args:
            entity_id: Id of the entity
            fetch: Coroutine function fetching an entity by id; may return None
                when the entity does not exist

        Returns:
            The entity, or None if it is neither cached nor found
        """
        cached = self.cache.get_entity(entity_id)

        if cached is not None:
            if self.cache.needs_entity_refresh(entity_id):
                self.cache.mark_entity_refreshed(entity_id)
                self._spawn(self._refresh_entity, entity_id, fetch)
            return cached

        entity = await fetch(entity_id)
        if entity is None:
            return None

        self.cache.set_entity(entity)
        return dict(entity)

    def refresh_on_global(self, query: QueryLike, fetch: ListFetcher) -> Callable[[], None]:
        """
        Refetch a list view whenever the cache's global refresh is triggered.

        Must be triggered from inside the running event loop.

        Returns:
            A function that stops following the global refresh
        """
        query = self.cache.query(query)

        def on_refresh() -> None:
            self._spawn(self._refresh_list, query, fetch)

        return self.cache.on_global_refresh(on_refresh)

    async def drain(self) -> None:
        """Wait for every outstanding background refresh to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def _spawn(self, refresh: Callable[..., Awaitable[bool]], *args: Any) -> None:
        loop = asyncio.get_running_loop()
        task = loop.create_task(refresh(*args))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _refresh_list(self, query: ListQuery, fetch: ListFetcher) -> bool:
        try:
            items = list(await fetch(query))
        except Exception as e:
            log_error(logger, e, {"operation": "refresh_list", "cache": self.cache.name})
            return False

        self.cache.set_list(query, items)
        logger.debug("Background refresh applied", cache=self.cache.name, count=len(items))
        return True

    async def _refresh_entity(self, entity_id: Hashable, fetch: EntityFetcher) -> bool:
        try:
            entity = await fetch(entity_id)
        except Exception as e:
            log_error(logger, e, {"operation": "refresh_entity", "cache": self.cache.name, "id": entity_id})
            return False

        if entity is None:
            # Gone upstream
            self.cache.remove_by_id(entity_id)
            return False

        self.cache.set_entity(entity)
        return True

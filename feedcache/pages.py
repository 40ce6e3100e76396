"""
List view storage for feedcache.

A list view is the ordered result of one query. The page store keeps only
the ordered ids of a view; the entities themselves live in an EntityStore,
so an edit to an entity is seen by every view that references it.
"""
import time
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Optional

import structlog

from feedcache.core import Clock, EntityStore, Freshness, classify

logger = structlog.get_logger()


class PageStore:
    """
    Bounded store of list views, keyed by encoded query key.

    A view is served only when every id it references still resolves in the
    entity store; a single missing entity turns the whole read into a miss.
    """

    def __init__(self, entities: EntityStore, max_pages: int, max_age: float,
                 fresh_duration: float, clock: Clock = time.time,
                 name: str = "pages", monitor=None,
                 on_drop: Optional[Callable[[str], None]] = None):
        """
        Initialize the page store.

        Args:
            entities: Store that owns the referenced entities
            max_pages: Maximum number of views kept
            max_age: Seconds after which a view is treated as absent
            fresh_duration: Seconds during which a view is fresh
            clock: Time source returning seconds
            name: Store name used in logs and metrics
            monitor: Optional CacheMonitor
            on_drop: Called with the key of a view dropped by eviction or expiry
        """
        self.entities = entities
        self._pages: Dict[str, Dict[str, Any]] = {}
        self._max_pages = max_pages
        self._max_age = max_age
        self._fresh_duration = fresh_duration
        self._clock = clock
        self._monitor = monitor
        self._on_drop = on_drop
        self.name = name

    def _live_page(self, key: str) -> Optional[Dict[str, Any]]:
        page = self._pages.get(key)
        if page is None:
            return None

        if self._clock() - page['cached_at'] >= self._max_age:
            del self._pages[key]
            logger.debug("Expired page dropped", store=self.name, key=key)
            self._dropped(key)
            return None

        return page

    def get(self, key: str) -> Optional[List[Dict[str, Any]]]:
        """
        Get a list view with every entity resolved.

        Args:
            key: Encoded query key

        Returns:
            Copies of the entities in cached order, or None if the view is
            missing, expired, or references an entity that no longer resolves
        """
        page = self._live_page(key)
        if page is None:
            if self._monitor:
                self._monitor.record_miss(self.name)
            return None

        resolved = []
        for entity_id in page['ids']:
            entity = self.entities.get(entity_id)
            if entity is None:
                logger.debug("Page references missing entity", store=self.name, key=key, id=entity_id)
                if self._monitor:
                    self._monitor.record_miss(self.name)
                return None
            resolved.append(entity)

        if self._monitor:
            self._monitor.record_hit(self.name)
        return resolved

    def ids(self, key: str) -> Optional[List[Hashable]]:
        """Copy of the ids cached for a live view, without resolving them."""
        page = self._live_page(key)
        if page is None:
            return None
        return list(page['ids'])

    def snapshot(self, key: str) -> Optional[Dict[str, Any]]:
        """Copy of the query snapshot stored with a live view."""
        page = self._live_page(key)
        if page is None:
            return None
        return dict(page['filters'])

    def put(self, key: str, entities: Iterable[Mapping[str, Any]],
            filters: Optional[Mapping[str, Any]] = None) -> List[Hashable]:
        """
        Cache a list view.

        Every entity is written to the entity store first, then the ordered
        ids are stored under ``key``.

        Args:
            key: Encoded query key
            entities: Entities in query order
            filters: Query snapshot kept for diagnostics

        Returns:
            The ids stored for the view
        """
        ids = [self.entities.put(entity) for entity in entities]

        self._pages.pop(key, None)
        self._pages[key] = {
            'ids': ids,
            'cached_at': self._clock(),
            'filters': dict(filters or {})
        }
        self._enforce_bound()
        return list(ids)

    def prepend(self, key: str, entity_id: Hashable) -> bool:
        """
        Splice an id onto the front of an existing view.

        Returns:
            True if the view existed and was updated
        """
        page = self._live_page(key)
        if page is None:
            return False

        page['ids'] = [entity_id] + [i for i in page['ids'] if i != entity_id]
        page['cached_at'] = self._clock()
        return True

    def discard(self, entity_id: Hashable) -> List[str]:
        """
        Splice an id out of every view containing it, keeping the rest in order.

        Returns:
            Keys of the views that were updated
        """
        touched = []
        now = self._clock()
        for key in list(self._pages):
            page = self._live_page(key)
            if page is not None and entity_id in page['ids']:
                page['ids'] = [i for i in page['ids'] if i != entity_id]
                page['cached_at'] = now
                touched.append(key)
        return touched

    def invalidate(self, key: str) -> bool:
        """Drop one view. Returns True if it was cached."""
        if key in self._pages:
            del self._pages[key]
            self._record_invalidation(1)
            return True
        return False

    def invalidate_containing(self, entity_id: Hashable) -> List[str]:
        """
        Drop every view that references an entity.

        Returns:
            Keys of the dropped views
        """
        dropped = [key for key, page in self._pages.items() if entity_id in page['ids']]
        for key in dropped:
            del self._pages[key]

        if dropped:
            logger.info("Invalidated pages containing entity", store=self.name, id=entity_id, count=len(dropped))
            self._record_invalidation(len(dropped))
        return dropped

    def invalidate_all(self) -> List[str]:
        """
        Drop every view.

        Returns:
            Keys of the dropped views
        """
        dropped = list(self._pages)
        self._pages.clear()
        logger.info("Invalidated all pages", store=self.name, count=len(dropped))
        self._record_invalidation(len(dropped))
        return dropped

    def age(self, key: str) -> Optional[float]:
        page = self._pages.get(key)
        if page is None:
            return None
        return self._clock() - page['cached_at']

    def freshness(self, key: str) -> Optional[Freshness]:
        age = self.age(key)
        if age is None:
            return None
        return classify(age, self._fresh_duration, self._max_age)

    def keys(self) -> List[str]:
        return list(self._pages)

    def purge_expired(self) -> int:
        """Drop every view at or past max_age. Returns how many were dropped."""
        before = len(self._pages)
        for key in list(self._pages):
            self._live_page(key)
        return before - len(self._pages)

    def clear(self) -> None:
        self._pages.clear()

    def _dropped(self, key: str) -> None:
        if self._on_drop:
            self._on_drop(key)

    def _record_invalidation(self, count: int) -> None:
        if self._monitor and count:
            self._monitor.record_invalidation(self.name, count)

    def _enforce_bound(self) -> None:
        if len(self._pages) <= self._max_pages:
            return

        oldest_key = min(self._pages.items(), key=lambda x: x[1]['cached_at'])[0]
        del self._pages[oldest_key]
        logger.debug("Evicted oldest page", store=self.name, key=oldest_key)
        if self._monitor:
            self._monitor.record_eviction(self.name)
        self._dropped(oldest_key)

    def __len__(self) -> int:
        now = self._clock()
        return sum(1 for page in self._pages.values() if now - page['cached_at'] < self._max_age)

    def __contains__(self, key: str) -> bool:
        return self._live_page(key) is not None

    def stats(self) -> Dict[str, Any]:
        return {
            'size': len(self),
            'max_size': self._max_pages,
        }

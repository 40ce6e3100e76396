"""
The list cache engine.

``ListCache`` ties the entity store, the page store and the refresh
coordinator together behind the API the application calls: reads, writes
from successful fetches, optimistic mutations from UI actions, and refresh
coordination. One instance is built per domain and handed to the call
sites that need it.
"""
import enum
import time
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Type, Union

import structlog

from feedcache.config.settings import CacheSettings
from feedcache.core import Clock, EntityStore, Freshness
from feedcache.keys import ListQuery, coerce_query, encode_key
from feedcache.monitoring import CacheMonitor
from feedcache.pages import PageStore
from feedcache.refresh import RefreshCallback, RefreshCoordinator

logger = structlog.get_logger()

QueryLike = Union[ListQuery, Mapping[str, Any], None]

LIST_MARK_PREFIX = "list:"
ENTITY_MARK_PREFIX = "entity:"


class AddPolicy(str, enum.Enum):
    """What a locally created entity does to cached list views."""
    # Splice onto the front of the latest-page view, leave other views alone
    PREPEND = "prepend"
    # Drop every view so the new entity reappears correctly sorted on refetch
    INVALIDATE = "invalidate"


class RemovePolicy(str, enum.Enum):
    """What a locally deleted entity does to cached list views."""
    # Drop every view that referenced the entity
    INVALIDATE = "invalidate"
    # Splice the id out of every view, keeping the remaining order
    SPLICE = "splice"


class ListCache:
    """
    Staleness-aware cache of entities and the list views built from them.

    All operations are synchronous and never await, so within one event loop
    every call is atomic with respect to the others and its effects are
    visible to the next read.
    """

    def __init__(self, query_cls: Type[ListQuery], settings: Optional[CacheSettings] = None, *,
                 name: str = "cache", id_field: str = "id",
                 latest_query: QueryLike = None,
                 add_policy: AddPolicy = AddPolicy.PREPEND,
                 remove_policy: RemovePolicy = RemovePolicy.INVALIDATE,
                 clock: Clock = time.time,
                 monitor: Optional[CacheMonitor] = None):
        """
        Initialize the cache.

        Args:
            query_cls: Query model describing this cache's list views
            settings: Staleness windows and capacity bounds; defaults are
                read from the environment
            name: Cache name used in logs and metrics
            id_field: Entity field holding the id
            latest_query: The "latest" view new entities are prepended to;
                defaults to the all-defaults query
            add_policy: Effect of add_new on cached views
            remove_policy: Effect of remove_by_id on cached views
            clock: Time source returning seconds
            monitor: Metrics monitor; created automatically when metrics
                are enabled in settings
        """
        self.settings = settings or CacheSettings()
        self.query_cls = query_cls
        self.name = name
        self.add_policy = AddPolicy(add_policy)
        self.remove_policy = RemovePolicy(remove_policy)
        self.clock = clock

        if monitor is None and self.settings.metrics_enabled:
            monitor = CacheMonitor(name)
        self.monitor = monitor

        self.refresh = RefreshCoordinator(self.settings.stale_while_revalidate, clock=clock)
        self.entities = EntityStore(
            max_entries=self.settings.max_entities,
            max_age=self.settings.max_age,
            fresh_duration=self.settings.fresh_duration,
            id_field=id_field,
            clock=clock,
            name="entities",
            monitor=monitor,
            on_drop=self._forget_entity_mark,
        )
        self.pages = PageStore(
            self.entities,
            max_pages=self.settings.max_pages,
            max_age=self.settings.max_age,
            fresh_duration=self.settings.fresh_duration,
            clock=clock,
            name="pages",
            monitor=monitor,
            on_drop=self._forget_list_mark,
        )
        self.latest_query = coerce_query(query_cls, latest_query)

    # Keys

    def query(self, query: QueryLike) -> ListQuery:
        """Validate request parameters into this cache's query model."""
        return coerce_query(self.query_cls, query)

    def key_for(self, query: QueryLike) -> str:
        """Cache key of a query."""
        return encode_key(self.query(query))

    # Reads

    def get_list(self, query: QueryLike) -> Optional[List[Dict[str, Any]]]:
        """
        Get a cached list view.

        Args:
            query: Query model instance or mapping of its fields

        Returns:
            Copies of the entities in cached order, or None on a miss
        """
        key = self.key_for(query)
        items = self.pages.get(key)

        if items is None:
            logger.debug("Cache miss for list", cache=self.name, key=key)
        else:
            logger.debug("Cache hit for list", cache=self.name, key=key, count=len(items))
        return items

    def get_entity(self, entity_id: Hashable) -> Optional[Dict[str, Any]]:
        """Get a copy of a cached entity, or None if missing or expired."""
        return self.entities.get(entity_id)

    def get_all_entities(self) -> Dict[Hashable, Dict[str, Any]]:
        """Copies of every unexpired entity, keyed by id."""
        return self.entities.items()

    # Writes from successful fetches

    def set_list(self, query: QueryLike, items: Iterable[Mapping[str, Any]]) -> str:
        """
        Cache the result of a successful list fetch.

        The entities are written first, then the view. A later write for the
        same query replaces this one entirely.

        Args:
            query: Query the items were fetched for
            items: Entities in query order

        Returns:
            The cache key the view was stored under
        """
        query = self.query(query)
        key = encode_key(query)
        items = list(items)

        if len(items) > self.settings.max_entities:
            logger.warning("List larger than entity capacity; it will not resolve",
                           cache=self.name, key=key, count=len(items),
                           max_entities=self.settings.max_entities)

        self.pages.put(key, items, query.snapshot())
        logger.debug("Cached list", cache=self.name, key=key, count=len(items))
        return key

    def set_entity(self, entity: Mapping[str, Any]) -> Hashable:
        """Cache a single fetched entity. Returns its id."""
        entity_id = self.entities.put(entity)
        logger.debug("Cached entity", cache=self.name, id=entity_id)
        return entity_id

    # Optimistic mutations

    def update_fields(self, entity_id: Hashable, fields: Mapping[str, Any]) -> bool:
        """
        Apply a local edit to a cached entity.

        Only the entity store is touched; views pick the change up on their
        next read because they hold ids, not copies.

        Returns:
            True if the entity was cached and updated
        """
        updated = self.entities.merge(entity_id, fields)
        if updated:
            logger.debug("Updated cached entity", cache=self.name, id=entity_id, fields=sorted(fields))
        return updated

    def add_new(self, entity: Mapping[str, Any]) -> Hashable:
        """
        Cache a locally created entity and reflect it in the list views.

        With AddPolicy.PREPEND the id is spliced onto the front of the latest
        view if that view is cached; other views are left as they are. With
        AddPolicy.INVALIDATE every view is dropped.

        Returns:
            The id of the new entity
        """
        entity_id = self.entities.put(entity)

        if self.add_policy is AddPolicy.PREPEND:
            latest_key = encode_key(self.latest_query)
            prepended = self.pages.prepend(latest_key, entity_id)
            logger.debug("Added entity", cache=self.name, id=entity_id, prepended=prepended)
        else:
            self.pages.invalidate_all()
            self.refresh.forget_prefix(LIST_MARK_PREFIX)
            logger.debug("Added entity", cache=self.name, id=entity_id, invalidated=True)

        return entity_id

    def remove_by_id(self, entity_id: Hashable) -> bool:
        """
        Delete an entity locally and drop it from the list views.

        With RemovePolicy.INVALIDATE every view referencing the entity is
        dropped. With RemovePolicy.SPLICE the id is removed from each view.

        Returns:
            True if the entity was cached
        """
        removed = self.entities.remove(entity_id)
        self.refresh.forget(self._entity_mark(entity_id))

        if self.remove_policy is RemovePolicy.INVALIDATE:
            for key in self.pages.invalidate_containing(entity_id):
                self._forget_list_mark(key)
        else:
            self.pages.discard(entity_id)

        logger.debug("Removed entity", cache=self.name, id=entity_id, cached=removed)
        return removed

    # Refresh coordination

    def freshness(self, query: QueryLike) -> Optional[Freshness]:
        return self.pages.freshness(self.key_for(query))

    def entity_freshness(self, entity_id: Hashable) -> Optional[Freshness]:
        return self.entities.freshness(entity_id)

    def needs_refresh(self, query: QueryLike) -> bool:
        """
        Whether a cached view is stale and due for a background refresh.

        Returns False for fresh views, for missing or expired views (the
        caller sees a miss and fetches anyway), and for views whose refresh
        was marked within the stale-while-revalidate window.
        """
        key = self.key_for(query)
        return self.refresh.should_refresh(LIST_MARK_PREFIX + key, self.pages.freshness(key))

    def mark_refreshed(self, query: QueryLike) -> None:
        self.refresh.mark_refreshed(LIST_MARK_PREFIX + self.key_for(query))

    def needs_entity_refresh(self, entity_id: Hashable) -> bool:
        """Entity counterpart of needs_refresh."""
        return self.refresh.should_refresh(self._entity_mark(entity_id), self.entities.freshness(entity_id))

    def mark_entity_refreshed(self, entity_id: Hashable) -> None:
        self.refresh.mark_refreshed(self._entity_mark(entity_id))

    def on_global_refresh(self, callback: RefreshCallback) -> Callable[[], None]:
        """
        Register a callback for manual full refreshes.

        Returns:
            A function that unregisters the callback
        """
        return self.refresh.subscribe(callback)

    def trigger_global_refresh(self) -> int:
        """
        Notify every global refresh subscriber, in registration order.

        Returns:
            Number of subscribers notified without error
        """
        if self.monitor:
            self.monitor.record_global_refresh()
        return self.refresh.broadcast()

    # Introspection and lifecycle

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics. Expired records are dropped before counting.

        Returns:
            Dictionary with record counts, bounds and a rough memory estimate
        """
        self.pages.purge_expired()
        self.entities.purge_expired()
        entity_count = len(self.entities)
        list_count = len(self.pages)

        if self.monitor:
            self.monitor.update_size(self.entities.name, entity_count)
            self.monitor.update_size(self.pages.name, list_count)

        return {
            'entity_count': entity_count,
            'list_count': list_count,
            'approx_bytes': (entity_count * self.settings.entity_bytes_estimate
                             + list_count * self.settings.page_bytes_estimate),
            'max_entities': self.settings.max_entities,
            'max_pages': self.settings.max_pages,
            'subscribers': self.refresh.subscriber_count,
        }

    def clear(self) -> None:
        """Empty both stores and forget every refresh mark."""
        self.pages.clear()
        self.entities.clear()
        self.refresh.clear_marks()
        logger.info("Cache cleared", cache=self.name)

    def reset(self) -> None:
        """Clear the cache and drop every global refresh subscriber."""
        self.clear()
        self.refresh.clear_subscribers()

    @staticmethod
    def _entity_mark(entity_id: Hashable) -> str:
        # repr keeps ids of different types apart, e.g. 1 and "1"
        return f"{ENTITY_MARK_PREFIX}{entity_id!r}"

    def _forget_entity_mark(self, entity_id: Hashable) -> None:
        self.refresh.forget(self._entity_mark(entity_id))

    def _forget_list_mark(self, key: str) -> None:
        self.refresh.forget(LIST_MARK_PREFIX + key)

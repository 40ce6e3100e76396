"""
Core entity storage for feedcache.

This module provides the staleness classification shared by every store
and the bounded, age-aware store that owns the canonical copy of each
cached entity (post, user, article, category).
"""
import enum
import time
from typing import Any, Callable, Dict, Hashable, Iterator, Mapping, Optional

import structlog

from feedcache.errors import MissingEntityId

logger = structlog.get_logger()

Clock = Callable[[], float]


class Freshness(str, enum.Enum):
    """Age classification of a cached record."""
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


def classify(age: float, fresh_duration: float, max_age: float) -> Freshness:
    """
    Classify a record by its age.

    Args:
        age: Seconds since the record was last written
        fresh_duration: Age below which the record is fresh
        max_age: Age from which the record is expired

    Returns:
        FRESH, STALE or EXPIRED
    """
    if age < fresh_duration:
        return Freshness.FRESH
    if age < max_age:
        return Freshness.STALE
    return Freshness.EXPIRED


class EntityStore:
    """
    Bounded in-memory store of entities keyed by their id.

    Entries expire lazily: a read of an entry at or past ``max_age`` drops
    it and reports a miss. When a write pushes the store past
    ``max_entries`` the single entry with the oldest ``cached_at`` is
    evicted. Reads hand out shallow copies so callers cannot modify the
    cached payload in place.
    """

    def __init__(self, max_entries: int, max_age: float, fresh_duration: float,
                 id_field: str = "id", clock: Clock = time.time,
                 name: str = "entities", monitor=None,
                 on_drop: Optional[Callable[[Hashable], None]] = None):
        """
        Initialize the store.

        Args:
            max_entries: Maximum number of entities kept
            max_age: Seconds after which an entity is treated as absent
            fresh_duration: Seconds during which an entity is fresh
            id_field: Payload field holding the entity id
            clock: Time source returning seconds
            name: Store name used in logs and metrics
            monitor: Optional CacheMonitor receiving hit/miss/eviction events
            on_drop: Called with the id of an entity dropped by eviction or expiry
        """
        self._entries: Dict[Hashable, Dict[str, Any]] = {}
        self._max_entries = max_entries
        self._max_age = max_age
        self._fresh_duration = fresh_duration
        self._clock = clock
        self._monitor = monitor
        self.id_field = id_field
        self._on_drop = on_drop
        self.name = name

    def entity_id(self, payload: Mapping[str, Any]) -> Hashable:
        """Return the id of a payload, raising MissingEntityId if it has none."""
        entity_id = payload.get(self.id_field)
        if entity_id is None:
            raise MissingEntityId(self.id_field, payload)
        return entity_id

    def _live_entry(self, entity_id: Hashable) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(entity_id)
        if entry is None:
            return None

        if self._clock() - entry['cached_at'] >= self._max_age:
            del self._entries[entity_id]
            logger.debug("Expired entity dropped", store=self.name, id=entity_id)
            self._dropped(entity_id)
            return None

        return entry

    def get(self, entity_id: Hashable) -> Optional[Dict[str, Any]]:
        """
        Get an entity from the store.

        Args:
            entity_id: Id of the entity

        Returns:
            A copy of the cached payload, or None if missing or expired
        """
        entry = self._live_entry(entity_id)
        if entry is None:
            if self._monitor:
                self._monitor.record_miss(self.name)
            return None

        if self._monitor:
            self._monitor.record_hit(self.name)
        return dict(entry['value'])

    def put(self, payload: Mapping[str, Any]) -> Hashable:
        """
        Insert or overwrite an entity.

        Args:
            payload: Entity payload; must carry a value for the id field

        Returns:
            The id the entity was stored under
        """
        entity_id = self.entity_id(payload)
        # Re-inserting moves the id to the end so ties evict the least recently written
        self._entries.pop(entity_id, None)
        self._entries[entity_id] = {
            'value': dict(payload),
            'cached_at': self._clock()
        }
        self._enforce_bound()
        return entity_id

    def merge(self, entity_id: Hashable, fields: Mapping[str, Any]) -> bool:
        """
        Shallow-merge fields into an existing, unexpired entity.

        Args:
            entity_id: Id of the entity to update
            fields: Fields to overwrite

        Returns:
            True if the entity was updated, False if it was not cached
        """
        entry = self._live_entry(entity_id)
        if entry is None:
            return False

        merged = {**entry['value'], **fields}
        # The id field is the store key and never changes through a merge
        merged[self.id_field] = entry['value'][self.id_field]
        del self._entries[entity_id]
        self._entries[entity_id] = {
            'value': merged,
            'cached_at': self._clock()
        }
        return True

    def remove(self, entity_id: Hashable) -> bool:
        """
        Remove an entity. Removing a missing id is a no-op.

        Returns:
            True if something was removed
        """
        if entity_id in self._entries:
            del self._entries[entity_id]
            return True
        return False

    def age(self, entity_id: Hashable) -> Optional[float]:
        """Seconds since the entity was written, or None if it is not stored."""
        entry = self._entries.get(entity_id)
        if entry is None:
            return None
        return self._clock() - entry['cached_at']

    def freshness(self, entity_id: Hashable) -> Optional[Freshness]:
        """Classification of the entity, or None if it is not stored."""
        age = self.age(entity_id)
        if age is None:
            return None
        return classify(age, self._fresh_duration, self._max_age)

    def items(self) -> Dict[Hashable, Dict[str, Any]]:
        """Copies of every unexpired entity, keyed by id, in insertion order."""
        live = {}
        for entity_id in list(self._entries):
            entry = self._live_entry(entity_id)
            if entry is not None:
                live[entity_id] = dict(entry['value'])
        return live

    def purge_expired(self) -> int:
        """
        Drop every entity at or past max_age.

        Returns:
            Number of entities dropped
        """
        before = len(self._entries)
        for entity_id in list(self._entries):
            self._live_entry(entity_id)
        return before - len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def _dropped(self, entity_id: Hashable) -> None:
        if self._on_drop:
            self._on_drop(entity_id)

    def _enforce_bound(self) -> None:
        if len(self._entries) <= self._max_entries:
            return

        oldest_id = min(self._entries.items(), key=lambda x: x[1]['cached_at'])[0]
        del self._entries[oldest_id]
        logger.debug("Evicted oldest entity", store=self.name, id=oldest_id)
        if self._monitor:
            self._monitor.record_eviction(self.name)
        self._dropped(oldest_id)

    def __len__(self) -> int:
        # Expired entries not yet dropped by a read are not counted
        now = self._clock()
        return sum(1 for entry in self._entries.values() if now - entry['cached_at'] < self._max_age)

    def __contains__(self, entity_id: Hashable) -> bool:
        return self._live_entry(entity_id) is not None

    def __iter__(self) -> Iterator[Hashable]:
        return iter(list(self._entries))

    def stats(self) -> Dict[str, Any]:
        return {
            'size': len(self),
            'max_size': self._max_entries,
        }

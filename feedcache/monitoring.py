"""
Monitoring module for feedcache.

This module exposes Prometheus metrics for the entity and page stores of
each cache and a small monitor object that the stores report through.
"""
import time
from typing import Any, Dict

import structlog
from prometheus_client import Counter, Gauge

logger = structlog.get_logger()

# Define Prometheus metrics
CACHE_HITS = Counter('feedcache_hits_total', 'Total number of cache hits', ['cache', 'store'])
CACHE_MISSES = Counter('feedcache_misses_total', 'Total number of cache misses', ['cache', 'store'])
CACHE_EVICTIONS = Counter('feedcache_evictions_total', 'Records evicted to stay within capacity',
                          ['cache', 'store'])
CACHE_INVALIDATIONS = Counter('feedcache_invalidations_total', 'List views dropped by invalidation',
                              ['cache', 'store'])
CACHE_SIZE = Gauge('feedcache_records', 'Current number of records in a store', ['cache', 'store'])
GLOBAL_REFRESHES = Counter('feedcache_global_refreshes_total', 'Global refresh broadcasts', ['cache'])


class CacheMonitor:
    """
    Records metrics for one named cache.

    Every store of the cache reports with its own store name, so the entity
    and page hit ratios can be told apart.
    """

    def __init__(self, cache_name: str):
        """
        Initialize the cache monitor.

        Args:
            cache_name: Label identifying the cache (e.g. "feed", "news")
        """
        self.cache_name = cache_name
        self.start_time = time.time()
        self._stores = set()

    def record_hit(self, store: str) -> None:
        self._stores.add(store)
        CACHE_HITS.labels(cache=self.cache_name, store=store).inc()

    def record_miss(self, store: str) -> None:
        self._stores.add(store)
        CACHE_MISSES.labels(cache=self.cache_name, store=store).inc()

    def record_eviction(self, store: str) -> None:
        CACHE_EVICTIONS.labels(cache=self.cache_name, store=store).inc()

    def record_invalidation(self, store: str, count: int = 1) -> None:
        CACHE_INVALIDATIONS.labels(cache=self.cache_name, store=store).inc(count)

    def record_global_refresh(self) -> None:
        GLOBAL_REFRESHES.labels(cache=self.cache_name).inc()

    def update_size(self, store: str, size: int) -> None:
        """
        Update the size gauge of a store.

        Args:
            store: Store name
            size: Current number of records
        """
        self._stores.add(store)
        CACHE_SIZE.labels(cache=self.cache_name, store=store).set(size)

    def get_hit_ratio(self, store: str) -> float:
        """
        Get the hit ratio of one store of this cache.

        Args:
            store: Store name

        Returns:
            Hit ratio as a float between 0 and 1
        """
        hits = CACHE_HITS.labels(cache=self.cache_name, store=store)._value.get()
        misses = CACHE_MISSES.labels(cache=self.cache_name, store=store)._value.get()
        total = hits + misses

        if total == 0:
            return 0.0

        return hits / total

    def get_metrics_report(self) -> Dict[str, Any]:
        """
        Generate a metrics report for this cache.

        Returns:
            Dictionary with uptime and per-store hit ratios
        """
        report = {
            'cache': self.cache_name,
            'uptime_seconds': time.time() - self.start_time,
        }
        for store in sorted(self._stores):
            report[f'{store}_hit_ratio'] = self.get_hit_ratio(store)
        return report

    def log_metrics(self) -> None:
        """Log current cache metrics."""
        report = self.get_metrics_report()
        logger.info("Cache metrics report", **report)

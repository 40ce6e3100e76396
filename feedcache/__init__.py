"""
feedcache

A client-side caching engine for paginated API lists and the entities they
reference. It keeps one canonical copy of each entity, stores list views as
ordered ids, serves stale data while a background refresh runs, and applies
optimistic local edits to every view at once.

Two ready-made caches are provided:
- FeedCache: community feed posts and their authors
- NewsCache: news articles, categories and article detail views
"""

from .core import EntityStore, Freshness, classify
from .pages import PageStore
from .refresh import RefreshCoordinator
from .keys import FeedQuery, ListQuery, NewsQuery, coerce_query, encode_key
from .engine import AddPolicy, ListCache, RemovePolicy
from .domain import FeedCache, NewsCache, build_feed_cache, build_news_cache
from .integration import Revalidator
from .monitoring import CacheMonitor
from .config import CacheSettings, configure_logging, feed_settings, news_settings
from .errors import FeedCacheError, MissingEntityId

__all__ = [
    'EntityStore',
    'Freshness',
    'classify',
    'PageStore',
    'RefreshCoordinator',
    'FeedQuery',
    'ListQuery',
    'NewsQuery',
    'coerce_query',
    'encode_key',
    'AddPolicy',
    'ListCache',
    'RemovePolicy',
    'FeedCache',
    'NewsCache',
    'build_feed_cache',
    'build_news_cache',
    'Revalidator',
    'CacheMonitor',
    'CacheSettings',
    'configure_logging',
    'feed_settings',
    'news_settings',
    'FeedCacheError',
    'MissingEntityId'
]

"""Configuration helpers for feedcache."""

from .settings import CacheSettings, feed_settings, news_settings
from .logging import configure_logging, log_error

__all__ = [
    'CacheSettings',
    'feed_settings',
    'news_settings',
    'configure_logging',
    'log_error'
]

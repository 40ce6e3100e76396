"""Constants for feedcache."""

# Staleness windows (seconds)
FRESH_DURATION = 300  # Data stays fresh for 5 minutes
MAX_AGE = 1800  # Data stays in cache for 30 minutes
STALE_WHILE_REVALIDATE = 120  # Background refresh de-duplication window: 2 minutes

# Default capacity bounds
MAX_ENTITIES = 100
MAX_PAGES = 20

# Feed capacity bounds
FEED_MAX_POSTS = 100
FEED_MAX_USERS = 50
FEED_MAX_PAGES = 20

# News capacity bounds
NEWS_MAX_ARTICLES = 200
NEWS_MAX_CATEGORIES = 50
NEWS_MAX_PAGES = 30
NEWS_MAX_SINGLE_ARTICLES = 100

# Rough memory estimates used by get_stats (bytes per record)
ENTITY_BYTES_ESTIMATE = 1024
USER_BYTES_ESTIMATE = 512
CATEGORY_BYTES_ESTIMATE = 512
PAGE_BYTES_ESTIMATE = 2048

# Key sentinels for absent query fields
SENTINEL_ALL = "all"
SENTINEL_NONE = "none"
KEY_FIELD_SEPARATOR = "|"
KEY_ARRAY_SEPARATOR = ","

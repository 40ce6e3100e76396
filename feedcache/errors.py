"""Exceptions raised by feedcache at its argument boundary.

Cache lookups never raise: hits, stale reads and misses are return values.
These exceptions only signal programmer errors such as writing a payload
that carries no identifier.
"""


class FeedCacheError(Exception):
    """Base class for feedcache errors."""
    pass


class MissingEntityId(FeedCacheError, ValueError):
    """Raised when an entity payload has no value for its id field."""

    def __init__(self, id_field: str, payload=None):
        self.id_field = id_field
        self.payload = payload
        super().__init__(f"Entity payload has no '{id_field}' field")

"""
Query descriptors and cache key encoding.

Each list view the application can request is described by one frozen
pydantic model. Every field has a default, so a query built from partial
request parameters always has the same shape, and ``encode_key`` turns it
into a deterministic string key.
"""
from typing import Any, ClassVar, Dict, Literal, Mapping, Optional, Tuple, Type, TypeVar, Union
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

from feedcache.constants import (
    KEY_ARRAY_SEPARATOR,
    KEY_FIELD_SEPARATOR,
    SENTINEL_ALL,
    SENTINEL_NONE,
)

Q = TypeVar('Q', bound='ListQuery')


class ListQuery(BaseModel):
    """Base class for list query descriptors."""

    model_config = ConfigDict(frozen=True, extra='forbid')

    # Namespace for keys of this query shape
    KEY_PREFIX: ClassVar[str] = "list"
    # Field name -> label used in the key (defaults to the field name)
    KEY_LABELS: ClassVar[Dict[str, str]] = {}
    # Field name -> literal written when the field is absent (defaults to "none")
    SENTINELS: ClassVar[Dict[str, str]] = {}

    def snapshot(self) -> Dict[str, Any]:
        """Plain-dict copy of the query, stored alongside cached pages."""
        return self.model_dump()


class FeedQuery(ListQuery):
    """A page of the community feed. Page 0 holds the latest posts."""

    KEY_PREFIX: ClassVar[str] = "feed"

    page: int = Field(0, ge=0)
    limit: int = Field(10, ge=1)

    @classmethod
    def latest(cls, limit: int = 10) -> "FeedQuery":
        return cls(page=0, limit=limit)


class NewsQuery(ListQuery):
    """A filtered, sorted page of news articles."""

    KEY_PREFIX: ClassVar[str] = "news"
    KEY_LABELS: ClassVar[Dict[str, str]] = {
        'category_id': 'category',
        'is_breaking': 'breaking',
        'is_featured': 'featured',
        'sort_by': 'sort',
        'sort_order': 'order',
        'author_id': 'author',
        'date_from': 'dateFrom',
        'date_to': 'dateTo',
    }
    SENTINELS: ClassVar[Dict[str, str]] = {
        'category_id': SENTINEL_ALL,
        'author_id': SENTINEL_ALL,
    }

    page: int = Field(1, ge=1)
    limit: int = Field(12, ge=1)
    status: Literal['all', 'draft', 'published', 'archived'] = 'all'
    category_id: Optional[str] = None
    is_breaking: bool = False
    is_featured: bool = False
    search: Optional[str] = None
    sort_by: Literal['created_at', 'published_at', 'view_count', 'like_count', 'engagement_score'] = 'published_at'
    sort_order: Literal['asc', 'desc'] = 'desc'
    author_id: Optional[str] = None
    tags: Optional[Tuple[str, ...]] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (tuple, list)):
        return KEY_ARRAY_SEPARATOR.join(_encode_value(item) for item in value)
    # quote() never emits '=', so '=' can mark an escaped sentinel below
    return quote(str(value), safe='')


def encode_key(query: ListQuery) -> str:
    """
    Encode a query descriptor into its cache key.

    Fields are written as ``label:value`` in declaration order and joined
    with ``|``. Absent values are written as the field's sentinel. Arrays
    keep the order they were given in.

    Args:
        query: Query descriptor to encode

    Returns:
        The cache key string
    """
    cls = type(query)
    parts = [cls.KEY_PREFIX]
    for name in cls.model_fields:
        label = cls.KEY_LABELS.get(name, name)
        sentinel = cls.SENTINELS.get(name, SENTINEL_NONE)
        value = getattr(query, name)
        if value is None:
            rendered = sentinel
        else:
            rendered = _encode_value(value)
            # A present value spelling the sentinel must not read as "absent"
            if rendered == sentinel:
                rendered = f"={rendered}"
        parts.append(f"{label}:{rendered}")
    return KEY_FIELD_SEPARATOR.join(parts)


def coerce_query(query_cls: Type[Q], value: Union[Q, Mapping[str, Any], None]) -> Q:
    """
    Turn request parameters into a query descriptor of the given shape.

    Args:
        query_cls: Query model to build
        value: An instance of ``query_cls``, a mapping of its fields, or None
            for the all-defaults query

    Returns:
        A validated ``query_cls`` instance

    Raises:
        pydantic.ValidationError: If the mapping does not describe a valid query
    """
    if isinstance(value, query_cls):
        return value
    if value is None:
        return query_cls()
    return query_cls.model_validate(value)

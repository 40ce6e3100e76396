"""
Domain caches built on ListCache.

FeedCache holds community feed posts and the users who wrote them.
NewsCache holds news articles, their categories and single-article detail
views. Both are plain ListCache instances with domain-specific policies and
a few extra stores.
"""
import time
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional

import structlog

from feedcache import constants
from feedcache.config.settings import CacheSettings, feed_settings, news_settings
from feedcache.core import Clock, EntityStore
from feedcache.engine import AddPolicy, ListCache, QueryLike, RemovePolicy
from feedcache.keys import FeedQuery, NewsQuery
from feedcache.monitoring import CacheMonitor
from feedcache.pages import PageStore

logger = structlog.get_logger()

SINGLE_ARTICLE_PREFIX = "single:"


class FeedCache(ListCache):
    """
    Cache for feed pages of posts, plus the users referenced by those posts.

    New posts are prepended to the latest page; deleted posts are spliced
    out of every cached page.
    """

    def __init__(self, settings: Optional[CacheSettings] = None, *,
                 max_users: int = constants.FEED_MAX_USERS,
                 clock: Clock = time.time,
                 monitor: Optional[CacheMonitor] = None):
        """
        Initialize the feed cache.

        Args:
            settings: Settings for posts and pages; defaults to feed_settings()
            max_users: Capacity of the user store
            clock: Time source returning seconds
            monitor: Optional metrics monitor
        """
        super().__init__(
            FeedQuery,
            settings or feed_settings(),
            name="feed",
            latest_query=FeedQuery.latest(),
            add_policy=AddPolicy.PREPEND,
            remove_policy=RemovePolicy.SPLICE,
            clock=clock,
            monitor=monitor,
        )
        self.users = EntityStore(
            max_entries=max_users,
            max_age=self.settings.max_age,
            fresh_duration=self.settings.fresh_duration,
            clock=clock,
            name="users",
            monitor=self.monitor,
        )

    def cache_posts(self, page: int, posts: Iterable[Mapping[str, Any]], limit: int = 10) -> str:
        """Cache a fetched page of posts."""
        return self.set_list(FeedQuery(page=page, limit=limit), posts)

    def get_posts(self, page: int, limit: int = 10) -> Optional[List[Dict[str, Any]]]:
        """Get a cached page of posts, or None on a miss."""
        return self.get_list(FeedQuery(page=page, limit=limit))

    def get_post(self, post_id: Hashable) -> Optional[Dict[str, Any]]:
        return self.get_entity(post_id)

    def cache_user(self, user: Mapping[str, Any]) -> Hashable:
        """
        Cache a user profile.

        Args:
            user: User payload with an ``id``

        Returns:
            The user id
        """
        user_id = self.users.put(user)
        logger.debug("Cached user", cache=self.name, id=user_id)
        return user_id

    def get_user(self, user_id: Hashable) -> Optional[Dict[str, Any]]:
        user = self.users.get(user_id)

        if user:
            logger.debug("Cache hit for user", id=user_id)
        else:
            logger.debug("Cache miss for user", id=user_id)

        return user

    def get_users(self) -> Dict[Hashable, Dict[str, Any]]:
        """All unexpired cached users, keyed by id."""
        return self.users.items()

    def get_author(self, post_id: Hashable) -> Optional[Dict[str, Any]]:
        """The cached author of a cached post, if both are cached."""
        post = self.get_entity(post_id)
        if post is None or post.get('authorId') is None:
            return None
        return self.get_user(post['authorId'])

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        user_count = len(self.users)
        if self.monitor:
            self.monitor.update_size(self.users.name, user_count)

        stats['user_count'] = user_count
        stats['approx_bytes'] += user_count * constants.USER_BYTES_ESTIMATE
        return stats

    def clear(self) -> None:
        self.users.clear()
        super().clear()


class NewsCache(ListCache):
    """
    Cache for filtered news article pages, categories and article detail views.

    Creating an article drops every cached page, since it may belong
    anywhere in any sort order. Deleting an article drops every page and
    detail view that referenced it.
    """

    def __init__(self, settings: Optional[CacheSettings] = None, *,
                 max_categories: int = constants.NEWS_MAX_CATEGORIES,
                 max_single_articles: int = constants.NEWS_MAX_SINGLE_ARTICLES,
                 clock: Clock = time.time,
                 monitor: Optional[CacheMonitor] = None):
        super().__init__(
            NewsQuery,
            settings or news_settings(),
            name="news",
            add_policy=AddPolicy.INVALIDATE,
            remove_policy=RemovePolicy.INVALIDATE,
            clock=clock,
            monitor=monitor,
        )
        self.categories = EntityStore(
            max_entries=max_categories,
            max_age=self.settings.max_age,
            fresh_duration=self.settings.fresh_duration,
            clock=clock,
            name="categories",
            monitor=self.monitor,
        )
        # Detail views: [article id, *related ids] per slug, resolved like pages
        self.single_articles = PageStore(
            self.entities,
            max_pages=max_single_articles,
            max_age=self.settings.max_age,
            fresh_duration=self.settings.fresh_duration,
            clock=clock,
            name="single_articles",
            monitor=self.monitor,
            on_drop=self.refresh.forget,
        )

    # Articles

    def cache_articles(self, filters: QueryLike, articles: Iterable[Mapping[str, Any]]) -> str:
        """Cache a fetched page of articles for the given filters."""
        return self.set_list(filters, articles)

    def get_articles(self, filters: QueryLike) -> Optional[List[Dict[str, Any]]]:
        """Get a cached page of articles, or None on a miss."""
        return self.get_list(filters)

    def get_article(self, article_id: Hashable) -> Optional[Dict[str, Any]]:
        return self.get_entity(article_id)

    def cache_single_article(self, slug: str, article: Mapping[str, Any],
                             related_articles: Iterable[Mapping[str, Any]] = ()) -> None:
        """
        Cache an article detail response.

        The article and its related articles are written to the article
        store; the slug keeps only their ids.

        Args:
            slug: Article slug the detail view was fetched for
            article: The article itself
            related_articles: Related articles shown with it
        """
        self.single_articles.put(SINGLE_ARTICLE_PREFIX + slug, [article, *related_articles], {'slug': slug})
        logger.debug("Cached single article", cache=self.name, slug=slug)

    def get_article_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        """
        Get a cached article detail view.

        Returns:
            ``{'article': ..., 'related_articles': [...]}``, or None if the
            view is missing, expired, or any of its articles no longer resolves
        """
        resolved = self.single_articles.get(SINGLE_ARTICLE_PREFIX + slug)
        if resolved is None:
            logger.debug("Cache miss for single article", slug=slug)
            return None

        logger.debug("Cache hit for single article", slug=slug)
        return {
            'article': resolved[0],
            'related_articles': resolved[1:]
        }

    def needs_single_article_refresh(self, slug: str) -> bool:
        key = SINGLE_ARTICLE_PREFIX + slug
        return self.refresh.should_refresh(key, self.single_articles.freshness(key))

    def mark_single_article_refreshed(self, slug: str) -> None:
        self.refresh.mark_refreshed(SINGLE_ARTICLE_PREFIX + slug)

    def remove_by_id(self, entity_id: Hashable) -> bool:
        removed = super().remove_by_id(entity_id)
        for key in self.single_articles.invalidate_containing(entity_id):
            self.refresh.forget(key)
        return removed

    # Categories

    def cache_category(self, category: Mapping[str, Any]) -> Hashable:
        return self.categories.put(category)

    def cache_categories(self, categories: Iterable[Mapping[str, Any]]) -> List[Hashable]:
        """Cache every fetched category. Returns their ids."""
        ids = [self.categories.put(category) for category in categories]
        logger.debug("Cached categories", cache=self.name, count=len(ids))
        return ids

    def get_category(self, category_id: Hashable) -> Optional[Dict[str, Any]]:
        return self.categories.get(category_id)

    def get_categories(self) -> List[Dict[str, Any]]:
        """Every unexpired cached category."""
        return list(self.categories.items().values())

    # Refresh

    def force_refresh(self) -> int:
        """
        Drop every page and detail view, forget refresh marks, then broadcast
        the global refresh so subscribers refetch.

        Returns:
            Number of subscribers notified without error
        """
        self.pages.invalidate_all()
        self.single_articles.invalidate_all()
        self.refresh.clear_marks()
        return self.trigger_global_refresh()

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        category_count = len(self.categories)
        single_count = len(self.single_articles)
        if self.monitor:
            self.monitor.update_size(self.categories.name, category_count)
            self.monitor.update_size(self.single_articles.name, single_count)

        stats['category_count'] = category_count
        stats['single_article_count'] = single_count
        stats['approx_bytes'] += (category_count * constants.CATEGORY_BYTES_ESTIMATE
                                  + single_count * self.settings.page_bytes_estimate)
        return stats

    def clear(self) -> None:
        self.single_articles.clear()
        self.categories.clear()
        super().clear()


def build_feed_cache(settings: Optional[CacheSettings] = None, **kwargs) -> FeedCache:
    """Build the feed cache an application passes to its feed call sites."""
    cache = FeedCache(settings, **kwargs)
    logger.info("Feed cache created", max_posts=cache.settings.max_entities, max_pages=cache.settings.max_pages)
    return cache


def build_news_cache(settings: Optional[CacheSettings] = None, **kwargs) -> NewsCache:
    """Build the news cache an application passes to its news call sites."""
    cache = NewsCache(settings, **kwargs)
    logger.info("News cache created", max_articles=cache.settings.max_entities, max_pages=cache.settings.max_pages)
    return cache

"""Construction-time settings for feedcache engines."""
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from feedcache import constants


class CacheSettings(BaseSettings):
    """
    Settings for a single ListCache instance.

    Durations are in seconds. Every value can be overridden through the
    environment with the ``FEEDCACHE_`` prefix (e.g. ``FEEDCACHE_MAX_AGE``)
    or a local ``.env`` file.
    """

    model_config = SettingsConfigDict(env_prefix="FEEDCACHE_", env_file=".env", extra="ignore")

    # Staleness
    fresh_duration: float = Field(constants.FRESH_DURATION, gt=0)
    max_age: float = Field(constants.MAX_AGE, gt=0)
    stale_while_revalidate: float = Field(constants.STALE_WHILE_REVALIDATE, ge=0)

    # Capacity
    max_entities: int = Field(constants.MAX_ENTITIES, ge=1)
    max_pages: int = Field(constants.MAX_PAGES, ge=1)

    # Diagnostics
    entity_bytes_estimate: int = constants.ENTITY_BYTES_ESTIMATE
    page_bytes_estimate: int = constants.PAGE_BYTES_ESTIMATE
    metrics_enabled: bool = True
    log_level: str = "INFO"

    @model_validator(mode="after")
    def _check_windows(self) -> "CacheSettings":
        if self.fresh_duration >= self.max_age:
            raise ValueError("fresh_duration must be shorter than max_age")
        return self


def feed_settings(**overrides) -> CacheSettings:
    """Settings preset for the posts/users feed cache."""
    values = {
        "max_entities": constants.FEED_MAX_POSTS,
        "max_pages": constants.FEED_MAX_PAGES,
    }
    values.update(overrides)
    return CacheSettings(**values)


def news_settings(**overrides) -> CacheSettings:
    """Settings preset for the articles/categories news cache."""
    values = {
        "max_entities": constants.NEWS_MAX_ARTICLES,
        "max_pages": constants.NEWS_MAX_PAGES,
    }
    values.update(overrides)
    return CacheSettings(**values)

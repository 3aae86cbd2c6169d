# vehiclesearch/cache.py
"""Redis read-through cache for search results, facets and detail pages.

The cache stores opaque bytes; callers own (de)serialization. Redis being
down never fails a request: reads degrade to a miss, writes and deletes are
skipped, and both are logged.
"""
import hashlib
from enum import Enum
from typing import Any, Dict, Optional

import redis
from redis.backoff import ExponentialBackoff
from redis.retry import Retry

from . import config
from .utils import logger

# seconds; shorter where a single write touches more cached views
TTL = {
    "categories": 5 * 60,
    "category_listings": 5 * 60,
    "search": 2 * 60,
    "aggregations": 5 * 60,
    "listing_detail": 10 * 60,
    "seller_profile": 15 * 60,
}

SEARCH_PREFIX = "search"
AGGREGATIONS_PREFIX = "aggs"
CATEGORIES_KEY = "categories:all"

_DELETE_CHUNK = 500


def create_redis_client() -> redis.Redis:
    return redis.Redis.from_url(
        config.REDIS_URL,
        socket_timeout=config.REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=config.REDIS_SOCKET_TIMEOUT,
        retry=Retry(ExponentialBackoff(cap=2, base=0.2), 3),
        retry_on_error=[redis.ConnectionError, redis.TimeoutError],
    )


def _is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def _format(value) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def cache_key(prefix: str, params: Dict[str, Any]) -> str:
    """Deterministic key: blank params dropped, keys sorted, joined and hashed."""
    joined = "&".join(
        "%s=%s" % (k, _format(params[k]))
        for k in sorted(params)
        if not _is_blank(params[k])
    )
    digest = hashlib.md5(joined.encode("utf-8"), usedforsecurity=False).hexdigest()
    return "%s:%s" % (prefix, digest)


def listing_key(listing_id: str) -> str:
    return "listing:%s" % listing_id


def seller_key(seller_id: str) -> str:
    return "seller:%s" % seller_id


def category_listings_key(category_id: str, params: Dict[str, Any]) -> str:
    """Key family for category browse pages; dropped with any write in that category."""
    return cache_key("catlistings:%s" % category_id, params)


class CacheLayer:
    def __init__(self, client: redis.Redis):
        self.client = client

    def get(self, key: str) -> Optional[bytes]:
        try:
            value = self.client.get(key)
        except redis.RedisError as e:
            logger.warning("Cache get failed for %s, treating as miss: %s", key, e)
            return None
        logger.debug("Cache %s for %s", "hit" if value is not None else "miss", key)
        return value

    def set(self, key: str, value, ttl: int) -> bool:
        try:
            self.client.set(key, value, ex=ttl)
        except redis.RedisError as e:
            logger.warning("Cache set failed for %s, skipping: %s", key, e)
            return False
        return True

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return self.client.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Cache delete failed for %s: %s", keys, e)
            return 0

    def delete_pattern(self, pattern: str) -> int:
        """SCAN for keys matching `pattern` and delete them in chunks."""
        deleted = 0
        try:
            batch = []
            for key in self.client.scan_iter(match=pattern, count=_DELETE_CHUNK):
                batch.append(key)
                if len(batch) >= _DELETE_CHUNK:
                    deleted += self.client.delete(*batch)
                    batch = []
            if batch:
                deleted += self.client.delete(*batch)
        except redis.RedisError as e:
            logger.warning("Cache pattern delete failed for %s: %s", pattern, e)
        return deleted

    # -- invalidation ---------------------------------------------------------

    def invalidate_search_results(self) -> None:
        self.delete_pattern("%s:*" % SEARCH_PREFIX)
        self.delete_pattern("%s:*" % AGGREGATIONS_PREFIX)

    def invalidate_for_listing(self, listing_id: str, category_id: Optional[str] = None) -> None:
        # any write can change membership or counts of any filtered view
        self.delete(listing_key(listing_id))
        self.invalidate_search_results()
        if category_id:
            self.delete_pattern("catlistings:%s:*" % category_id)

    def invalidate_seller(self, seller_id: str) -> None:
        self.delete(seller_key(seller_id))

    def invalidate_category_list(self) -> None:
        self.delete(CATEGORIES_KEY)

import json
from typing import Any, Iterable, Optional

from redis.exceptions import RedisError

# Returned by get() on a miss; cached values may legitimately be None/False
CACHE_MISS = object()

DEFAULT_TTL = 300
DEFAULT_TAG_TTL = 3600


class FollowCache:
    """Cache-aside store over redis with a tag -> keys secondary index.

    Every set() registers the key in one redis set per tag
    (``cache:tag:<tag>``). invalidate_by_tags() reads those sets and deletes
    the indexed keys. Failures are logged and reported as misses so callers
    always fall back to the database.
    """

    TAG_PREFIX = 'cache:tag:'

    def __init__(self, redis_client, logger, tag_ttl: int = DEFAULT_TAG_TTL):
        self.redis = redis_client
        self.logger = logger
        self.tag_ttl = tag_ttl

    def _tag_key(self, tag: str) -> str:
        return f"{self.TAG_PREFIX}{tag}"

    def get(self, key: str) -> Any:
        """Get value from cache, CACHE_MISS if absent or unreadable"""
        try:
            data = self.redis.get(key)
        except RedisError as e:
            self.logger.warning(f"Cache get failed for {key}: {e}")
            return CACHE_MISS

        if data is None:
            return CACHE_MISS

        try:
            return json.loads(data)
        except ValueError:
            self.logger.warning(f"Discarding undecodable cache entry {key}")
            return CACHE_MISS

    def get_many(self, keys: list) -> list:
        """Same as get() for several keys in one round trip"""
        if not keys:
            return []
        try:
            raw = self.redis.mget(keys)
        except RedisError as e:
            self.logger.warning(f"Cache mget failed for {len(keys)} keys: {e}")
            return [CACHE_MISS] * len(keys)

        values = []
        for data in raw:
            if data is None:
                values.append(CACHE_MISS)
                continue
            try:
                values.append(json.loads(data))
            except ValueError:
                values.append(CACHE_MISS)
        return values

    def set(self, key: str, value: Any, ttl: int = DEFAULT_TTL,
            tags: Optional[Iterable[str]] = None) -> bool:
        """Set value with TTL and index the key under each tag"""
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as e:
            self.logger.warning(f"Value for {key} is not cacheable: {e}")
            return False

        # A tag set must outlive every key it indexes
        tag_ttl = max(ttl, self.tag_ttl)
        try:
            pipe = self.redis.pipeline()
            pipe.setex(key, ttl, payload)
            for tag in tags or ():
                tag_key = self._tag_key(tag)
                pipe.sadd(tag_key, key)
                pipe.expire(tag_key, tag_ttl)
            pipe.execute()
            return True
        except RedisError as e:
            self.logger.warning(f"Cache set failed for {key}: {e}")
            return False

    def delete(self, *keys: str) -> bool:
        """Delete keys from cache"""
        if not keys:
            return True
        try:
            self.redis.delete(*keys)
            return True
        except RedisError as e:
            self.logger.warning(f"Cache delete failed for {keys}: {e}")
            return False

    def invalidate_by_tags(self, *tags: str) -> int:
        """Remove every key indexed under any of the given tags.

        Only the members that were read are removed from the tag set, so a
        new key name registered concurrently stays indexed. A concurrent
        set() of a key name that was already a member is dropped from the
        index along with its value and lives until its own TTL.
        Returns the number of keys removed from the index.
        """
        removed = 0
        for tag in tags:
            tag_key = self._tag_key(tag)
            try:
                members = self.redis.smembers(tag_key)
                if not members:
                    continue
                members = list(members)
                pipe = self.redis.pipeline()
                pipe.delete(*members)
                pipe.srem(tag_key, *members)
                pipe.execute()
                removed += len(members)
            except RedisError as e:
                self.logger.warning(f"Cache invalidation failed for tag {tag}: {e}")

        if removed:
            self.logger.debug(f"Invalidated {removed} cache entries for tags {tags}")
        return removed

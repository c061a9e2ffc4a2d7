"""
Re-follow cooldowns keyed by ordered (follower, following) pair
"""
from redis.exceptions import RedisError

DEFAULT_COOLDOWN_SECONDS = 300


class CooldownGuard:
    """Redis TTL keys blocking a re-follow shortly after an unfollow.

    A pair is either absent (no cooldown) or present with an expiry. The
    store is best-effort: when redis is unreachable the guard logs and
    reports no cooldown rather than blocking follows.
    """

    KEY_PREFIX = 'follow:cooldown'

    def __init__(self, redis_client, logger, default_ttl=DEFAULT_COOLDOWN_SECONDS):
        self.redis = redis_client
        self.logger = logger
        self.default_ttl = default_ttl

    def key(self, follower_id, following_id):
        return f"{self.KEY_PREFIX}:{follower_id}:{following_id}"

    def check(self, follower_id, following_id):
        """Seconds left on the pair's cooldown, 0 if none"""
        try:
            ttl = self.redis.ttl(self.key(follower_id, following_id))
        except RedisError as e:
            self.logger.warning(f"Cooldown check failed for {follower_id}->{following_id}: {e}")
            return 0

        # -2: no key, -1: key without expiry (never written by start())
        return ttl if ttl and ttl > 0 else 0

    def start(self, follower_id, following_id, ttl=None):
        ttl = ttl or self.default_ttl
        try:
            self.redis.setex(self.key(follower_id, following_id), ttl, '1')
            return True
        except RedisError as e:
            self.logger.warning(f"Failed to start cooldown for {follower_id}->{following_id}: {e}")
            return False

    def clear(self, follower_id, following_id):
        """Drop the cooldown immediately; returns whether one existed"""
        try:
            return bool(self.redis.delete(self.key(follower_id, following_id)))
        except RedisError as e:
            self.logger.warning(f"Failed to clear cooldown for {follower_id}->{following_id}: {e}")
            return False

"""
Service for handling user following functionality
"""
from sqlalchemy.exc import OperationalError

from auth.decorators import require_roles
from services.follow_store import FOLLOWERS, FOLLOWING, MAX_BATCH_IDS
from services.suggestion_service import MAX_SUGGESTIONS
from utils.cache_manager import CACHE_MISS
from utils.exceptions import (
    FollowGraphError, ValidationError, SelfFollowError, NotFoundError,
    DuplicateEdgeError, CooldownError, ForbiddenError, TransientError, InternalError
)
from utils.helpers import format_datetime, hash_params, pagination_meta, utcnow
from utils.logging_config import log_error
from utils.validators import (
    validate_account_id, validate_pagination, normalize_sort_order, normalize_search
)

STATUS_CACHE_TTL = 300
LIST_CACHE_TTL = 300
DEFAULT_COOLDOWN_SECONDS = 300


class FollowGraphService:
    def __init__(self, db, store, cooldowns, cache, suggestion_engine, analytics,
                 audit, events, logger, status_ttl=STATUS_CACHE_TTL,
                 list_ttl=LIST_CACHE_TTL, cooldown_seconds=DEFAULT_COOLDOWN_SECONDS):
        self.db = db
        self.store = store
        self.cooldowns = cooldowns
        self.cache = cache
        self.suggestion_engine = suggestion_engine
        self.analytics_service = analytics
        self.audit = audit
        self.events = events
        self.logger = logger
        self.status_ttl = status_ttl
        self.list_ttl = list_ttl
        self.cooldown_seconds = cooldown_seconds

    # ------------------------------------------------------------------
    # Cache keys and tags
    # ------------------------------------------------------------------

    @staticmethod
    def status_key(follower_id, following_id):
        return f"follow:status:{follower_id}:{following_id}"

    @staticmethod
    def status_tags(follower_id, following_id):
        return [f"user:{follower_id}", f"user:{following_id}", f"user:{follower_id}:following"]

    def _invalidate_relationship(self, follower_id, following_id):
        """Drop every cached status, list and suggestion touching the pair"""
        self.cache.invalidate_by_tags(
            f"user:{follower_id}",
            f"user:{following_id}",
            f"user:{follower_id}:following",
            f"user:{following_id}:followers",
        )
        self.cache.delete(
            self.status_key(follower_id, following_id),
            self.suggestion_engine.cache_key(follower_id),
        )

    def _unexpected(self, operation, error, **context):
        """Roll back the session and translate an unexpected failure"""
        try:
            self.db.session.rollback()
        except Exception as rollback_error:
            self.logger.critical(f"Rollback failed during {operation}: {rollback_error}")

        log_error(self.logger, error, {'operation': operation, **context})
        if isinstance(error, OperationalError):
            return TransientError('Database temporarily unavailable', original_error=error)
        return InternalError(f"Failed to {operation.replace('_', ' ')}", original_error=error)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def follow(self, follower_id, following_id):
        """Follow another user; returns the new edge"""
        follower_id = validate_account_id(follower_id, 'follower_id')
        following_id = validate_account_id(following_id, 'following_id')

        if follower_id == following_id:
            raise SelfFollowError()

        try:
            if self.store.query_edge(follower_id, following_id):
                raise DuplicateEdgeError()

            accounts = self.store.get_accounts([follower_id, following_id])
            if follower_id not in accounts:
                raise NotFoundError('Follower user not found', details={'user_id': follower_id})
            target = accounts.get(following_id)
            if target is None:
                raise NotFoundError('User to follow not found', details={'user_id': following_id})

            if not target.allow_friend_requests:
                raise ForbiddenError('This user does not allow friend requests')
        except FollowGraphError:
            raise
        except Exception as e:
            raise self._unexpected('follow user', e, follower_id=follower_id, following_id=following_id)

        remaining = self.cooldowns.check(follower_id, following_id)
        if remaining > 0:
            raise CooldownError(remaining)

        edge = self.store.create_edge(follower_id, following_id)

        self._invalidate_relationship(follower_id, following_id)
        self.events.followed(follower_id, following_id)
        self.audit.record(
            follower_id, 'follow', 'User followed',
            details={'following_id': following_id, 'action': 'follow'}
        )

        return edge

    def unfollow(self, follower_id, following_id):
        """Unfollow a user and start the re-follow cooldown"""
        follower_id = validate_account_id(follower_id, 'follower_id')
        following_id = validate_account_id(following_id, 'following_id')

        removed = self.store.remove_edge(follower_id, following_id)

        self.cooldowns.start(follower_id, following_id, self.cooldown_seconds)
        self._invalidate_relationship(follower_id, following_id)
        self.events.unfollowed(follower_id, following_id)

        # The timestamped entry is what unfollow analytics are rebuilt from
        self.audit.record(
            follower_id, 'unfollow', 'User unfollowed',
            details={
                'following_id': following_id,
                'action': 'unfollow',
                'timestamp': utcnow().isoformat(),
                'follow_created_at': removed.get('created_at')
            }
        )

    @require_roles()
    def clear_cooldown(self, actor, follower_id, following_id):
        """Clear cooldown for a specific follow relationship (admin only)"""
        follower_id = validate_account_id(follower_id, 'follower_id')
        following_id = validate_account_id(following_id, 'following_id')

        cleared = self.cooldowns.clear(follower_id, following_id)

        self.audit.record(
            follower_id, 'clear_cooldown', 'Follow cooldown cleared',
            details={
                'following_id': following_id,
                'action': 'clear_cooldown',
                'cleared_by': getattr(actor, 'id', None)
            }
        )
        return cleared

    # ------------------------------------------------------------------
    # Follow status
    # ------------------------------------------------------------------

    def is_following(self, follower_id, following_id):
        """Check if follower_id follows following_id (cached)"""
        follower_id = validate_account_id(follower_id, 'follower_id')
        following_id = validate_account_id(following_id, 'following_id')

        cache_key = self.status_key(follower_id, following_id)
        cached = self.cache.get(cache_key)
        if cached is not CACHE_MISS:
            return bool(cached)

        try:
            result = self.store.query_edge(follower_id, following_id)
        except Exception as e:
            raise self._unexpected('check follow status', e, follower_id=follower_id,
                                   following_id=following_id)

        self.cache.set(cache_key, result, ttl=self.status_ttl,
                       tags=self.status_tags(follower_id, following_id))
        return result

    def batch_follow_status(self, follower_id, user_ids):
        """Map of user id -> whether follower_id follows them (first 100 ids)"""
        follower_id = validate_account_id(follower_id, 'follower_id')
        if user_ids is None:
            return {}
        if not isinstance(user_ids, (list, tuple)):
            raise ValidationError('user_ids must be a list', details={'field': 'user_ids'})

        user_ids = [validate_account_id(user_id, 'user_ids') for user_id in user_ids[:MAX_BATCH_IDS]]
        user_ids = list(dict.fromkeys(user_ids))
        if not user_ids:
            return {}

        cached_values = self.cache.get_many([self.status_key(follower_id, user_id) for user_id in user_ids])
        results = {}
        uncached_ids = []
        for user_id, cached in zip(user_ids, cached_values):
            if cached is CACHE_MISS:
                uncached_ids.append(user_id)
            else:
                results[user_id] = bool(cached)

        if uncached_ids:
            try:
                fresh = self.store.batch_has_edge(follower_id, uncached_ids)
            except Exception as e:
                raise self._unexpected('batch check follow status', e, follower_id=follower_id)

            for user_id, following in fresh.items():
                results[user_id] = following
                self.cache.set(self.status_key(follower_id, user_id), following,
                               ttl=self.status_ttl, tags=self.status_tags(follower_id, user_id))

        return {user_id: results[user_id] for user_id in user_ids}

    # ------------------------------------------------------------------
    # Lists
    # ------------------------------------------------------------------

    def _list_params(self, user_id, viewer_id, page, limit, sort_order, search):
        user_id = validate_account_id(user_id, 'user_id')
        if viewer_id is not None:
            viewer_id = validate_account_id(viewer_id, 'viewer_id')
        page, limit = validate_pagination(page, limit)
        return user_id, viewer_id, page, limit, normalize_sort_order(sort_order), normalize_search(search)

    def _require_account(self, user_id):
        if not self.store.get_account(user_id):
            raise NotFoundError('User not found', details={'user_id': user_id})

    def list_following(self, user_id, viewer_id=None, page=1, limit=10,
                       sort_by='createdAt', sort_order='DESC', search=None):
        """Get users that user_id follows, as seen by viewer_id"""
        user_id, viewer_id, page, limit, sort_order, search = self._list_params(
            user_id, viewer_id, page, limit, sort_order, search)

        cache_key = "follow:following:{}:{}".format(user_id, hash_params(
            viewer=viewer_id, page=page, limit=limit, sort_by=sort_by,
            sort_order=sort_order, search=search))
        cached = self.cache.get(cache_key)
        if cached is not CACHE_MISS:
            return cached

        try:
            self._require_account(user_id)
            items, total = self.store.paged_edges(
                FOLLOWING, user_id, search=search, sort_by=sort_by,
                sort_order=sort_order, page=page, limit=limit)

            listed_ids = [user.id for user, _ in items]
            own_list = viewer_id == user_id

            # Follow-back flags only make sense on the owner's own list
            followed_back = self.store.followers_among(user_id, listed_ids) if own_list else set()
            mutual_counts = {}
            if viewer_id is not None:
                mutual_counts = self.suggestion_engine.mutual_connection_counts(viewer_id, listed_ids)

            data = []
            for user, followed_at in items:
                entry = user.to_dict()
                entry['followed_at'] = format_datetime(followed_at)
                entry['is_following'] = True
                if own_list:
                    entry['is_followed_back'] = user.id in followed_back
                if viewer_id is not None:
                    entry['mutual_follows_count'] = mutual_counts.get(user.id, 0)
                data.append(entry)
        except FollowGraphError:
            raise
        except Exception as e:
            raise self._unexpected('get following list', e, user_id=user_id)

        result = {'data': data, 'meta': pagination_meta(page, limit, total)}

        # Not tagged by the listed accounts: their counts and the viewer's
        # mutuals may lag third-party follows for up to list_ttl
        tags = [f"user:{user_id}", f"user:{user_id}:following", f"user:{user_id}:followers"]
        if viewer_id is not None and viewer_id != user_id:
            tags.append(f"user:{viewer_id}:following")
        self.cache.set(cache_key, result, ttl=self.list_ttl, tags=tags)
        return result

    def list_followers(self, user_id, viewer_id=None, page=1, limit=10,
                       sort_by='createdAt', sort_order='DESC', search=None):
        """Get followers of user_id, flagged with whether viewer_id follows each"""
        user_id, viewer_id, page, limit, sort_order, search = self._list_params(
            user_id, viewer_id, page, limit, sort_order, search)

        cache_key = "follow:followers:{}:{}".format(user_id, hash_params(
            viewer=viewer_id, page=page, limit=limit, sort_by=sort_by,
            sort_order=sort_order, search=search))
        cached = self.cache.get(cache_key)
        if cached is not CACHE_MISS:
            return cached

        try:
            self._require_account(user_id)
            items, total = self.store.paged_edges(
                FOLLOWERS, user_id, search=search, sort_by=sort_by,
                sort_order=sort_order, page=page, limit=limit)

            listed_ids = [user.id for user, _ in items]
            viewer_follows = set()
            if viewer_id is not None:
                viewer_follows = self.store.followed_by_viewer(viewer_id, listed_ids)

            data = []
            for user, followed_at in items:
                entry = user.to_dict()
                entry['followed_at'] = format_datetime(followed_at)
                entry['is_following'] = user.id in viewer_follows
                data.append(entry)
        except FollowGraphError:
            raise
        except Exception as e:
            raise self._unexpected('get followers list', e, user_id=user_id)

        result = {'data': data, 'meta': pagination_meta(page, limit, total)}

        tags = [f"user:{user_id}", f"user:{user_id}:followers"]
        if viewer_id is not None:
            tags.append(f"user:{viewer_id}:following")
        self.cache.set(cache_key, result, ttl=self.list_ttl, tags=tags)
        return result

    # ------------------------------------------------------------------
    # Suggestions and analytics
    # ------------------------------------------------------------------

    def suggestions(self, user_id, limit=10):
        """Get follow suggestions based on mutual connections"""
        user_id = validate_account_id(user_id, 'user_id')
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError('Limit must be a positive integer', details={'field': 'limit'})

        try:
            return self.suggestion_engine.get_suggestions(user_id, min(limit, MAX_SUGGESTIONS))
        except FollowGraphError:
            raise
        except Exception as e:
            raise self._unexpected('get follow suggestions', e, user_id=user_id)

    def stats(self, user_id):
        """Get follow count statistics for a user"""
        user_id = validate_account_id(user_id, 'user_id')
        try:
            return self.analytics_service.get_stats(user_id)
        except FollowGraphError:
            raise
        except Exception as e:
            raise self._unexpected('get follow stats', e, user_id=user_id)

    def analytics(self, user_id):
        """Get follow analytics for a user"""
        user_id = validate_account_id(user_id, 'user_id')
        try:
            return self.analytics_service.get_analytics(user_id)
        except FollowGraphError:
            raise
        except Exception as e:
            raise self._unexpected('get follow analytics', e, user_id=user_id)

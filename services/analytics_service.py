from services.audit_service import USER_MANAGEMENT
from utils.exceptions import NotFoundError
from utils.helpers import days_ago, utcnow

UNFOLLOW_ACTION = 'unfollow'
TOP_FOLLOWERS_LIMIT = 10


class AnalyticsService:
    def __init__(self, store, audit, logger):
        self.store = store
        self.audit = audit
        self.logger = logger

    def _require_account(self, user_id):
        user = self.store.get_account(user_id)
        if not user:
            raise NotFoundError('User not found', details={'user_id': user_id})
        return user

    def get_stats(self, user_id):
        """Follower/following totals straight from the denormalized counters"""
        user = self._require_account(user_id)
        return {
            'followers_count': user.followers_count or 0,
            'following_count': user.following_count or 0
        }

    def get_analytics(self, user_id, now=None):
        """Counters plus 7/30 day follower and unfollow activity"""
        user = self._require_account(user_id)

        now = now or utcnow()
        seven_days_ago = days_ago(7, now)
        thirty_days_ago = days_ago(30, now)

        new_followers_7d = self.store.count_followers_since(user_id, seven_days_ago)
        new_followers_30d = self.store.count_followers_since(user_id, thirty_days_ago)

        # Edges are hard-deleted, so unfollows come from the audit trail
        unfollows_7d, unfollows_30d = self.count_unfollows(user_id, seven_days_ago, thirty_days_ago)

        top_followers = [
            {
                'user_id': follower.id,
                'username': follower.username,
                'display_name': follower.display_name,
                'followers_count': follower.followers_count or 0
            }
            for follower in self.store.top_followers(user_id, TOP_FOLLOWERS_LIMIT)
        ]

        return {
            'followers_count': user.followers_count or 0,
            'following_count': user.following_count or 0,
            'new_followers_7d': new_followers_7d,
            'new_followers_30d': new_followers_30d,
            'unfollows_7d': unfollows_7d,
            'unfollows_30d': unfollows_30d,
            'top_followers': top_followers
        }

    def count_unfollows(self, user_id, seven_days_ago, thirty_days_ago):
        entries = self.audit.find(
            actor_id=user_id,
            category=USER_MANAGEMENT,
            action=UNFOLLOW_ACTION,
            since=thirty_days_ago
        )

        unfollows_7d = 0
        unfollows_30d = 0
        for entry in entries:
            if entry.created_at >= seven_days_ago:
                unfollows_7d += 1
            if entry.created_at >= thirty_days_ago:
                unfollows_30d += 1

        return unfollows_7d, unfollows_30d

"""
Follow suggestions ranked by mutual connections
"""
from collections import Counter

from utils.cache_manager import CACHE_MISS

MAX_SUGGESTIONS = 50
MAX_FOLLOWING_SCAN = 100
SUGGESTIONS_CACHE_TTL = 300


class SuggestionEngine:
    def __init__(self, store, cache, logger, cache_ttl=SUGGESTIONS_CACHE_TTL):
        self.store = store
        self.cache = cache
        self.logger = logger
        self.cache_ttl = cache_ttl

    @staticmethod
    def cache_key(user_id):
        return f"follow:suggestions:{user_id}"

    @staticmethod
    def cache_tags(user_id):
        return [f"user:{user_id}", f"user:{user_id}:following"]

    def get_suggestions(self, user_id, limit=10):
        """Up to `limit` (max 50) accounts user_id might want to follow.

        The full 50-entry ranking is cached, so any limit is served from the
        same entry.
        """
        limit = min(limit, MAX_SUGGESTIONS)

        cached = self.cache.get(self.cache_key(user_id))
        if cached is not CACHE_MISS and cached:
            return cached[:limit]

        suggestions = self._build(user_id)
        self.cache.set(self.cache_key(user_id), suggestions,
                       ttl=self.cache_ttl, tags=self.cache_tags(user_id))
        return suggestions[:limit]

    def _build(self, user_id):
        following = self.store.following_ids(user_id)

        if not following:
            # Nothing to rank from: most-followed public accounts
            popular = self.store.popular_accounts(user_id, MAX_SUGGESTIONS)
            return [dict(user.to_dict(), mutual_connections=0) for user in popular]

        counts = self.rank_candidates(user_id, following)
        ranked = [candidate for candidate, _ in counts][:MAX_SUGGESTIONS]
        if not ranked:
            return []

        accounts = self.store.get_accounts(ranked)
        mutuals = dict(counts)
        return [
            dict(accounts[candidate].to_dict(), mutual_connections=mutuals[candidate])
            for candidate in ranked
            if candidate in accounts
        ]

    def rank_candidates(self, user_id, following=None):
        """[(candidate_id, mutual_count)] best first.

        Candidates are accounts followed by the first 100 accounts user_id
        follows, minus user_id and everything user_id already follows. Ties
        keep the order in which candidates were first seen.
        """
        if following is None:
            following = self.store.following_ids(user_id)

        excluded = set(following)
        excluded.add(user_id)

        counts = Counter()
        for candidate in self.store.followed_by_any(following[:MAX_FOLLOWING_SCAN]):
            if candidate not in excluded:
                counts[candidate] += 1

        # sorted() is stable, so equal counts stay in discovery order
        return sorted(counts.items(), key=lambda item: item[1], reverse=True)

    def mutual_connection_counts(self, viewer_id, target_ids):
        """|viewer's following ∩ followers of target| for each target"""
        return self.store.mutual_counts(viewer_id, target_ids)

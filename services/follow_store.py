"""
Persistent follow edges and the denormalized counters that mirror them.

Edge inserts/deletes and the matching counter deltas always run in one
database transaction. Counters are never recomputed here except by
reconcile_counters(), which the background job calls.
"""
from sqlalchemy import case, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import aliased

from models.user import User
from models.user_following import UserFollow
from utils.exceptions import (
    FollowGraphError, SelfFollowError, NotFoundError, DuplicateEdgeError,
    TransientError, InternalError
)
from utils.helpers import escape_like

FOLLOWING = 'following'
FOLLOWERS = 'followers'

MAX_BATCH_IDS = 100

# Public sort names -> column attribute; unknown names fall back to created_at
SORT_FIELDS = {
    'createdAt': 'created_at',
    'dateCreated': 'created_at',
    'created_at': 'created_at',
    'username': 'username',
    'displayName': 'display_name',
    'display_name': 'display_name',
}


def _counter_delta(column, delta):
    """SQL expression applying delta to a counter without going below zero"""
    if delta >= 0:
        return column + delta
    return case((column + delta >= 0, column + delta), else_=0)


class FollowStore:
    def __init__(self, db, logger):
        self.db = db
        self.logger = logger

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def get_account(self, user_id):
        return self.db.session.get(User, user_id)

    def get_accounts(self, user_ids):
        """Map of id -> User for the ids that exist"""
        user_ids = list(user_ids)
        if not user_ids:
            return {}
        users = User.query.filter(User.id.in_(user_ids)).all()
        return {user.id: user for user in users}

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def apply_follow_change(self, follower_id, following_id, delta):
        """Apply delta to both counters inside the caller's transaction"""
        self.db.session.execute(
            update(User)
            .where(User.id == follower_id)
            .values(following_count=_counter_delta(User.following_count, delta))
            .execution_options(synchronize_session=False)
        )
        self.db.session.execute(
            update(User)
            .where(User.id == following_id)
            .values(followers_count=_counter_delta(User.followers_count, delta))
            .execution_options(synchronize_session=False)
        )

    def create_edge(self, follower_id, following_id):
        """Insert the edge and increment both counters atomically.

        Returns a snapshot dict of the new edge.
        """
        if follower_id == following_id:
            raise SelfFollowError()

        try:
            accounts = self.get_accounts([follower_id, following_id])
            if follower_id not in accounts:
                raise NotFoundError('Follower user not found', details={'user_id': follower_id})
            if following_id not in accounts:
                raise NotFoundError('User to follow not found', details={'user_id': following_id})

            edge = UserFollow(follower_id=follower_id, following_id=following_id)
            self.db.session.add(edge)
            self.db.session.flush()
            snapshot = edge.to_dict()

            self.apply_follow_change(follower_id, following_id, 1)
            self.db.session.commit()

        except IntegrityError as e:
            self._rollback()
            # Losing side of a concurrent follow: the winner's row is now visible
            if self.query_edge(follower_id, following_id):
                raise DuplicateEdgeError(original_error=e)
            raise NotFoundError('User not found', original_error=e)
        except FollowGraphError:
            self._rollback()
            raise
        except Exception as e:
            raise self._failed_mutation('create_edge', e, follower_id, following_id)

        self.logger.info(f"User {follower_id} followed user {following_id}")
        return snapshot

    def remove_edge(self, follower_id, following_id):
        """Delete the edge and decrement both counters atomically.

        Returns a snapshot dict of the removed edge.
        """
        try:
            edge = UserFollow.query.filter_by(
                follower_id=follower_id,
                following_id=following_id
            ).first()
            if edge is None:
                raise NotFoundError('You are not following this user')

            snapshot = edge.to_dict()
            self.db.session.expunge(edge)

            result = self.db.session.execute(
                delete(UserFollow)
                .where(UserFollow.id == snapshot['id'])
                .execution_options(synchronize_session=False)
            )
            # A concurrent unfollow already removed it; do not decrement twice
            if result.rowcount == 0:
                raise NotFoundError('You are not following this user')

            self.apply_follow_change(follower_id, following_id, -1)
            self.db.session.commit()

        except FollowGraphError:
            self._rollback()
            raise
        except Exception as e:
            raise self._failed_mutation('remove_edge', e, follower_id, following_id)

        self.logger.info(f"User {follower_id} unfollowed user {following_id}")
        return snapshot

    def _rollback(self):
        try:
            self.db.session.rollback()
            return True
        except Exception as e:
            self.logger.critical(f"Rollback failed: {e}", exc_info=True)
            return False

    def _failed_mutation(self, operation, error, follower_id, following_id):
        """Roll back, log and build the exception to surface"""
        rolled_back = self._rollback()
        self.logger.error(
            f"{operation} failed for {follower_id}->{following_id}: {error} "
            f"(rolled_back={rolled_back})",
            exc_info=True
        )
        if isinstance(error, OperationalError):
            return TransientError('Database temporarily unavailable', original_error=error)
        return InternalError('Failed to update follow relationship', original_error=error)

    # ------------------------------------------------------------------
    # Edge queries
    # ------------------------------------------------------------------

    def query_edge(self, follower_id, following_id):
        return self.db.session.query(UserFollow.id).filter_by(
            follower_id=follower_id,
            following_id=following_id
        ).first() is not None

    def _followed_subset(self, follower_id, target_ids):
        """Ids among target_ids that follower_id follows"""
        if not target_ids:
            return set()
        rows = self.db.session.query(UserFollow.following_id).filter(
            UserFollow.follower_id == follower_id,
            UserFollow.following_id.in_(list(target_ids))
        ).all()
        return {row.following_id for row in rows}

    def batch_has_edge(self, follower_id, user_ids):
        """Map of id -> bool; only the first 100 ids are considered"""
        user_ids = list(dict.fromkeys(list(user_ids)[:MAX_BATCH_IDS]))
        followed = self._followed_subset(follower_id, user_ids)
        return {user_id: user_id in followed for user_id in user_ids}

    def followed_by_viewer(self, viewer_id, target_ids):
        return self._followed_subset(viewer_id, target_ids)

    def followers_among(self, user_id, candidate_ids):
        """Ids among candidate_ids that follow user_id"""
        if not candidate_ids:
            return set()
        rows = self.db.session.query(UserFollow.follower_id).filter(
            UserFollow.following_id == user_id,
            UserFollow.follower_id.in_(list(candidate_ids))
        ).all()
        return {row.follower_id for row in rows}

    def following_ids(self, user_id, limit=None):
        """Ids user_id follows, most recent first"""
        query = self.db.session.query(UserFollow.following_id).filter(
            UserFollow.follower_id == user_id
        ).order_by(UserFollow.created_at.desc(), UserFollow.id.desc())
        if limit:
            query = query.limit(limit)
        return [row.following_id for row in query.all()]

    def followed_by_any(self, follower_ids):
        """following_id of every edge whose follower is in follower_ids, in row order"""
        if not follower_ids:
            return []
        rows = self.db.session.query(UserFollow.following_id).filter(
            UserFollow.follower_id.in_(list(follower_ids))
        ).order_by(UserFollow.id).all()
        return [row.following_id for row in rows]

    def mutual_counts(self, viewer_id, target_ids):
        """For each target: how many accounts the viewer follows also follow it.

        One grouped query across the viewer's following set and the targets.
        """
        if not target_ids:
            return {}
        viewer_edge = aliased(UserFollow)
        viewer_following = select(viewer_edge.following_id).where(
            viewer_edge.follower_id == viewer_id
        )

        rows = self.db.session.query(
            UserFollow.following_id,
            func.count(UserFollow.id)
        ).filter(
            UserFollow.follower_id.in_(viewer_following),
            UserFollow.following_id.in_(list(target_ids))
        ).group_by(UserFollow.following_id).all()

        counts = {target_id: 0 for target_id in target_ids}
        for following_id, count in rows:
            counts[following_id] = count
        return counts

    def paged_edges(self, direction, anchor_id, search=None, sort_by='createdAt',
                    sort_order='DESC', page=1, limit=10):
        """Page of (account, followed_at) on one side of anchor_id's edges.

        direction FOLLOWING lists accounts anchor_id follows, FOLLOWERS lists
        accounts following anchor_id. Returns (items, total).
        """
        if direction == FOLLOWING:
            join_on = UserFollow.following_id == User.id
            anchor = UserFollow.follower_id == anchor_id
        elif direction == FOLLOWERS:
            join_on = UserFollow.follower_id == User.id
            anchor = UserFollow.following_id == anchor_id
        else:
            raise ValueError(f"Unknown edge direction: {direction}")

        query = self.db.session.query(User, UserFollow.created_at).join(
            UserFollow, join_on
        ).filter(anchor)

        if search:
            pattern = f"%{escape_like(search.lower())}%"
            query = query.filter(or_(
                func.lower(User.username).like(pattern, escape='\\'),
                func.lower(User.display_name).like(pattern, escape='\\')
            ))

        total = query.count()

        field = SORT_FIELDS.get(sort_by, 'created_at')
        column = UserFollow.created_at if field == 'created_at' else getattr(User, field)
        if sort_order == 'ASC':
            query = query.order_by(column.asc(), UserFollow.id.asc())
        else:
            query = query.order_by(column.desc(), UserFollow.id.desc())

        rows = query.offset((page - 1) * limit).limit(limit).all()
        return [(user, followed_at) for user, followed_at in rows], total

    # ------------------------------------------------------------------
    # Ranking and analytics queries
    # ------------------------------------------------------------------

    def popular_accounts(self, exclude_id, limit):
        return User.query.filter(
            User.id != exclude_id,
            User.is_public.is_(True)
        ).order_by(User.followers_count.desc(), User.id.asc()).limit(limit).all()

    def count_followers_since(self, user_id, since):
        return self.db.session.query(func.count(UserFollow.id)).filter(
            UserFollow.following_id == user_id,
            UserFollow.created_at >= since
        ).scalar() or 0

    def top_followers(self, user_id, limit=10):
        """Followers of user_id with the most followers of their own"""
        return self.db.session.query(User).join(
            UserFollow, UserFollow.follower_id == User.id
        ).filter(
            UserFollow.following_id == user_id
        ).order_by(User.followers_count.desc(), User.id.asc()).limit(limit).all()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_counters(self):
        """Recompute both counters from user_follows; returns accounts repaired"""
        try:
            followers = dict(self.db.session.query(
                UserFollow.following_id, func.count(UserFollow.id)
            ).group_by(UserFollow.following_id).all())
            following = dict(self.db.session.query(
                UserFollow.follower_id, func.count(UserFollow.id)
            ).group_by(UserFollow.follower_id).all())

            repaired = 0
            for user in User.query.all():
                expected_followers = followers.get(user.id, 0)
                expected_following = following.get(user.id, 0)
                if (user.followers_count, user.following_count) == (expected_followers, expected_following):
                    continue

                self.logger.warning(
                    f"Counter drift for user {user.id}: "
                    f"followers {user.followers_count}->{expected_followers}, "
                    f"following {user.following_count}->{expected_following}"
                )
                user.followers_count = expected_followers
                user.following_count = expected_following
                repaired += 1

            self.db.session.commit()
            return repaired

        except Exception as e:
            self._rollback()
            self.logger.error(f"Counter reconciliation failed: {e}", exc_info=True)
            raise InternalError('Failed to reconcile follow counters', original_error=e)

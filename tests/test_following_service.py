import time
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from follow_backend import db
from models.audit_log import AuditLog
from models.privacy import PrivacySettings
from models.user_following import UserFollow
from utils.exceptions import (
    ConflictError, CooldownError, DuplicateEdgeError, ForbiddenError,
    NotFoundError, SelfFollowError, TransientError, ValidationError
)


# ----------------------------------------------------------------------
# follow / unfollow
# ----------------------------------------------------------------------

def test_follow_creates_edge_and_bumps_counters(service, make_user):
    alice, bob = make_user(), make_user()

    edge = service.follow(alice.id, bob.id)

    assert edge['follower_id'] == alice.id
    assert edge['following_id'] == bob.id
    assert edge['created_at']
    assert service.is_following(alice.id, bob.id) is True
    assert bob.followers_count == 1
    assert alice.following_count == 1


def test_follow_accepts_numeric_string_ids(service, make_user):
    alice, bob = make_user(), make_user()

    service.follow(str(alice.id), f" {bob.id} ")

    assert service.is_following(alice.id, bob.id) is True


def test_self_follow_is_rejected(service, make_user):
    alice = make_user()

    with pytest.raises(SelfFollowError) as exc_info:
        service.follow(alice.id, alice.id)

    assert isinstance(exc_info.value, ValidationError)
    assert exc_info.value.status_code == 400
    assert alice.following_count == 0


@pytest.mark.parametrize('bad_id', [
    None, 0, -4, 'abc', '', True, 2.5, [1], '²', '٣x', 2 ** 31, '2147483648', 10 ** 30
])
def test_malformed_ids_are_rejected(service, make_user, bad_id):
    alice = make_user()

    with pytest.raises(ValidationError):
        service.follow(alice.id, bad_id)
    with pytest.raises(ValidationError):
        service.is_following(bad_id, alice.id)


def test_second_follow_conflicts_without_touching_counters(service, make_user):
    alice, bob = make_user(), make_user()
    service.follow(alice.id, bob.id)

    with pytest.raises(DuplicateEdgeError) as exc_info:
        service.follow(alice.id, bob.id)

    assert isinstance(exc_info.value, ConflictError)
    assert exc_info.value.status_code == 409
    assert bob.followers_count == 1
    assert alice.following_count == 1


def test_losing_a_concurrent_follow_is_a_duplicate(service, store, make_user, monkeypatch):
    alice, bob = make_user(), make_user()
    service.follow(alice.id, bob.id)

    real_query_edge = store.query_edge
    calls = []

    def stale_precheck(follower_id, following_id):
        # First look happens before the other request committed
        calls.append((follower_id, following_id))
        if len(calls) == 1:
            return False
        return real_query_edge(follower_id, following_id)

    monkeypatch.setattr(store, 'query_edge', stale_precheck)

    with pytest.raises(DuplicateEdgeError):
        service.follow(alice.id, bob.id)

    assert UserFollow.query.count() == 1
    assert bob.followers_count == 1
    assert alice.following_count == 1


def test_follow_missing_account_is_not_found(service, make_user):
    alice = make_user()

    with pytest.raises(NotFoundError) as exc_info:
        service.follow(alice.id, 424242)

    assert exc_info.value.status_code == 404


def test_unfollow_without_edge_is_not_found(service, make_user):
    alice, bob = make_user(), make_user()

    with pytest.raises(NotFoundError):
        service.unfollow(alice.id, bob.id)


def test_unfollow_removes_edge_and_decrements(service, make_user):
    alice, bob = make_user(), make_user()
    service.follow(alice.id, bob.id)

    service.unfollow(alice.id, bob.id)

    assert service.is_following(alice.id, bob.id) is False
    assert bob.followers_count == 0
    assert alice.following_count == 0


def test_unfollow_is_audited_with_timestamp(service, make_user):
    alice, bob = make_user(), make_user()
    edge = service.follow(alice.id, bob.id)
    service.unfollow(alice.id, bob.id)

    entry = AuditLog.query.filter_by(actor_id=alice.id, action='unfollow').one()

    assert entry.category == 'user_management'
    assert entry.details['following_id'] == bob.id
    assert entry.details['action'] == 'unfollow'
    assert entry.details['timestamp']
    assert entry.details['follow_created_at'] == edge['created_at']


# ----------------------------------------------------------------------
# Privacy
# ----------------------------------------------------------------------

def test_private_account_blocks_new_followers_only(service, make_user):
    alice, bob, carol = make_user(), make_user(), make_user()
    service.follow(alice.id, bob.id)

    bob.privacy = PrivacySettings(allow_friend_requests=False)
    db.session.commit()

    with pytest.raises(ForbiddenError) as exc_info:
        service.follow(carol.id, bob.id)

    assert exc_info.value.status_code == 403
    assert service.is_following(alice.id, bob.id) is True
    assert service.is_following(carol.id, bob.id) is False
    assert bob.followers_count == 1


def test_account_without_privacy_settings_accepts_follows(service, make_user):
    alice = make_user()
    bob = make_user(allow_friend_requests=True)

    service.follow(alice.id, bob.id)

    assert service.is_following(alice.id, bob.id)


# ----------------------------------------------------------------------
# Cooldown
# ----------------------------------------------------------------------

def test_refollow_is_blocked_by_cooldown(service, make_user):
    alice, bob = make_user(), make_user()
    service.follow(alice.id, bob.id)
    service.unfollow(alice.id, bob.id)

    with pytest.raises(CooldownError) as exc_info:
        service.follow(alice.id, bob.id)

    error = exc_info.value
    assert isinstance(error, ConflictError)
    assert 0 < error.remaining_seconds <= 300
    assert error.details['remaining_seconds'] == error.remaining_seconds
    assert '5 minute(s)' in error.message
    assert bob.followers_count == 0


def test_cooldown_message_rounds_minutes_up():
    assert 'wait 2 minute(s)' in CooldownError(61).message
    assert 'wait 1 minute(s)' in CooldownError(5).message


def test_cooldown_only_blocks_the_unfollowed_pair(service, make_user):
    alice, bob, carol = make_user(), make_user(), make_user()
    service.follow(alice.id, bob.id)
    service.unfollow(alice.id, bob.id)

    service.follow(alice.id, carol.id)
    service.follow(bob.id, alice.id)

    assert service.is_following(alice.id, carol.id)
    assert service.is_following(bob.id, alice.id)


def test_refollow_allowed_once_cooldown_expires(service, make_user, monkeypatch):
    alice, bob = make_user(), make_user()
    monkeypatch.setattr(service, 'cooldown_seconds', 1)
    service.follow(alice.id, bob.id)
    service.unfollow(alice.id, bob.id)

    with pytest.raises(CooldownError):
        service.follow(alice.id, bob.id)

    time.sleep(1.2)
    service.follow(alice.id, bob.id)

    assert service.is_following(alice.id, bob.id) is True
    assert bob.followers_count == 1
    assert alice.following_count == 1


def test_admin_can_clear_a_cooldown(service, make_user, admin):
    alice, bob = make_user(), make_user()
    service.follow(alice.id, bob.id)
    service.unfollow(alice.id, bob.id)

    assert service.clear_cooldown(admin, alice.id, bob.id) is True
    service.follow(alice.id, bob.id)

    assert service.is_following(alice.id, bob.id)
    entry = AuditLog.query.filter_by(action='clear_cooldown').one()
    assert entry.details['cleared_by'] == admin.id


def test_clearing_without_a_cooldown_reports_false(service, make_user, admin):
    alice, bob = make_user(), make_user()

    assert service.clear_cooldown(admin, alice.id, bob.id) is False


@pytest.mark.parametrize('role', ['founder', 'chief_executive'])
def test_other_privileged_roles_can_clear(service, make_user, role):
    alice, bob = make_user(), make_user()
    boss = make_user(role=role)
    service.follow(alice.id, bob.id)
    service.unfollow(alice.id, bob.id)

    assert service.clear_cooldown(boss, alice.id, bob.id) is True


def test_non_admin_cannot_clear_a_cooldown(service, make_user):
    alice, bob = make_user(), make_user()
    service.follow(alice.id, bob.id)
    service.unfollow(alice.id, bob.id)

    with pytest.raises(ForbiddenError):
        service.clear_cooldown(alice, alice.id, bob.id)
    with pytest.raises(ForbiddenError):
        service.clear_cooldown(None, alice.id, bob.id)

    with pytest.raises(CooldownError):
        service.follow(alice.id, bob.id)


# ----------------------------------------------------------------------
# Status lookups and caching
# ----------------------------------------------------------------------

def test_cached_negative_status_is_replaced_after_follow(service, make_user):
    alice, bob = make_user(), make_user()

    assert service.is_following(alice.id, bob.id) is False
    assert service.cache.get(service.status_key(alice.id, bob.id)) is False

    service.follow(alice.id, bob.id)

    assert service.is_following(alice.id, bob.id) is True


def test_cached_positive_status_is_replaced_after_unfollow(service, make_user):
    alice, bob = make_user(), make_user()
    service.follow(alice.id, bob.id)
    assert service.is_following(alice.id, bob.id) is True

    service.unfollow(alice.id, bob.id)

    assert service.is_following(alice.id, bob.id) is False


def test_status_is_served_from_cache(service, store, make_user):
    alice, bob = make_user(), make_user()
    service.is_following(alice.id, bob.id)

    with patch.object(store, 'query_edge', wraps=store.query_edge) as query_edge:
        assert service.is_following(alice.id, bob.id) is False

    query_edge.assert_not_called()


def test_batch_follow_status(service, make_user):
    a, b, c, d = (make_user() for _ in range(4))
    service.follow(a.id, b.id)

    assert service.batch_follow_status(a.id, [b.id, c.id, d.id]) == {
        b.id: True, c.id: False, d.id: False
    }


def test_batch_follow_status_only_queries_uncached_ids(service, store, make_user):
    a, b, c, d = (make_user() for _ in range(4))
    service.follow(a.id, b.id)
    service.is_following(a.id, b.id)
    service.is_following(a.id, c.id)

    with patch.object(store, 'batch_has_edge', wraps=store.batch_has_edge) as batch_has_edge:
        result = service.batch_follow_status(a.id, [d.id, b.id, c.id])

    batch_has_edge.assert_called_once_with(a.id, [d.id])
    assert list(result) == [d.id, b.id, c.id]
    assert result == {d.id: False, b.id: True, c.id: False}


def test_batch_follow_status_caps_ids(service, make_user):
    a = make_user()

    result = service.batch_follow_status(a.id, list(range(1000, 1250)))

    assert len(result) == 100


def test_batch_follow_status_input_handling(service, make_user):
    a = make_user()

    assert service.batch_follow_status(a.id, None) == {}
    assert service.batch_follow_status(a.id, []) == {}
    with pytest.raises(ValidationError):
        service.batch_follow_status(a.id, '1,2,3')
    with pytest.raises(ValidationError):
        service.batch_follow_status(a.id, [1, 'x'])


def test_database_outage_on_read_is_transient(service, store, make_user, monkeypatch):
    alice, bob = make_user(), make_user()

    def unavailable(*args, **kwargs):
        raise OperationalError('SELECT', {}, Exception('server closed the connection'))

    monkeypatch.setattr(store, 'query_edge', unavailable)

    with pytest.raises(TransientError) as exc_info:
        service.is_following(alice.id, bob.id)

    assert exc_info.value.status_code == 503


# ----------------------------------------------------------------------
# Lists
# ----------------------------------------------------------------------

@pytest.fixture
def small_graph(service, make_user):
    owner, x, y, z = (make_user() for _ in range(4))
    service.follow(owner.id, x.id)
    service.follow(owner.id, y.id)
    service.follow(x.id, owner.id)
    service.follow(y.id, x.id)
    service.follow(z.id, owner.id)
    return owner, x, y, z


def test_own_following_list_carries_follow_back_and_mutuals(service, small_graph):
    owner, x, y, _ = small_graph

    page = service.list_following(owner.id, viewer_id=owner.id)

    entries = {entry['id']: entry for entry in page['data']}
    assert set(entries) == {x.id, y.id}
    assert all(entry['is_following'] is True for entry in page['data'])
    assert entries[x.id]['is_followed_back'] is True
    assert entries[y.id]['is_followed_back'] is False
    assert entries[x.id]['mutual_follows_count'] == 1
    assert entries[y.id]['mutual_follows_count'] == 0
    assert entries[x.id]['followed_at']
    assert page['meta'] == {
        'page': 1, 'limit': 10, 'total': 2, 'total_pages': 1,
        'has_next_page': False, 'has_previous_page': False
    }


def test_someone_elses_following_list_omits_follow_back(service, small_graph):
    owner, _, _, z = small_graph

    page = service.list_following(owner.id, viewer_id=z.id)

    assert all('is_followed_back' not in entry for entry in page['data'])
    assert all('mutual_follows_count' in entry for entry in page['data'])

    anonymous = service.list_following(owner.id)
    assert all('mutual_follows_count' not in entry for entry in anonymous['data'])


def test_followers_list_flags_whom_the_viewer_follows(service, small_graph):
    owner, x, y, z = small_graph

    page = service.list_followers(x.id, viewer_id=z.id)
    assert {entry['id']: entry['is_following'] for entry in page['data']} == {
        owner.id: True, y.id: False
    }

    anonymous = service.list_followers(x.id)
    assert all(entry['is_following'] is False for entry in anonymous['data'])


def test_followers_list_refreshes_after_new_follow(service, small_graph, make_user):
    _, x, _, _ = small_graph
    assert service.list_followers(x.id)['meta']['total'] == 2

    service.follow(make_user().id, x.id)

    assert service.list_followers(x.id)['meta']['total'] == 3


def test_viewer_flags_refresh_after_viewer_follows(service, small_graph):
    owner, x, y, z = small_graph
    page = service.list_followers(x.id, viewer_id=z.id)
    assert {e['id']: e['is_following'] for e in page['data']}[y.id] is False

    service.follow(z.id, y.id)

    page = service.list_followers(x.id, viewer_id=z.id)
    assert {e['id']: e['is_following'] for e in page['data']}[y.id] is True


def test_list_pagination_and_search(service, make_user):
    star = make_user()
    for n in range(12):
        fan = make_user(username=f"fan_{n:02d}")
        service.follow(fan.id, star.id)
    service.follow(make_user(username='outsider').id, star.id)

    page = service.list_followers(star.id, page=2, limit=5, sort_by='username', sort_order='asc')
    assert [entry['username'] for entry in page['data']] == [
        'fan_05', 'fan_06', 'fan_07', 'fan_08', 'fan_09'
    ]
    assert page['meta']['total'] == 13
    assert page['meta']['total_pages'] == 3
    assert page['meta']['has_next_page'] is True
    assert page['meta']['has_previous_page'] is True

    found = service.list_followers(star.id, search='  FAN_1 ')
    assert sorted(entry['username'] for entry in found['data']) == ['fan_10', 'fan_11']


def test_list_of_missing_account_is_not_found(service, app):
    with pytest.raises(NotFoundError):
        service.list_following(9999)
    with pytest.raises(NotFoundError):
        service.list_followers(9999)


@pytest.mark.parametrize('page,limit', [(0, 10), (1, 0), (1, 101), ('1', 10), (1, 'ten')])
def test_invalid_pagination_is_rejected(service, make_user, page, limit):
    owner = make_user()

    with pytest.raises(ValidationError):
        service.list_following(owner.id, page=page, limit=limit)


# ----------------------------------------------------------------------
# Best-effort side effects
# ----------------------------------------------------------------------

def test_follow_and_unfollow_publish_events(service, make_user):
    alice, bob = make_user(), make_user()

    with patch.object(service.events, 'publish', wraps=service.events.publish) as publish:
        service.follow(alice.id, bob.id)
        service.unfollow(alice.id, bob.id)

    payload = {'follower_id': alice.id, 'following_id': bob.id}
    assert publish.call_args_list[0].args == ('followed', payload)
    assert publish.call_args_list[1].args == ('unfollowed', payload)


def test_mutations_succeed_with_cache_and_cooldown_store_down(down_service, make_user):
    alice, bob = make_user(), make_user()

    down_service.follow(alice.id, bob.id)
    assert down_service.is_following(alice.id, bob.id) is True
    assert down_service.batch_follow_status(alice.id, [bob.id]) == {bob.id: True}
    assert down_service.list_followers(bob.id)['meta']['total'] == 1

    down_service.unfollow(alice.id, bob.id)
    assert down_service.is_following(alice.id, bob.id) is False
    assert bob.followers_count == 0

    # Without a reachable cooldown store the re-follow is allowed
    down_service.follow(alice.id, bob.id)
    assert bob.followers_count == 1


def test_audit_failure_does_not_fail_the_follow(service, make_user, monkeypatch):
    alice, bob = make_user(), make_user()

    def broken_entry(**kwargs):
        raise RuntimeError('audit store unavailable')

    monkeypatch.setattr('services.audit_service.AuditLog', broken_entry)

    service.follow(alice.id, bob.id)
    service.unfollow(alice.id, bob.id)

    assert bob.followers_count == 0
    assert AuditLog.query.count() == 0

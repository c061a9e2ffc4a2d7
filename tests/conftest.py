# tests/conftest.py
import itertools
import os

# Must be set before the application module is imported
os.environ['DATABASE_URL'] = 'sqlite://'

import fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from follow_backend import app as flask_app, db, build_follow_graph_service
from models.privacy import PrivacySettings
from models.user import User


class DownRedis:
    """Redis double whose every command fails as if the server were gone."""

    def __getattr__(self, name):
        def unavailable(*args, **kwargs):
            raise RedisConnectionError(f"redis unavailable ({name})")
        return unavailable


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True)
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def redis_conn():
    return fakeredis.FakeRedis()


@pytest.fixture
def service(app, redis_conn):
    return build_follow_graph_service(redis_conn)


@pytest.fixture
def down_service(app):
    """Service whose cache, cooldown store and event channel are all unreachable"""
    return build_follow_graph_service(DownRedis())


@pytest.fixture
def store(service):
    return service.store


@pytest.fixture
def make_user(app):
    sequence = itertools.count(1)

    def _make_user(username=None, display_name=None, is_public=True,
                   allow_friend_requests=None, role='user', followers_count=0):
        n = next(sequence)
        username = username or f"user{n}"
        user = User(
            username=username,
            display_name=display_name or f"User {n}",
            email=f"{username}@example.com",
            role=role,
            is_public=is_public,
            followers_count=followers_count,
            following_count=0
        )
        if allow_friend_requests is not None:
            user.privacy = PrivacySettings(allow_friend_requests=allow_friend_requests)
        db.session.add(user)
        db.session.commit()
        return user

    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user(username='admin', role='admin')

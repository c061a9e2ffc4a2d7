"""
Follow Graph - social graph backend
Directed follows, re-follow cooldowns, cached lookups, suggestions, analytics.
"""
import os

import click
import redis
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# === LOGGING CONFIGURATION ===
from utils.logging_config import setup_logger

logger = setup_logger('follow_graph')

# === CONSTANTS ===
FOLLOW_COOLDOWN_SECONDS = int(os.environ.get('FOLLOW_COOLDOWN_SECONDS', 300))
FOLLOW_STATUS_CACHE_TTL = int(os.environ.get('FOLLOW_STATUS_CACHE_TTL', 300))
FOLLOW_LIST_CACHE_TTL = int(os.environ.get('FOLLOW_LIST_CACHE_TTL', 300))
FOLLOW_SUGGESTIONS_CACHE_TTL = int(os.environ.get('FOLLOW_SUGGESTIONS_CACHE_TTL', 300))
CACHE_TAG_TTL = int(os.environ.get('CACHE_TAG_TTL', 3600))
AUDIT_QUERY_LIMIT = int(os.environ.get('AUDIT_QUERY_LIMIT', 1000))
FOLLOW_EVENTS_CHANNEL = os.environ.get('FOLLOW_EVENTS_CHANNEL', 'follows:events')

# === REDIS SETUP ===
redis_client = redis.from_url(os.environ.get('REDIS_URL', 'redis://localhost:6379'))

# === CREATE FLASK APP ===
app = Flask(__name__)

# Database configuration
app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get(
    'DATABASE_URL',
    'postgresql://localhost/follow_graph'
).replace('postgres://', 'postgresql://')
app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
if not app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite'):
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = {
        'pool_size': 20,
        'pool_recycle': 3600,
        'pool_pre_ping': True,
        'max_overflow': 40,
        'pool_timeout': 30
    }

app.config.update(
    FOLLOW_COOLDOWN_SECONDS=FOLLOW_COOLDOWN_SECONDS,
    FOLLOW_STATUS_CACHE_TTL=FOLLOW_STATUS_CACHE_TTL,
    FOLLOW_LIST_CACHE_TTL=FOLLOW_LIST_CACHE_TTL,
    FOLLOW_SUGGESTIONS_CACHE_TTL=FOLLOW_SUGGESTIONS_CACHE_TTL,
    CACHE_TAG_TTL=CACHE_TAG_TTL,
    AUDIT_QUERY_LIMIT=AUDIT_QUERY_LIMIT,
    FOLLOW_EVENTS_CHANNEL=FOLLOW_EVENTS_CHANNEL
)

# === INITIALIZE EXTENSIONS ===
db = SQLAlchemy(app)
migrate = Migrate(app, db)

# === DATABASE MODELS (Import in correct order) ===
from models.user import User
from models.privacy import PrivacySettings
from models.user_following import UserFollow
from models.audit_log import AuditLog

# === SERVICE IMPORTS ===
from utils.cache_manager import FollowCache
from services.follow_store import FollowStore
from services.cooldown_service import CooldownGuard
from services.suggestion_service import SuggestionEngine
from services.analytics_service import AnalyticsService
from services.audit_service import AuditLogService
from services.notification_service import EventPublisher
from services.following_service import FollowGraphService


def build_follow_graph_service(redis_conn=None):
    """Wire the follow graph components around one redis connection"""
    redis_conn = redis_conn if redis_conn is not None else redis_client
    config = app.config

    cache = FollowCache(redis_conn, logger, tag_ttl=config['CACHE_TAG_TTL'])
    store = FollowStore(db, logger)
    audit = AuditLogService(db, logger, query_limit=config['AUDIT_QUERY_LIMIT'])

    return FollowGraphService(
        db=db,
        store=store,
        cooldowns=CooldownGuard(redis_conn, logger, default_ttl=config['FOLLOW_COOLDOWN_SECONDS']),
        cache=cache,
        suggestion_engine=SuggestionEngine(store, cache, logger,
                                           cache_ttl=config['FOLLOW_SUGGESTIONS_CACHE_TTL']),
        analytics=AnalyticsService(store, audit, logger),
        audit=audit,
        events=EventPublisher(redis_conn, logger, channel=config['FOLLOW_EVENTS_CHANNEL']),
        logger=logger,
        status_ttl=config['FOLLOW_STATUS_CACHE_TTL'],
        list_ttl=config['FOLLOW_LIST_CACHE_TTL'],
        cooldown_seconds=config['FOLLOW_COOLDOWN_SECONDS']
    )


# === INITIALIZE SERVICES ===
follow_graph_service = build_follow_graph_service()


# === CLI COMMANDS ===
@app.cli.command('init-db')
def init_db_command():
    """Create all tables"""
    db.create_all()
    logger.info("Database tables created")
    click.echo('Database initialized')


@app.cli.command('reconcile-follow-counts')
def reconcile_follow_counts_command():
    """Repair follower/following counters that drifted from user_follows"""
    repaired = FollowStore(db, logger).reconcile_counters()
    click.echo(f"Reconciled {repaired} account(s)")

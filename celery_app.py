"""Celery configuration for follow graph background jobs"""
import os
from datetime import timedelta

from celery import Celery


def create_celery_app():
    celery = Celery(
        'follow_graph',
        broker=os.environ.get('REDIS_URL', 'redis://localhost:6379/0'),
        backend=os.environ.get('REDIS_URL', 'redis://localhost:6379/0')
    )

    celery.conf.update(
        task_serializer='json',
        accept_content=['json'],
        result_serializer='json',
        timezone='UTC',
        enable_utc=True,
        task_track_started=True,
        task_time_limit=300,
        task_soft_time_limit=240,
        worker_prefetch_multiplier=1,
        worker_max_tasks_per_child=100,
        beat_schedule={
            'reconcile-follow-counts': {
                'task': 'celery_app.reconcile_follow_counts',
                'schedule': timedelta(hours=6),
            },
        }
    )

    return celery


celery = create_celery_app()

# Import Flask app context
from follow_backend import app, db, logger


@celery.task
def reconcile_follow_counts():
    """Repair denormalized follow counters from the edge table"""
    with app.app_context():
        from services.follow_store import FollowStore

        repaired = FollowStore(db, logger).reconcile_counters()
        return f"Reconciled {repaired} accounts"

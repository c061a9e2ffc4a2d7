"""
General helper utilities for the follow graph
"""
import hashlib
import json
import math
from datetime import datetime, timedelta, timezone


def utcnow():
    """Naive UTC timestamp, matching how DateTime columns are stored"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_ago(days, now=None):
    return (now or utcnow()) - timedelta(days=days)


def format_datetime(dt):
    """Format datetime for serialized payloads"""
    if not dt:
        return None
    return dt.isoformat()


def escape_like(text):
    """Escape LIKE wildcards so user search text matches literally"""
    return text.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def hash_params(**params):
    """Stable short digest of query parameters for cache keys"""
    raw = json.dumps(params, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode()).hexdigest()[:16]


def pagination_meta(page, limit, total):
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        'page': page,
        'limit': limit,
        'total': total,
        'total_pages': total_pages,
        'has_next_page': page < total_pages,
        'has_previous_page': page > 1
    }

"""Audit trail writes and queries"""
from models.audit_log import AuditLog
from utils.logging_config import log_audit

USER_MANAGEMENT = 'user_management'
DEFAULT_QUERY_LIMIT = 1000


class AuditLogService:
    def __init__(self, db, logger, query_limit=DEFAULT_QUERY_LIMIT):
        self.db = db
        self.logger = logger
        self.query_limit = query_limit

    def record(self, actor_id, action, message, details=None,
               category=USER_MANAGEMENT, level='info'):
        """Persist an audit entry; failures are logged, never raised"""
        log_audit(self.logger, actor_id, action, details)
        try:
            entry = AuditLog(
                actor_id=actor_id,
                category=category,
                action=action,
                level=level,
                message=message,
                details=details or {}
            )
            self.db.session.add(entry)
            self.db.session.commit()
            return entry
        except Exception as e:
            self.db.session.rollback()
            self.logger.error(f"Audit write failed for user {actor_id} action {action}: {e}")
            return None

    def find(self, actor_id, category=USER_MANAGEMENT, action=None, since=None, limit=None):
        """Entries for an actor, newest first, capped at the query limit"""
        limit = min(limit or self.query_limit, self.query_limit)

        query = AuditLog.query.filter(
            AuditLog.actor_id == actor_id,
            AuditLog.category == category
        )
        if action:
            query = query.filter(AuditLog.action == action)
        if since is not None:
            query = query.filter(AuditLog.created_at >= since)

        return query.order_by(AuditLog.created_at.desc()).limit(limit).all()

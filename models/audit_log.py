"""Durable audit trail of account actions"""
from follow_backend import db
from utils.helpers import utcnow, format_datetime


class AuditLog(db.Model):
    __tablename__ = 'audit_logs'

    id = db.Column(db.Integer, primary_key=True)
    actor_id = db.Column(db.Integer, nullable=False)
    category = db.Column(db.String(50), nullable=False)
    action = db.Column(db.String(50), nullable=False)
    level = db.Column(db.String(10), default='info', nullable=False)
    message = db.Column(db.String(255))
    details = db.Column(db.JSON)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.Index('idx_audit_actor_category_created', 'actor_id', 'category', 'created_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'actor_id': self.actor_id,
            'category': self.category,
            'action': self.action,
            'level': self.level,
            'message': self.message,
            'details': self.details or {},
            'created_at': format_datetime(self.created_at)
        }

from follow_backend import db
from utils.helpers import utcnow


class PrivacySettings(db.Model):
    __tablename__ = 'user_privacy'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'),
                        unique=True, nullable=False)
    allow_friend_requests = db.Column(db.Boolean, default=True, nullable=False)
    show_followers = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

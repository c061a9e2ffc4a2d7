from follow_backend import db
from utils.helpers import utcnow, format_datetime


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(50), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(100), index=True)
    email = db.Column(db.String(255), unique=True)
    role = db.Column(db.String(20), default='user', index=True)
    is_public = db.Column(db.Boolean, default=True, nullable=False, index=True)
    is_active = db.Column(db.Boolean, default=True)

    # Denormalized counters, only mutated together with user_follows rows
    followers_count = db.Column(db.Integer, default=0, nullable=False)
    following_count = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow)

    privacy = db.relationship('PrivacySettings', backref='user', uselist=False,
                              cascade='all, delete-orphan')

    @property
    def allow_friend_requests(self):
        """Accounts without privacy settings accept follows"""
        if self.privacy is None:
            return True
        return bool(self.privacy.allow_friend_requests)

    def __repr__(self):
        return f'<User {self.username}>'

    def to_dict(self):
        """Convert to dictionary for JSON serialization"""
        return {
            'id': self.id,
            'username': self.username,
            'display_name': self.display_name,
            'is_public': self.is_public,
            'followers_count': self.followers_count or 0,
            'following_count': self.following_count or 0,
            'created_at': format_datetime(self.created_at)
        }

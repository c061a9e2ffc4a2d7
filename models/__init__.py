# models/__init__.py
from models.user import User
from models.privacy import PrivacySettings
from models.user_following import UserFollow
from models.audit_log import AuditLog

__all__ = [
    'User', 'PrivacySettings', 'UserFollow', 'AuditLog'
]

"""
Follow graph exception types

Every error raised across the service boundary derives from FollowGraphError.
status_code is informational metadata for whatever layer renders the error.
"""
from typing import Optional


class FollowGraphError(Exception):
    """Base exception for all follow graph errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None,
                 original_error: Optional[Exception] = None):
        self.message = message
        self.details = details or {}
        self.original_error = original_error
        super().__init__(message)

    def to_dict(self):
        payload = {'error': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(FollowGraphError):
    """Raised when input validation fails."""

    status_code = 400


class SelfFollowError(ValidationError):
    def __init__(self, message='You cannot follow yourself', **kwargs):
        super().__init__(message, **kwargs)


class NotFoundError(FollowGraphError):
    """Raised when an account or follow edge does not exist."""

    status_code = 404


class ConflictError(FollowGraphError):
    """Raised when the requested change collides with existing state."""

    status_code = 409


class DuplicateEdgeError(ConflictError):
    def __init__(self, message='You are already following this user', **kwargs):
        super().__init__(message, **kwargs)


class CooldownError(ConflictError):
    """Raised when a re-follow is attempted while the pair is cooling down."""

    def __init__(self, remaining_seconds: int):
        self.remaining_seconds = remaining_seconds
        minutes = max(1, -(-remaining_seconds // 60))
        super().__init__(
            f"You must wait {minutes} minute(s) before following this user again",
            details={'remaining_seconds': remaining_seconds}
        )


class ForbiddenError(FollowGraphError):
    """Raised when a privacy rule or missing privilege blocks the action."""

    status_code = 403


class TransientError(FollowGraphError):
    """Raised when a backing store is temporarily unavailable."""

    status_code = 503


class InternalError(FollowGraphError):
    """Raised for unexpected failures after the transaction was rolled back."""

    status_code = 500

"""
Logging configuration for the follow graph backend
"""
import logging
import os


def setup_logger(name, level=None):
    """Setup logger with consistent formatting"""
    if level is None:
        level = logging.DEBUG if os.environ.get('FLASK_ENV') == 'development' else logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setLevel(level)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    handler.setFormatter(formatter)

    logger.addHandler(handler)

    return logger


def log_error(logger, error, context=None):
    """Log error with context and the error's traceback"""
    error_msg = f"{type(error).__name__}: {error}"
    if context:
        operation = context.get('operation')
        if operation:
            error_msg = f"{operation} failed: {error_msg}"
        extra = {key: value for key, value in context.items() if key != 'operation'}
        if extra:
            error_msg += f" | Context: {extra}"
    logger.error(error_msg, exc_info=(type(error), error, error.__traceback__))


def log_audit(logger, user_id, action, details=None):
    """Log audit events with special formatting"""
    audit_msg = f"AUDIT: User {user_id} | Action: {action}"
    if details:
        audit_msg += f" | Details: {details}"
    logger.info(audit_msg)

from functools import wraps

from utils.exceptions import ForbiddenError

ADMIN_ROLES = ('admin', 'founder', 'chief_executive')


def require_roles(roles=ADMIN_ROLES):
    """Authorization decorator for service methods taking an actor first.

    The actor is whatever account object the calling layer authenticated;
    only its ``role`` attribute is consulted.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(self, actor, *args, **kwargs):
            if actor is None:
                raise ForbiddenError('User not authenticated')

            if getattr(actor, 'role', None) not in roles:
                raise ForbiddenError('Access denied. Administrator privileges required.')

            return f(self, actor, *args, **kwargs)
        return decorated_function
    return decorator

"""
Input validation utilities
"""
from utils.exceptions import ValidationError

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100
MAX_ACCOUNT_ID = 2 ** 31 - 1

SORT_ORDERS = ('ASC', 'DESC')


def validate_account_id(value, field='user_id'):
    """Return value as a positive int or raise ValidationError"""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field}", details={'field': field})

    if isinstance(value, str):
        value = value.strip()
        if not value.isdecimal():
            raise ValidationError(f"Invalid {field}", details={'field': field})
        try:
            value = int(value)
        except ValueError:
            raise ValidationError(f"Invalid {field}", details={'field': field})

    # Ids are stored in a 32-bit Integer column
    if not isinstance(value, int) or not 0 < value <= MAX_ACCOUNT_ID:
        raise ValidationError(f"Invalid {field}", details={'field': field})

    return value


def validate_pagination(page=None, limit=None):
    """Validate page/limit, applying defaults for missing values"""
    page = DEFAULT_PAGE if page is None else page
    limit = DEFAULT_LIMIT if limit is None else limit

    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise ValidationError("Page must be an integer >= 1", details={'field': 'page'})

    if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIMIT:
        raise ValidationError(
            f"Limit must be an integer between 1 and {MAX_LIMIT}",
            details={'field': 'limit'}
        )

    return page, limit


def normalize_sort_order(sort_order):
    """Anything other than ASC sorts descending"""
    if isinstance(sort_order, str) and sort_order.upper() == 'ASC':
        return 'ASC'
    return 'DESC'


def normalize_search(search):
    if not search or not isinstance(search, str):
        return None
    search = search.strip()
    return search or None

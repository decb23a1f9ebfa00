from .jwt import CurrentUser, get_current_user, verify_token
from .rate_limit import limiter

__all__ = [
    "CurrentUser",
    "get_current_user",
    "limiter",
    "verify_token",
]

# giftfund/features/user/auth/__init__.py

# This file makes the 'auth' directory a Python package.
# The security functions and dependencies are re-exported here for easier access.

from .security import (
    create_access_token,
    verify_token,
)

from .dependencies import (
    oauth2_scheme,
    get_current_user,
    get_optional_user,
)

__all__ = [
    "create_access_token",
    "verify_token",
    "oauth2_scheme",
    "get_current_user",
    "get_optional_user",
]

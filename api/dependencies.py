"""
api/dependencies.py -- FastAPI Depends() helpers for authentication.

The session token travels in the Authorization: Bearer <token> header. It is
resolved through TokenService.authenticate(), so a token must both verify
(signature, expiry) and still be present in the revocation table.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises Unauthorized, which the exception
handlers in api/main.py turn into a 401.

Authorization beyond "is logged in" is not done here: services call the policy
table in auth/entitlements.py.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from auth.models import User
from core.errors import Unauthorized


def read_token(request: Request) -> Optional[str]:
    """Return the bearer token from the Authorization header, or None."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def try_get_current_user(request: Request) -> Optional[User]:
    """Authenticate the request. Returns the User, or None on any failure.

    A successful lookup also marks the user active for the active_users metric.
    """
    token = read_token(request)
    if token is None:
        return None
    user = request.app.state.tokens.authenticate(token)
    if user is not None:
        request.app.state.telemetry.track_active_user(user.id)
    return user


def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise Unauthorized()
    return user

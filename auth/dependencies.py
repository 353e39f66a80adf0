"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer-token authentication.

Clients send the token issued by POST /api/v1/auth/signin as
    Authorization: Bearer <api_token>
and the token is looked up in the user store. There is no cookie or session
fallback; tokens are the only credential after sign-in.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.signin import Authenticator


def bearer_token(request: Request) -> str:
    """Return the token from the Authorization header, or "" if absent/malformed."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return token.strip()


def try_get_current_user(request: Request) -> User | None:
    """Resolve the bearer token to a User. Returns None on any auth failure.

    Store outages (Unavailable) are not auth failures and propagate to the
    app's exception handler as 503.
    """
    authenticator: Authenticator = request.app.state.authenticator
    return authenticator.authenticate_token(bearer_token(request))


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

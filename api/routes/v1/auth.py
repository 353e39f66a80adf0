"""
api/routes/v1/auth.py -- Sign-in, sign-out and identity REST endpoints.

Routes:
  POST   /api/v1/auth/signin    -- email + password; returns {"api_token": ...}
  DELETE /api/v1/auth/signout   -- revokes the caller's token; 204
  GET    /api/v1/auth/me        -- identity of the bearer-token holder

Security:
  POST /signin is throttled twice: per email+IP by the Authenticator (the
    real attempt budget, counted even for correct passwords) and per IP by
    slowapi (SIGNIN_IP_RATE_LIMIT, against spraying many emails from one host).
  Bad email and bad password produce the same 401 bad_credentials.
  Cache-Control: no-store on every sign-in response, success or failure.

Domain errors (AuthenticationFailed, LockedOut, Unavailable) and slowapi's
RateLimitExceeded / StorageError are not caught here; api/main.py maps them
to 401 / 429 / 503.
"""

# Annotations stay evaluated here: the endpoint is wrapped by slowapi, whose
# module globals would otherwise be used to resolve string annotations.

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from api.limiter import SIGNIN_IP_RATE_LIMIT, limiter
from api.models import MeResponse, SignInRequest, SignInResponse
from auth.dependencies import get_current_user
from auth.models import User
from auth.signin import Authenticator

# Auth policy:
# - POST   /api/v1/auth/signin:   public -- sign-in must be unauthenticated
# - DELETE /api/v1/auth/signout:  requires bearer token (get_current_user)
# - GET    /api/v1/auth/me:       requires bearer token (get_current_user)
router = APIRouter()


# The router must register the limiter's wrapper, so @router goes on top.
# SlowAPIMiddleware skips decorated routes and leaves the check to the wrapper.
@router.post("/auth/signin", response_model=SignInResponse)
@limiter.limit(SIGNIN_IP_RATE_LIMIT)
def signin(request: Request, body: SignInRequest) -> JSONResponse:
    """Verify email and password; issue a new API token.

    Any token issued earlier to the same user stops working.
    """
    authenticator: Authenticator = request.app.state.authenticator
    user = authenticator.sign_in(body.email, body.password, get_remote_address(request))

    resp = JSONResponse(status_code=200, content=SignInResponse(api_token=user.api_token).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.delete("/auth/signout", status_code=204)
def signout(request: Request, current_user: User = Depends(get_current_user)) -> Response:
    """Revoke the caller's API token."""
    authenticator: Authenticator = request.app.state.authenticator
    authenticator.sign_out(current_user)
    return Response(status_code=204)


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the bearer-token holder."""
    return MeResponse(id=current_user.id, email=current_user.email, last_login=current_user.last_login)

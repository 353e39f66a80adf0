"""
API request and response models for SignGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclass in auth/models.py, which
owns the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignInRequest(BaseModel):
    """Request body for POST /api/v1/auth/signin.

    email is not format-checked here: an unknown or malformed email must fail
    exactly like a wrong password, with 401 bad_credentials, not 422.
    Neither field is stripped; whitespace is part of a password.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255, json_schema_extra={"format": "password"})


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SignInResponse(BaseModel):
    """Body of a successful sign-in: only the freshly issued bearer token."""

    model_config = ConfigDict(frozen=True)

    api_token: str


class MeResponse(BaseModel):
    """Identity of the bearer-token holder, for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    last_login: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)

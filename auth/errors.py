"""
auth/errors.py -- Failure kinds raised by the sign-in core.

Three kinds, deliberately distinct:
  AuthenticationFailed -- bad password OR unknown email. One message for both
                          so callers cannot enumerate accounts.
  LockedOut            -- too many attempts for an email+IP pair. Carries the
                          time left until the fixed window resets.
  Unavailable          -- the credential store or the counter storage could
                          not be reached. A server fault, never a client one.

api/main.py maps these to HTTP responses. Nothing under auth/ knows about
status codes.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import math
from datetime import timedelta


class AuthError(Exception):
    """Base class for every failure the sign-in core raises on purpose."""

    message = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class AuthenticationFailed(AuthError):
    message = "Invalid email or password."


class LockedOut(AuthError):
    """Raised by the rate limiter without running the guarded action."""

    message = "Too many sign-in attempts."

    def __init__(self, retry_after: timedelta, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = max(retry_after, timedelta(0))

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds to wait, rounded up so clients never retry too early."""
        return max(1, math.ceil(self.retry_after.total_seconds()))


class Unavailable(AuthError):
    """Infrastructure failure. The original exception is kept as __cause__."""

    message = "Authentication backend unavailable."

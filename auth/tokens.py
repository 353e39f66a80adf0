"""
auth/tokens.py -- Password hashing and opaque API token generation.

Security design decisions:
  Passwords: bcrypt, used directly (no passlib wrapper). Bcrypt's cost factor
       makes brute-force of low-entropy secrets expensive. The _DUMMY_HASH
       constant enables timing equalization in UserStore.validate_credentials()
       so response time does not reveal whether an email is registered.

  API tokens: secrets.token_urlsafe() over at least 32 random bytes. Tokens are
       opaque -- no embedded claims, no relation to earlier tokens, nothing to
       verify but a store lookup. Revocation is overwriting or clearing the
       stored value.

Layer rule: no imports from api/. core/ is not needed here either -- the token
size is passed in by whoever builds the generator.
"""

from __future__ import annotations

import logging
import secrets

import bcrypt

logger = logging.getLogger("signgate.auth")

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer caps
    password fields at 255 characters; the sign-in request model keeps inputs
    well below anything that could cause trouble.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash counts as a mismatch rather than an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first sign-in attempt is not measurably
# slower than later ones. Checked against whenever the email is unknown.
_DUMMY_HASH: str = hash_password("signgate_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Spend one bcrypt comparison without a real account behind it."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Opaque API tokens
# ---------------------------------------------------------------------------


class ApiTokenGenerator:
    """Produces unguessable bearer tokens.

    Pure generation: no side effects and no knowledge of who the token is for.
    The authenticator persists the result.

    Usage:
        generator = ApiTokenGenerator(nbytes=48)
        token = generator.generate()   # 64 URL-safe characters
    """

    MIN_BYTES = 32

    def __init__(self, nbytes: int = 48) -> None:
        if nbytes < self.MIN_BYTES:
            raise ValueError(f"API tokens need at least {self.MIN_BYTES} random bytes, got {nbytes}.")
        self.nbytes = nbytes

    def generate(self) -> str:
        return secrets.token_urlsafe(self.nbytes)

"""
auth/models.py -- Domain dataclass for the authenticated principal.

Pattern: Data class (pure data container, zero logic). The store maps rows
onto it; the authenticator and routes do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A principal that can sign in with email and password.

    email is the identity key. The store lower-cases it on write and on lookup,
    so "User@Mail.com" and "user@mail.com" are the same account.

    api_token is the opaque bearer credential issued by the last successful
    sign-in. None until the first sign-in and again after sign-out. A new
    sign-in overwrites it, so each user has at most one active token.
    """

    email: str
    hashed_password: str
    id: int | None = None
    api_token: str | None = None
    created_at: str | None = None
    last_login: str | None = None  # ISO 8601, stamped on each token rotation

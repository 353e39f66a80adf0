"""
auth/signin.py -- Sign-in use case: throttle, verify, issue a token.

Flow for sign_in(email, password, client_ip):
  1. throttle key = lower("email|client_ip")
  2. RateLimiter.limit() records the attempt and refuses with LockedOut once
     the key is over its budget -- even if the password would be right.
  3. Inside the limiter: look the user up, then ALWAYS run a bcrypt check
     (UserStore.validate_credentials handles the unknown-email case).
  4. On a match: new opaque token, written over any previous one, and the
     refreshed User comes back. The on_authenticated hook fires afterwards.

Unknown email and wrong password raise the same AuthenticationFailed.
Unavailable from the store or the limiter is never caught here.

Collaborators are passed in explicitly. Nothing is looked up from globals at
call time, so tests build an Authenticator with fakes in one line.

Layer rule: no imports from api/. core/ is used only by from_settings().
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from auth.errors import AuthenticationFailed
from auth.models import User

if TYPE_CHECKING:
    from auth.limiter import RateLimiter
    from auth.store import UserStore
    from auth.tokens import ApiTokenGenerator
    from core.config import Settings

logger = logging.getLogger("signgate.auth")

THROTTLE_KEY_SEPARATOR = "|"


@dataclass(frozen=True)
class SignInConfig:
    """Attempt budget for one throttle key. Validated once, at construction."""

    max_attempts: int
    window: timedelta

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be zero or positive.")
        if self.window <= timedelta(0):
            raise ValueError("window must be a positive duration.")
        if self.window.total_seconds() != int(self.window.total_seconds()):
            raise ValueError("window must be a whole number of seconds.")

    @classmethod
    def from_settings(cls, settings: Settings) -> SignInConfig:
        return cls(
            max_attempts=settings.signin_max_attempts,
            window=timedelta(seconds=settings.signin_window_seconds),
        )


def throttle_key(email: str, client_ip: str) -> str:
    """Rate-limit bucket for an email+IP pair. Case-insensitive on both parts."""
    return f"{email}{THROTTLE_KEY_SEPARATOR}{client_ip}".lower()


class Authenticator:
    """Orchestrates credential checks, attempt limiting and token issuance.

    Usage:
        auth = Authenticator(store, RateLimiter(), ApiTokenGenerator(), SignInConfig(5, timedelta(minutes=1)))
        user = auth.sign_in("user@mail.com", "secret123", "1.2.3.4")
        user.api_token   # freshly issued
    """

    def __init__(
        self,
        store: UserStore,
        limiter: RateLimiter,
        generator: ApiTokenGenerator,
        config: SignInConfig,
        on_authenticated: Callable[[User], None] | None = None,
    ) -> None:
        self.store = store
        self.limiter = limiter
        self.generator = generator
        self.config = config
        self.on_authenticated = on_authenticated

    def sign_in(self, email: str, password: str, client_ip: str) -> User:
        """Authenticate and rotate the user's API token.

        Raises AuthenticationFailed, LockedOut or Unavailable.
        """
        key = throttle_key(email, client_ip)
        user = self.limiter.limit(
            key,
            self.config.max_attempts,
            self.config.window,
            lambda: self._attempt(email, password),
        )
        logger.info("User %s signed in from %s", user.id, client_ip)
        if self.on_authenticated is not None:
            self.on_authenticated(user)
        return user

    def sign_out(self, user: User) -> None:
        """Revoke the user's current token. Signing out twice is harmless."""
        if user.id is not None:
            self.store.clear_api_token(user.id)
        user.api_token = None
        logger.info("User %s signed out", user.id)

    def authenticate_token(self, token: str) -> User | None:
        """Return the user holding `token`, or None for unknown/empty tokens."""
        if not token:
            return None
        return self.store.get_by_api_token(token)

    def _attempt(self, email: str, password: str) -> User:
        user = self.store.get_by_email(email)
        if not self.store.validate_credentials(user, password):
            logger.warning("Sign-in failed (bad credentials)")
            raise AuthenticationFailed()

        token = self.generator.generate()
        if not self.store.set_api_token(user.id, token):
            # Deleted between lookup and write.
            raise AuthenticationFailed()
        refreshed = self.store.get_by_id(user.id)
        if refreshed is None:
            raise AuthenticationFailed()
        return refreshed

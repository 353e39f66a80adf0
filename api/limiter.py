"""
api/limiter.py -- Shared slowapi rate limiter instance (per client IP).

Import this in both api/main.py (to register on app.state) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same counter
store. If this were instantiated in each module separately, each module would
get its own isolated counter and rate limits would never trigger.

This is the coarse per-IP guard. The per email+IP attempt budget lives in
auth/limiter.py; both use the storage named by RATE_LIMIT_STORAGE_URI with the
same options, so a dead Redis raises limits.errors.StorageError within
RATE_LIMIT_STORAGE_TIMEOUT seconds here too. api/main.py maps that to 503.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from auth.limiter import storage_options
from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_settings.rate_limit_storage_uri,
    storage_options=storage_options(_settings.rate_limit_storage_uri, _settings.rate_limit_storage_timeout),
)

SIGNIN_IP_RATE_LIMIT = _settings.signin_ip_rate_limit

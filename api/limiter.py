"""
api/limiter.py -- Shared slowapi rate limiter for HuntGate.

api/main.py mounts it as middleware; api/routes/v1/auth.py applies per-route
limits with @limiter.limit(). One shared instance means one counter store --
separate instances per module would each count in isolation and never trip.

Limits are read from Settings at request time (login_rate_limit), so the
configured value applies without editing decorators.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Return the configured login limit, e.g. "10/minute"."""
    return get_settings().login_rate_limit

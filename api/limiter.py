"""
api/limiter.py -- Shared slowapi rate limiter and the limits it enforces.

api/main.py mounts the limiter as middleware; api/routes/v1/auth.py applies
login_limit to POST /auth/login with @limiter.limit(login_limit).

One shared instance means one in-memory counter store for the whole app.
Counters are per process: behind several workers each worker counts alone.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    """Per-IP login allowance, e.g. "10/minute". Read per request from Settings."""
    return get_settings().login_rate_limit

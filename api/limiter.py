"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware, stored on app.state) and by
api/routes/v1/auth.py, which throttles POST /auth/login with
Settings.login_rate_limit [H2]. One shared instance means one shared counter
store; per-module instances would each count separately and never trip.

RATE_LIMIT_ENABLED=false turns every limit off (the test suite logs in far
more often than ten times a minute from the same client address).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=get_settings().rate_limit_enabled,
)


def login_rate_limit() -> str:
    return get_settings().login_rate_limit

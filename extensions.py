"""
Shared Flask extension instances.

Created here, bound to the app in create_app(), so blueprints can import them
without a circular import through app.py.
"""

from __future__ import annotations

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import current_user
from flask_wtf.csrf import CSRFProtect


def _limiter_key() -> str:
    """Key authenticated callers by user id, anonymous callers by address."""
    if current_user and current_user.is_authenticated:
        return f"user:{current_user.id}"
    return get_remote_address()


limiter = Limiter(key_func=_limiter_key, default_limits=["200 per hour"])
csrf = CSRFProtect()

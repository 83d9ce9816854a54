"""Per-client request limits (slowapi).

The shared limiter is attached to the app in ``main.py``; routers decorate
write endpoints with the tighter limits defined here.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from backend.config import settings

# Leave submissions per client per minute
APPLY_RATE_LIMIT = settings.APPLY_RATE_LIMIT

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.DEFAULT_RATE_LIMIT],
)

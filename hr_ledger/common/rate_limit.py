"""Rate limiting via slowapi.

One module-level Limiter shared by the app factory and by routers that need
a tighter per-endpoint limit (the check-in/out endpoints).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from hr_ledger.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)

# Punch endpoints are hit by kiosks and mobile clients in bursts at shift start.
PUNCH_RATE_LIMIT = "30/minute"

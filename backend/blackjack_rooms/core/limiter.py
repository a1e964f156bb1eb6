"""
Per-client throttle for the read-only room endpoints.

Keyed on the remote address. Only the routes decorated with
``@limiter.limit(ROOMS_LIMIT)`` are throttled; socket frames never pass
through it. Tests switch it off with ``limiter.enabled = False``.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from blackjack_rooms.core.config import settings

ROOMS_LIMIT = settings.ROOMS_RATE_LIMIT

limiter = Limiter(key_func=get_remote_address, enabled=True)

"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
that apply per-route limits with @limiter.limit(): admin login, the public
gift-card check and the public order sink.

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

RATE_LIMIT_ENABLED=false switches every limit off (the test suite does this).
Limits here are per-process; limiting at the network edge is a deployment
concern.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=get_settings().rate_limit_enabled,
)

GIFT_CARD_CHECK_LIMIT = "20/minute"
ORDER_CREATE_LIMIT = "10/minute"
CSP_REPORT_LIMIT = "30/minute"

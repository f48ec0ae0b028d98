"""
api/limiter.py -- Shared slowapi rate limiter for credential endpoints.

Online password guessing is throttled per client IP on POST /auth/login. The
limit string comes from Settings.login_rate_limit and is applied in
api/routes/v1/auth.py with @limiter.limit(); api/main.py mounts the
middleware and registers the 429 handler.

One shared instance means one counter store. Separate Limiter objects per
module would each count on their own and the limit would never trigger.

The store is in-process memory. That is enough for the single-instance
deployments SessionGate targets; it is not shared across server processes.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://", headers_enabled=False)

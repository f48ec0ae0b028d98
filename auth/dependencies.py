"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session cookie is the only credential the gate accepts. Its name comes
from the CookiePolicy on the AuthService stored at app.state.auth_service.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

A missing cookie, an unknown token, an expired session and a session whose
user vanished all produce the same 401 body. The specific reason is logged
server-side only.

The resolved User reaches handlers as the return value of the dependency:

    @router.get("/protected")
    async def route(user: User = Depends(get_current_user)): ...

The gate only reads. It keeps no state of its own and is safe to run
concurrently for any number of requests.

Layer rule: auth/dependencies.py may import from fastapi (for
HTTPException/Request) because this module is part of the FastAPI dependency
injection system. No imports from api/.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from auth.errors import InvalidSession, UserNotFound
from auth.models import User
from auth.service import AuthService

logger = logging.getLogger("sessiongate.auth.gate")


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService wired into the application at startup."""
    return request.app.state.auth_service


def try_get_current_user(request: Request) -> User | None:
    """Attempt to authenticate the request via the session cookie.

    Returns the authenticated User on success, None on any authentication
    failure. Callers that need a hard 401 should use get_current_user().

    StoreUnavailable and OperationTimeout are infrastructure failures, not
    authentication failures: they propagate so the application answers 503/504
    instead of pretending the client is logged out.
    """
    service = get_auth_service(request)
    token = request.cookies.get(service.cookies.name)
    if not token:
        logger.info("Unauthorized %s %s: no session cookie", request.method, request.url.path)
        return None
    try:
        return service.authenticate(token)
    except InvalidSession as exc:
        logger.info("Unauthorized %s %s: %s", request.method, request.url.path, exc.code)
    except UserNotFound as exc:
        logger.error("Unauthorized %s %s: %s", request.method, request.url.path, exc.code)
    return None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user

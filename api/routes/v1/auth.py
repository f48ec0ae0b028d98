"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register                 -- create account; 201
  POST /api/v1/auth/login                    -- password login; sets session cookie
  POST /api/v1/auth/logout                   -- ends session; clears cookie
  GET  /api/v1/auth/me                       -- current user (requires session)
  POST /api/v1/auth/password-reset           -- issue reset token; uniform 202
  POST /api/v1/auth/password-reset/complete  -- set new password with reset token

Security:
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  Unknown username and wrong password return the same 401 body.
  Cache-Control: no-store on login responses.
  POST /password-reset answers identically for known and unknown usernames so
  it cannot be used to enumerate accounts.

Handlers are plain `def`: bcrypt and SQLite calls block, and FastAPI runs
sync handlers in its thread pool instead of on the event loop.

Domain errors not handled here (DuplicateUsername, EmptyCredential,
InvalidResetToken, StoreUnavailable, ...) propagate to the AuthError handler
in api/main.py, which maps them to status codes.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    LoginRequest,
    MessageResponse,
    PasswordResetAccepted,
    PasswordResetComplete,
    PasswordResetRequest,
    RegisterRequest,
    UserResponse,
)
from auth.cookies import apply_cookie
from auth.dependencies import get_auth_service, get_current_user
from auth.errors import InvalidCredentials, NotFound
from auth.models import User
from auth.service import AuthService
from core.config import get_settings

logger = logging.getLogger("sessiongate.api.auth")

_settings = get_settings()

_RESET_ACCEPTED = "If the account exists, a password reset has been issued."

# Auth policy:
# - POST /api/v1/auth/register:                public
# - POST /api/v1/auth/login:                   public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:                  public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:                      requires session (get_current_user)
# - POST /api/v1/auth/password-reset:          public
# - POST /api/v1/auth/password-reset/complete: public -- the reset token is the credential
router = APIRouter()


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(user_id=user.id, username=user.username, created_at=user.created_at)


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> UserResponse:
    """Create a local account. 409 if the username is taken, 400 if a field is empty."""
    user_id = service.register(body.username, body.password)
    return _user_to_response(service.store.get_user_by_id(user_id))


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=UserResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set the session cookie.

    Returns the same generic error for wrong username and wrong password
    ("bad_credentials") to avoid leaking username existence information.
    """
    service = get_auth_service(request)
    try:
        result = service.login(body.username, body.password)
    except InvalidCredentials:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = JSONResponse(status_code=200, content=_user_to_response(result.user).model_dump())
    apply_cookie(resp, result.cookie)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """End the current session (if any) and clear the cookie."""
    service = get_auth_service(request)
    cookie = service.logout(request.cookies.get(service.cookies.name))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    apply_cookie(resp, cookie)
    return resp


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return _user_to_response(current_user)


@router.post("/auth/password-reset", response_model=PasswordResetAccepted, status_code=202)
def request_password_reset(request: Request, body: PasswordResetRequest) -> PasswordResetAccepted:
    """Issue a reset token. The reply is identical whether or not the user exists.

    Delivery: if app.state.reset_notifier is set it is called as
    notifier(username, token) -- mail, chat, whatever the deployment uses.
    In DEBUG mode the token is also echoed in the response body.
    """
    service = get_auth_service(request)
    try:
        token = service.initiate_reset(body.username)
    except NotFound:
        logger.info("Password reset requested for unknown username")
        return PasswordResetAccepted(message=_RESET_ACCEPTED)

    notifier = getattr(request.app.state, "reset_notifier", None)
    if notifier is not None:
        notifier(body.username, token)
    elif not _settings.debug:
        logger.warning("Password reset issued but no reset_notifier is configured")
    return PasswordResetAccepted(message=_RESET_ACCEPTED, reset_token=token if _settings.debug else None)


@router.post("/auth/password-reset/complete", response_model=MessageResponse)
def complete_password_reset(body: PasswordResetComplete, service: AuthService = Depends(get_auth_service)) -> MessageResponse:
    """Set a new password. The reset token works once; all sessions are revoked."""
    service.complete_reset(body.token, body.new_password)
    return MessageResponse(message="Password updated. Please log in again.")

"""
API request and response models for SessionGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Password fields carry no min_length: an empty password must reach the auth
core so it is rejected there as empty_credential, the same way every other
caller of AuthService sees it.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    username: str = Field(max_length=255)
    password: str = Field(max_length=255)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(max_length=255)
    password: str = Field(max_length=255)


class PasswordResetRequest(BaseModel):
    """Request body for POST /api/v1/auth/password-reset."""

    username: str = Field(max_length=255)


class PasswordResetComplete(BaseModel):
    """Request body for POST /api/v1/auth/password-reset/complete."""

    token: str = Field(max_length=128)
    new_password: str = Field(max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. The password digest is never serialized."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    created_at: Optional[str] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class PasswordResetAccepted(BaseModel):
    """Uniform reply to a reset request, whether or not the account exists.

    reset_token is populated only in DEBUG mode, where there is no delivery
    channel and the developer needs the value to finish the flow by hand.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    reset_token: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]

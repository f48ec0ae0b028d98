"""
auth/errors.py -- Typed outcomes for the authentication core.

Every failure a caller of auth/ can observe is one of these classes. Storage
and platform exceptions are wrapped (raise ... from exc) at the boundary where
they occur, so no SQLAlchemy or OS error type leaks past the store or the
token generator.

Each class carries a stable machine-readable `code`. The HTTP layer maps codes
to status codes; the request gate ignores them and answers every failure with
the same 401 so the network never learns which check failed.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all authentication-core failures."""

    code: str = "auth_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class EmptyCredential(AuthError):
    code = "empty_credential"


class DuplicateUsername(AuthError):
    code = "duplicate_username"


class InvalidCredentials(AuthError):
    """Unknown username OR wrong password. Never split into two errors."""

    code = "bad_credentials"


class InvalidSession(AuthError):
    code = "invalid_session"


class UserNotFound(AuthError):
    """A live session points at a user row that no longer exists."""

    code = "user_not_found"


class NotFound(AuthError):
    """Store-level lookup miss (absent, expired, or consumed)."""

    code = "not_found"


class InvalidResetToken(AuthError):
    code = "invalid_reset_token"


class ResetFailedPartially(AuthError):
    """The reset token was consumed but the new digest was not written."""

    code = "reset_failed_partially"


class EntropySourceUnavailable(AuthError):
    code = "entropy_unavailable"


class StoreUnavailable(AuthError):
    code = "store_unavailable"


class OperationTimeout(AuthError):
    code = "timeout"

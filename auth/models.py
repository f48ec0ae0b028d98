"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The store maps rows to
these; flows and routes pass them around. Timestamps are ISO 8601 UTC strings
exactly as stored.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """An identity that can log in.

    username is unique and case-sensitive: "Alice" and "alice" are two users.
    hashed_password is a tagged digest (see auth/hashing.py), never plaintext.
    """

    username: str
    hashed_password: str
    id: int | None = None
    created_at: str | None = None


@dataclass
class Session:
    """Proof of a logged-in client.

    token is the raw value the client presented; only its digest is stored.
    """

    user_id: int
    token: str
    id: int | None = None
    created_at: str | None = None
    expires_at: str | None = None


@dataclass
class PasswordResetRequest:
    """A single-use capability to set a new password without the old one.

    used_at is None until the token is consumed (or superseded by a newer
    request for the same user).
    """

    user_id: int
    token: str
    id: int | None = None
    created_at: str | None = None
    expires_at: str | None = None
    used_at: str | None = None

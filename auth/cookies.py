"""
auth/cookies.py -- Session cookie side effects as plain values.

Flows never touch an HTTP response. login() and logout() return a SessionCookie
describing exactly what the client must be told; the HTTP layer applies it
with apply_cookie(). This keeps the core testable without a web framework and
keeps every attribute of the cookie decided in one place.

Attributes:
  httponly=True: JS cannot read the cookie (XSS mitigation). Not optional.
  samesite="strict": the cookie is never sent on cross-site requests, which
      closes the CSRF hole for every state-changing route.
  secure: only sent over HTTPS. core.config forces this on outside DEBUG.
  max_age: matches the server-side session TTL so both expire together.
      Clearing uses the same name and path with an empty value and max_age=0.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SessionCookie:
    """A Set-Cookie instruction for the session token."""

    name: str
    value: str
    path: str
    max_age: int
    httponly: bool = True
    secure: bool = True
    samesite: str = "strict"

    @property
    def is_clear(self) -> bool:
        return self.value == "" and self.max_age <= 0


@dataclass(frozen=True)
class CookiePolicy:
    """Configured shape of the session cookie."""

    name: str = "session_token"
    path: str = "/"
    max_age: int = 24 * 3600
    secure: bool = True
    samesite: str = "strict"

    def issue(self, token: str) -> SessionCookie:
        return SessionCookie(
            name=self.name,
            value=token,
            path=self.path,
            max_age=self.max_age,
            secure=self.secure,
            samesite=self.samesite,
        )

    def clear(self) -> SessionCookie:
        return SessionCookie(
            name=self.name,
            value="",
            path=self.path,
            max_age=0,
            secure=self.secure,
            samesite=self.samesite,
        )


def apply_cookie(response, cookie: SessionCookie) -> None:
    """Write a SessionCookie onto a FastAPI/Starlette response."""
    response.set_cookie(
        cookie.name,
        value=cookie.value,
        max_age=cookie.max_age,
        path=cookie.path,
        httponly=cookie.httponly,
        secure=cookie.secure,
        samesite=cookie.samesite,
    )

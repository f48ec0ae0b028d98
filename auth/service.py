"""
auth/service.py -- Authentication flows over {Anonymous, Authenticated}.

AuthService orchestrates the hasher, the token generator and the store. It
holds no mutable state of its own between calls; everything durable lives in
the store, which is passed in explicitly (no module-level database handle).

Ordering rules every flow follows:
  1. Validate input.
  2. Hash / verify (slow, never under a lock).
  3. Only then issue store mutations.
So no session or reset side effect is observable before credentials check out.

Timing equalization:
  login() runs a full hash verification even when the username does not
  exist, against a dummy digest computed once per service. Response time
  therefore does not reveal whether an account exists, and both failure modes
  raise the same InvalidCredentials.

Password reset ordering:
  complete_reset() consumes the token BEFORE writing the new digest. A crash
  or store failure between the two leaves the token spent and the old password
  in place -- the user must request a new link, but the same link can never be
  replayed. That state is reported as ResetFailedPartially, never as success.
  The new digest and the revocation of every existing session of the user are
  written in one store transaction, so a failure there changes neither.

Layer rule: no imports from api/. core/ is imported only for type checking;
from_settings() receives the Settings instance from its caller.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, TypeVar

from auth.cookies import CookiePolicy, SessionCookie
from auth.errors import (
    EmptyCredential,
    InvalidCredentials,
    InvalidResetToken,
    InvalidSession,
    NotFound,
    OperationTimeout,
    ResetFailedPartially,
    StoreUnavailable,
    UserNotFound,
)
from auth.hashing import PasswordHasher, build_hasher
from auth.models import User
from auth.store import UserStore
from auth.tokens import generate_token

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("sessiongate.auth")

_T = TypeVar("_T")

_DUMMY_SECRET = "sessiongate_timing_dummy"


@dataclass(frozen=True)
class LoginResult:
    """Outcome of a successful login: who, the raw token, and the cookie to set."""

    user: User
    token: str
    cookie: SessionCookie


class AuthService:
    """Register, login, logout, authenticate and password-reset flows.

    Usage:
        service = AuthService(UserStore("sqlite:///auth.db"), build_hasher("bcrypt", 12))
        service.register("alice", "s3cret")
        result = service.login("alice", "s3cret")
        user = service.authenticate(result.token)
    """

    def __init__(
        self,
        store: UserStore,
        hasher: PasswordHasher,
        cookies: CookiePolicy | None = None,
        hash_timeout_seconds: float = 0,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.cookies = cookies or CookiePolicy()
        self._hash_timeout = hash_timeout_seconds or None
        self._pool: ThreadPoolExecutor | None = None
        if self._hash_timeout:
            self._pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="pwhash")
        self._dummy_digest = hasher.hash(_DUMMY_SECRET)

    @classmethod
    def from_settings(cls, settings: Settings) -> AuthService:
        """Build the store, hasher and cookie policy from configuration."""
        store = UserStore(
            settings.database_url,
            session_ttl_seconds=settings.session_ttl_seconds,
            reset_ttl_seconds=settings.password_reset_ttl_seconds,
            timeout_seconds=settings.database_timeout_seconds,
        )
        cookies = CookiePolicy(
            name=settings.cookie_name,
            path=settings.cookie_path,
            max_age=settings.effective_cookie_max_age,
            secure=settings.cookie_secure,
            samesite=settings.cookie_samesite,
        )
        hasher = build_hasher(settings.hash_algorithm, settings.hash_cost)
        return cls(store, hasher, cookies, hash_timeout_seconds=settings.hash_timeout_seconds)

    # ------------------------------------------------------------------
    # Hashing with an optional deadline
    # ------------------------------------------------------------------

    def _bounded(self, fn: Callable[..., _T], *args) -> _T:
        if self._pool is None:
            return fn(*args)
        future = self._pool.submit(fn, *args)
        try:
            return future.result(timeout=self._hash_timeout)
        except FutureTimeout as exc:
            future.cancel()
            logger.error("Password hashing exceeded %.2fs", self._hash_timeout)
            raise OperationTimeout("Password hashing timed out.") from exc

    def _hash(self, secret: str) -> str:
        return self._bounded(self.hasher.hash, secret)

    def _verify(self, secret: str, digest: str) -> bool:
        return self._bounded(self.hasher.verify, secret, digest)

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def register(self, username: str, password: str) -> int:
        """Create a user and return its ID.

        Raises EmptyCredential for a blank username or empty password,
        DuplicateUsername if the name is taken.
        """
        if not username or not username.strip():
            raise EmptyCredential("Username cannot be empty.")
        digest = self._hash(password)
        user_id = self.store.create_user(username, digest)
        logger.info("Registered user_id=%d", user_id)
        return user_id

    def login(self, username: str, password: str) -> LoginResult:
        """Verify credentials and open a session.

        Unknown username and wrong password are indistinguishable to the
        caller: both raise InvalidCredentials after the same hashing work.
        """
        try:
            user: User | None = self.store.get_user_by_username(username)
        except NotFound:
            user = None

        if user is None:
            self._verify(password, self._dummy_digest)
            logger.warning("Login failed: unknown username")
            raise InvalidCredentials("Invalid username or password.")
        if not self._verify(password, user.hashed_password):
            logger.warning("Login failed: wrong password for user_id=%d", user.id)
            raise InvalidCredentials("Invalid username or password.")

        token = generate_token()
        try:
            self.store.create_session(user.id, token)
        except NotFound as exc:
            # User deleted between lookup and insert.
            raise InvalidCredentials("Invalid username or password.") from exc
        logger.info("Login succeeded for user_id=%d", user.id)
        return LoginResult(user=user, token=token, cookie=self.cookies.issue(token))

    def logout(self, token: str | None) -> SessionCookie:
        """End the session for token (if any) and return the cookie-clear directive.

        Idempotent: an unknown or missing token still yields the clear cookie.
        """
        if token:
            self.store.delete_session_by_token(token)
        logger.info("Logout processed (token_present=%s)", bool(token))
        return self.cookies.clear()

    def authenticate(self, token: str | None) -> User:
        """Resolve a session token to its user. Read-only.

        Raises InvalidSession for a missing, unknown or expired token and
        UserNotFound if the session outlived its user.
        """
        if not token:
            raise InvalidSession("No session token presented.")
        try:
            session = self.store.get_session_by_token(token)
        except NotFound as exc:
            raise InvalidSession("Invalid or expired session.") from exc
        try:
            return self.store.get_user_by_id(session.user_id)
        except NotFound as exc:
            logger.error("Session id=%s references missing user_id=%d", session.id, session.user_id)
            raise UserNotFound("Session owner no longer exists.") from exc

    def initiate_reset(self, username: str) -> str:
        """Issue a password-reset token for username and return it.

        Raises NotFound for an unknown username; masking that outcome toward
        the network is the HTTP layer's job. Delivering the token (mail, chat)
        is the caller's job.
        """
        user = self.store.get_user_by_username(username)
        token = generate_token()
        self.store.save_reset_token(user.id, token)
        logger.info("Password reset issued for user_id=%d", user.id)
        return token

    def complete_reset(self, token: str, new_password: str) -> None:
        """Set a new password using a reset token. The token is single-use.

        Raises InvalidResetToken (unknown, expired, consumed, or lost a
        concurrent race), EmptyCredential, or ResetFailedPartially when the
        token was consumed but the change did not complete.
        """
        if not token:
            raise InvalidResetToken("Invalid or expired reset token.")
        try:
            user_id = self.store.get_user_id_by_reset_token(token)
        except NotFound as exc:
            raise InvalidResetToken("Invalid or expired reset token.") from exc

        digest = self._hash(new_password)

        try:
            self.store.consume_reset_token(token)
        except NotFound as exc:
            raise InvalidResetToken("Invalid or expired reset token.") from exc

        try:
            revoked = self.store.reset_password(user_id, digest)
        except (NotFound, StoreUnavailable) as exc:
            logger.error("Password reset for user_id=%d consumed its token but failed: %s", user_id, exc.code)
            raise ResetFailedPartially("Reset token was used but the password change did not complete.") from exc
        logger.info("Password reset completed for user_id=%d (%d sessions revoked)", user_id, revoked)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)
        self.store.close()

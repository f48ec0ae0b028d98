"""Unit tests for auth/service.py -- authentication flows.

Covers:
- register -> login -> authenticate round trip (example: alice / s3cret)
- Unknown username and wrong password raise the same InvalidCredentials
- Login cookie carries the configured attributes; logout returns a clear cookie
- Logout then authenticate fails with InvalidSession; logout is idempotent
- Expired sessions fail authentication
- Session outliving its user -> UserNotFound
- Reset token works exactly once; old password stops working, new one works
- Reset tokens expire; consumed-token partial failure -> ResetFailedPartially
- Sessions are revoked after a reset; a failed revocation changes nothing
- Concurrent registrations of one username: exactly one wins
- Concurrent completions of one reset token: exactly one wins
- Hash deadline exceeded -> OperationTimeout, never InvalidCredentials
"""

from __future__ import annotations

import re
import threading
import time
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from auth import store as store_module
from auth.cookies import CookiePolicy
from auth.errors import (
    DuplicateUsername,
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
from auth.hashing import Sha256Hasher, build_hasher
from auth.models import Session
from auth.service import AuthService
from auth.store import UserStore

# ---------------------------------------------------------------------------
# Register / login / authenticate / logout
# ---------------------------------------------------------------------------


class TestLoginLifecycle:
    def test_example_flow(self, service: AuthService) -> None:
        """Register alice, log in, resolve the cookie token back to alice."""
        assert service.register("alice", "s3cret") == 1

        result = service.login("alice", "s3cret")
        assert result.cookie.name == "session_token"
        assert re.fullmatch(r"[0-9a-f]{64}", result.cookie.value)
        assert result.cookie.value == result.token

        user = service.authenticate(result.token)
        assert user.username == "alice"
        assert user.id == 1

        with pytest.raises(InvalidCredentials):
            service.login("alice", "wrong")

    def test_unknown_user_and_wrong_password_are_indistinguishable(self, service: AuthService) -> None:
        service.register("alice", "s3cret")
        with pytest.raises(InvalidCredentials) as wrong_password:
            service.login("alice", "nope")
        with pytest.raises(InvalidCredentials) as unknown_user:
            service.login("mallory", "nope")
        assert type(wrong_password.value) is type(unknown_user.value)
        assert str(wrong_password.value) == str(unknown_user.value)

    def test_login_empty_password(self, service: AuthService) -> None:
        service.register("alice", "s3cret")
        with pytest.raises(InvalidCredentials):
            service.login("alice", "")

    def test_register_rejects_empty_credentials(self, service: AuthService) -> None:
        with pytest.raises(EmptyCredential):
            service.register("alice", "")
        with pytest.raises(EmptyCredential):
            service.register("   ", "s3cret")
        with pytest.raises(NotFound):
            service.store.get_user_by_username("alice")

    def test_register_duplicate(self, service: AuthService) -> None:
        service.register("alice", "s3cret")
        with pytest.raises(DuplicateUsername):
            service.register("alice", "different")

    def test_password_is_stored_as_tagged_digest(self, service: AuthService) -> None:
        user_id = service.register("alice", "s3cret")
        stored = service.store.get_user_by_id(user_id).hashed_password
        assert stored.startswith("bcrypt$")
        assert "s3cret" not in stored

    def test_login_cookie_attributes(self, service: AuthService) -> None:
        service.register("alice", "s3cret")
        cookie = service.login("alice", "s3cret").cookie
        assert cookie.httponly is True
        assert cookie.secure is True
        assert cookie.samesite == "strict"
        assert cookie.path == "/"
        assert cookie.max_age == 3600

    def test_each_login_gets_a_new_token(self, service: AuthService) -> None:
        service.register("alice", "s3cret")
        first = service.login("alice", "s3cret").token
        second = service.login("alice", "s3cret").token
        assert first != second
        assert service.authenticate(first).username == "alice"
        assert service.authenticate(second).username == "alice"

    def test_logout_invalidates_session(self, service: AuthService) -> None:
        service.register("alice", "s3cret")
        token = service.login("alice", "s3cret").token

        cleared = service.logout(token)
        assert cleared.is_clear
        assert cleared.name == "session_token"
        assert cleared.path == "/"
        with pytest.raises(InvalidSession):
            service.authenticate(token)

    def test_logout_is_idempotent(self, service: AuthService) -> None:
        assert service.logout(None).is_clear
        assert service.logout("0" * 64).is_clear

    def test_authenticate_rejects_missing_token(self, service: AuthService) -> None:
        with pytest.raises(InvalidSession):
            service.authenticate("")
        with pytest.raises(InvalidSession):
            service.authenticate(None)

    def test_expired_session(self, service: AuthService, clock) -> None:
        service.register("alice", "s3cret")
        token = service.login("alice", "s3cret").token
        clock.advance(service.store.session_ttl.total_seconds())
        with pytest.raises(InvalidSession):
            service.authenticate(token)

    def test_session_outlives_user(self, hasher) -> None:
        store = MagicMock(spec=UserStore)
        store.get_session_by_token.return_value = Session(id=1, user_id=7, token="t" * 64)
        store.get_user_by_id.side_effect = NotFound("gone")
        svc = AuthService(store, hasher)
        with pytest.raises(UserNotFound):
            svc.authenticate("t" * 64)

    def test_no_session_written_on_failed_login(self, hasher) -> None:
        store = MagicMock(spec=UserStore)
        store.get_user_by_username.side_effect = NotFound("nobody")
        svc = AuthService(store, hasher)
        with pytest.raises(InvalidCredentials):
            svc.login("nobody", "pw")
        store.create_session.assert_not_called()

    def test_store_failure_is_not_bad_credentials(self, hasher) -> None:
        store = MagicMock(spec=UserStore)
        store.get_user_by_username.side_effect = StoreUnavailable("down")
        svc = AuthService(store, hasher)
        with pytest.raises(StoreUnavailable):
            svc.login("alice", "s3cret")

    def test_custom_cookie_policy(self, store: UserStore, hasher) -> None:
        svc = AuthService(store, hasher, CookiePolicy(name="sid", path="/app", max_age=60, secure=False))
        svc.register("alice", "s3cret")
        cookie = svc.login("alice", "s3cret").cookie
        assert (cookie.name, cookie.path, cookie.max_age, cookie.secure) == ("sid", "/app", 60, False)
        cleared = svc.logout(cookie.value)
        assert (cleared.name, cleared.path, cleared.value, cleared.max_age) == ("sid", "/app", "", 0)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class TestPasswordReset:
    def test_reset_token_single_use(self, service: AuthService) -> None:
        service.register("alice", "s3cret")
        token = service.initiate_reset("alice")
        assert re.fullmatch(r"[0-9a-f]{64}", token)

        service.complete_reset(token, "n3w-pass")
        with pytest.raises(InvalidResetToken):
            service.complete_reset(token, "another")

    def test_old_password_stops_working(self, service: AuthService) -> None:
        service.register("alice", "s3cret")
        service.complete_reset(service.initiate_reset("alice"), "n3w-pass")

        with pytest.raises(InvalidCredentials):
            service.login("alice", "s3cret")
        assert service.login("alice", "n3w-pass").user.username == "alice"

    def test_unknown_user(self, service: AuthService) -> None:
        with pytest.raises(NotFound):
            service.initiate_reset("nobody")

    def test_unknown_or_empty_token(self, service: AuthService) -> None:
        with pytest.raises(InvalidResetToken):
            service.complete_reset("f" * 64, "n3w-pass")
        with pytest.raises(InvalidResetToken):
            service.complete_reset("", "n3w-pass")

    def test_expired_token(self, service: AuthService, clock) -> None:
        service.register("alice", "s3cret")
        token = service.initiate_reset("alice")
        clock.advance(service.store.reset_ttl.total_seconds() + 1)
        with pytest.raises(InvalidResetToken):
            service.complete_reset(token, "n3w-pass")
        assert service.login("alice", "s3cret").user.username == "alice"

    def test_empty_new_password_leaves_token_usable(self, service: AuthService) -> None:
        """Validation happens before the token is consumed."""
        service.register("alice", "s3cret")
        token = service.initiate_reset("alice")
        with pytest.raises(EmptyCredential):
            service.complete_reset(token, "")
        service.complete_reset(token, "n3w-pass")

    def test_reset_token_cannot_authenticate(self, service: AuthService) -> None:
        service.register("alice", "s3cret")
        token = service.initiate_reset("alice")
        with pytest.raises(InvalidSession):
            service.authenticate(token)

    def test_newer_reset_supersedes_older(self, service: AuthService) -> None:
        service.register("alice", "s3cret")
        old = service.initiate_reset("alice")
        new = service.initiate_reset("alice")
        with pytest.raises(InvalidResetToken):
            service.complete_reset(old, "n3w-pass")
        service.complete_reset(new, "n3w-pass")

    def test_reset_revokes_sessions(self, service: AuthService) -> None:
        service.register("alice", "s3cret")
        session_token = service.login("alice", "s3cret").token
        service.complete_reset(service.initiate_reset("alice"), "n3w-pass")
        with pytest.raises(InvalidSession):
            service.authenticate(session_token)

    def test_partial_failure_is_reported(self, service: AuthService, monkeypatch: pytest.MonkeyPatch) -> None:
        service.register("alice", "s3cret")
        token = service.initiate_reset("alice")

        def broken_reset(user_id: int, digest: str) -> int:
            raise StoreUnavailable("disk full")

        monkeypatch.setattr(service.store, "reset_password", broken_reset)
        with pytest.raises(ResetFailedPartially):
            service.complete_reset(token, "n3w-pass")
        monkeypatch.undo()

        # Token is spent; old password still works.
        with pytest.raises(InvalidResetToken):
            service.complete_reset(token, "n3w-pass")
        assert service.login("alice", "s3cret").user.username == "alice"

    def test_failed_revocation_leaves_password_unchanged(
        self, service: AuthService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The digest write and session revocation succeed or fail together."""
        service.register("alice", "s3cret")
        session_token = service.login("alice", "s3cret").token
        token = service.initiate_reset("alice")

        def broken_revoke(conn, user_id: int) -> int:
            raise OperationalError("DELETE FROM sessions", {}, Exception("disk I/O error"))

        monkeypatch.setattr(store_module, "_revoke_sessions", broken_revoke)
        with pytest.raises(ResetFailedPartially):
            service.complete_reset(token, "n3w-pass")
        monkeypatch.undo()

        assert service.login("alice", "s3cret").user.username == "alice"
        with pytest.raises(InvalidCredentials):
            service.login("alice", "n3w-pass")
        assert service.authenticate(session_token).username == "alice"


# ---------------------------------------------------------------------------
# Concurrency and deadlines
# ---------------------------------------------------------------------------


def test_concurrent_registration_single_winner(tmp_path) -> None:
    """Racing registrations of one username: exactly one success."""
    store = UserStore(f"sqlite:///{tmp_path / 'race.db'}")
    svc = AuthService(store, Sha256Hasher())
    workers = 5
    barrier = threading.Barrier(workers)
    outcomes: list[object] = []
    lock = threading.Lock()

    def attempt() -> None:
        barrier.wait()
        try:
            outcome: object = svc.register("bob", "pw")
        except DuplicateUsername as exc:
            outcome = exc
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=attempt) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    store.close()

    wins = [o for o in outcomes if isinstance(o, int)]
    losses = [o for o in outcomes if isinstance(o, DuplicateUsername)]
    assert len(wins) == 1
    assert len(losses) == workers - 1


def test_concurrent_reset_single_winner(tmp_path) -> None:
    """Racing completions of one reset token: exactly one success."""
    store = UserStore(f"sqlite:///{tmp_path / 'reset_race.db'}")
    svc = AuthService(store, Sha256Hasher())
    svc.register("alice", "s3cret")
    token = svc.initiate_reset("alice")
    workers = 6
    barrier = threading.Barrier(workers)
    outcomes: list[str] = []
    lock = threading.Lock()

    def attempt(n: int) -> None:
        barrier.wait()
        try:
            svc.complete_reset(token, f"new-{n}")
            outcome = f"ok:{n}"
        except InvalidResetToken:
            outcome = "invalid"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=attempt, args=(n,)) for n in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    wins = [o for o in outcomes if o.startswith("ok:")]
    assert len(wins) == 1
    assert outcomes.count("invalid") == workers - 1
    winner = wins[0].split(":")[1]
    assert svc.login("alice", f"new-{winner}").user.username == "alice"
    store.close()


class _SlowHasher(Sha256Hasher):
    delay = 0.0

    def _digest(self, secret: str) -> str:
        time.sleep(self.delay)
        return super()._digest(secret)


def test_hash_timeout_is_distinct_error(store: UserStore) -> None:
    hasher = _SlowHasher()
    svc = AuthService(store, hasher, hash_timeout_seconds=0.05)
    svc.register("alice", "s3cret")

    hasher.delay = 0.5
    with pytest.raises(OperationTimeout):
        svc.login("alice", "s3cret")
    with pytest.raises(OperationTimeout):
        svc.register("bob", "pw")
    svc.close()


def test_from_settings_builds_collaborators() -> None:
    from core.config import Settings

    settings = Settings(
        debug=True,
        database_url="sqlite:///:memory:",
        cookie_name="sid",
        cookie_secure=False,
        session_ttl_seconds=120,
        hash_cost=4,
    )
    svc = AuthService.from_settings(settings)
    try:
        assert svc.cookies.name == "sid"
        assert svc.cookies.max_age == 120
        assert svc.hasher.algorithm == "bcrypt"
        svc.register("alice", "s3cret")
        assert svc.login("alice", "s3cret").cookie.secure is False
    finally:
        svc.close()


def test_build_hasher_sha256_service(store: UserStore) -> None:
    svc = AuthService(store, build_hasher("sha256"))
    svc.register("alice", "s3cret")
    assert store.get_user_by_username("alice").hashed_password.startswith("sha256$")

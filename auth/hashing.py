"""
auth/hashing.py -- Pluggable password hashing with tagged digests.

Every stored digest carries the algorithm that produced it:

    bcrypt$$2b$12$R9h/cIPz0gi.URNNX3kh2O...
    sha256$5e884898da28047151d0e56f8dc62927...

The tag is what makes mixing algorithms safe. HasherChain reads the tag and
dispatches verification to the matching hasher, so a deployment can switch its
primary algorithm without invalidating passwords already on disk. Digests
written before tagging existed were stored hex-encoded: a 64-hex sha256
digest, or the 120-hex encoding of a bcrypt string. Both are recognised by
shape and verified by the matching hasher.

Algorithms:
  bcrypt: the default for every real deployment. Slow, salted, adaptive cost.
      bcrypt only reads the first 72 bytes of its input. Newer releases of
      the library raise instead of truncating, so BcryptHasher truncates
      explicitly and behaves the same on every version.

  sha256: fast, unsalted, deterministic. Development and tests only --
      core.config refuses it outside DEBUG mode.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
from abc import ABC, abstractmethod

import bcrypt

from auth.errors import EmptyCredential

logger = logging.getLogger("sessiongate.auth.hashing")

_SEPARATOR = "$"
_LEGACY_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")
# Hex encoding of a 60-character "$2a$" / "$2b$" / "$2y$" bcrypt string.
_LEGACY_BCRYPT_HEX_RE = re.compile(r"^2432(?:61|62|79)24[0-9a-f]{112}$")
_BCRYPT_MAX_BYTES = 72


def _bcrypt_input(secret: str) -> bytes:
    return secret.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher(ABC):
    """One-way hash capability. Subclasses implement _digest and _check."""

    algorithm: str = ""

    def hash(self, secret: str) -> str:
        """Return the tagged digest of secret. Raises EmptyCredential for ''."""
        if not secret:
            raise EmptyCredential("Password cannot be empty.")
        return f"{self.algorithm}{_SEPARATOR}{self._digest(secret)}"

    def verify(self, secret: str, digest: str) -> bool:
        """Return True if secret hashes to digest under this algorithm.

        A digest tagged with a different algorithm never matches.
        """
        if not secret or not digest:
            return False
        tag, _, raw = digest.partition(_SEPARATOR)
        if tag != self.algorithm:
            return False
        return self._check(secret, raw)

    @abstractmethod
    def _digest(self, secret: str) -> str: ...

    @abstractmethod
    def _check(self, secret: str, raw: str) -> bool: ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class BcryptHasher(PasswordHasher):
    algorithm = "bcrypt"

    def __init__(self, cost: int = 12) -> None:
        if not 4 <= cost <= 31:
            raise ValueError(f"bcrypt cost must be between 4 and 31, got {cost}")
        self.cost = cost

    def _digest(self, secret: str) -> str:
        return bcrypt.hashpw(_bcrypt_input(secret), bcrypt.gensalt(rounds=self.cost)).decode("utf-8")

    def _check(self, secret: str, raw: str) -> bool:
        try:
            return bcrypt.checkpw(_bcrypt_input(secret), raw.encode("utf-8"))
        except ValueError:
            # Malformed salt in the stored value.
            logger.warning("Stored bcrypt digest is malformed")
            return False

    def __repr__(self) -> str:
        return f"BcryptHasher(cost={self.cost})"


class Sha256Hasher(PasswordHasher):
    algorithm = "sha256"

    def _digest(self, secret: str) -> str:
        return hashlib.sha256(secret.encode("utf-8")).hexdigest()

    def _check(self, secret: str, raw: str) -> bool:
        return hmac.compare_digest(self._digest(secret), raw)


class HasherChain(PasswordHasher):
    """Hash with a primary algorithm, verify digests of any known algorithm.

    Usage:
        hasher = HasherChain(BcryptHasher(12), Sha256Hasher())
        digest = hasher.hash("s3cret")          # bcrypt$...
        hasher.verify("old", "sha256$...")      # dispatched by tag
    """

    def __init__(self, primary: PasswordHasher, *legacy: PasswordHasher) -> None:
        self.primary = primary
        self.algorithm = primary.algorithm
        self._by_tag: dict[str, PasswordHasher] = {h.algorithm: h for h in legacy}
        self._by_tag[primary.algorithm] = primary

    def hash(self, secret: str) -> str:
        return self.primary.hash(secret)

    def verify(self, secret: str, digest: str) -> bool:
        if not secret or not digest:
            return False
        digest = self._tag_legacy(digest)
        tag = digest.partition(_SEPARATOR)[0]
        hasher = self._by_tag.get(tag)
        if hasher is None:
            logger.warning("No hasher registered for digest algorithm %r", tag)
            return False
        return hasher.verify(secret, digest)

    def _digest(self, secret: str) -> str:
        return self.primary._digest(secret)

    def _check(self, secret: str, raw: str) -> bool:
        return self.primary._check(secret, raw)

    @staticmethod
    def _tag_legacy(digest: str) -> str:
        """Prefix an untagged pre-versioning digest with its inferred algorithm."""
        if _LEGACY_BCRYPT_HEX_RE.match(digest):
            raw = bytes.fromhex(digest).decode("ascii", errors="replace")
            return f"bcrypt{_SEPARATOR}{raw}"
        if _LEGACY_SHA256_RE.match(digest):
            return f"sha256{_SEPARATOR}{digest}"
        return digest

    def __repr__(self) -> str:
        return f"HasherChain(primary={self.primary!r}, known={sorted(self._by_tag)})"


def build_hasher(algorithm: str = "bcrypt", cost: int = 12) -> HasherChain:
    """Return a HasherChain whose primary is the configured algorithm.

    Both algorithms are always registered for verification so records written
    under a previous configuration keep working after the switch.
    """
    if algorithm == "bcrypt":
        return HasherChain(BcryptHasher(cost), Sha256Hasher())
    if algorithm == "sha256":
        return HasherChain(Sha256Hasher(), BcryptHasher(cost))
    raise ValueError(f"Unknown hash algorithm: {algorithm!r}")

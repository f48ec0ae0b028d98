"""
auth/tokens.py -- Opaque token generation and storage digests.

Security design decisions:
  Generation: secrets.token_hex(32) gives 256 bits of entropy as 64 hex
       characters -- brute-force is computationally infeasible. The same
       generator mints session tokens and password-reset tokens; the two never
       collide in meaning because the store keeps them in disjoint tables.

  Fail loudly: secrets draws from os.urandom(). If the platform cannot supply
       randomness it raises NotImplementedError/OSError; we surface that as
       EntropySourceUnavailable instead of falling back to a weaker source.
       check_entropy_source() runs at startup so a broken host never serves
       a request.

  Storage: the store persists SHA-256(token), never the raw value, so a leaked
       database cannot be replayed as cookies. A plain digest is enough here:
       the input already carries 256 bits of entropy, so the slowness bcrypt
       adds for low-entropy passwords buys nothing, and a deterministic digest
       keeps lookup O(1) via the UNIQUE index.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import logging
import secrets

from auth.errors import EntropySourceUnavailable

logger = logging.getLogger("sessiongate.auth.tokens")

TOKEN_BYTES = 32
TOKEN_HEX_LENGTH = TOKEN_BYTES * 2


def generate_token() -> str:
    """Return a new 64-hex-character token drawn from the OS CSPRNG."""
    try:
        return secrets.token_hex(TOKEN_BYTES)
    except (NotImplementedError, OSError) as exc:
        logger.critical("OS random source unavailable: %s", exc)
        raise EntropySourceUnavailable("Secure random source is unavailable.") from exc


def check_entropy_source() -> None:
    """Raise EntropySourceUnavailable unless a token can be generated.

    Called once during application startup.
    """
    token = generate_token()
    if len(token) != TOKEN_HEX_LENGTH:
        raise EntropySourceUnavailable("Secure random source returned a short token.")


def digest_token(token: str) -> str:
    """Return the SHA-256 hex digest under which a token is stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()

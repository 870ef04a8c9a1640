"""
auth/passwords.py -- Password hashing, credential checks, and token generation.

Security design decisions:
  Passwords: scrypt (hashlib.scrypt, OpenSSL-backed) with a per-user 16-byte
       salt and the parameters N=32768, r=8, p=1, 32-byte output. These match
       the hashes already stored by existing deployments, so they are fixed
       constants rather than settings. Comparison uses hmac.compare_digest so
       the time taken does not depend on how many leading bytes match.

  Timing equalization: authenticate_user() always runs one scrypt derivation,
       even when the username does not exist, so response time does not reveal
       which usernames are registered.

  Tokens: secrets.token_hex(16) gives 128 bits of entropy per client or access
       token. Tokens are opaque to clients and stored as-is; the store is the
       only place they are checked.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import uuid
from typing import TYPE_CHECKING

from auth.models import (
    User,
    validate_password,
    validate_player_name,
    validate_username,
)

if TYPE_CHECKING:
    from auth.store import TokenStore

logger = logging.getLogger("lodestone.auth")

# ---------------------------------------------------------------------------
# scrypt parameters
# ---------------------------------------------------------------------------

SCRYPT_N = 32768
SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_BYTES = 32

# scrypt needs 128 * r * N bytes (32 MiB here); OpenSSL's default ceiling is
# exactly 32 MiB and rejects the call once its own overhead is added.
_SCRYPT_MAXMEM = 64 * 1024 * 1024

_SALT_BYTES = 16
_TOKEN_BYTES = 16


def hash_password(password: str, salt: bytes) -> bytes:
    """Derive the stored password hash. Deterministic for a given (password, salt)."""
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        maxmem=_SCRYPT_MAXMEM,
        dklen=SCRYPT_BYTES,
    )


def verify_password(password: str, salt: bytes, expected_hash: bytes) -> bool:
    """Return True if password hashes to expected_hash under salt (constant-time compare)."""
    return hmac.compare_digest(hash_password(password, salt), expected_hash)


def generate_salt() -> bytes:
    return secrets.token_bytes(_SALT_BYTES)


# Timing equalization material. The salt is random per process; the hash is
# never compared against anything a caller could produce.
_DUMMY_SALT: bytes = generate_salt()
_DUMMY_HASH: bytes = bytes(SCRYPT_BYTES)


# ---------------------------------------------------------------------------
# Credential check (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: TokenStore, username: str, password: str) -> User | None:
    """Verify a username/password pair.

    Always runs scrypt whether or not the user exists:
    - Unknown username: scrypt runs against _DUMMY_SALT (same cost as a real check)
    - Wrong password: scrypt runs against the user's salt

    Returns the User (token pairs loaded) on success, None on any failure.
    """
    user = store.get_user_by_username(username)
    if user is None:
        # Equalize timing -- do NOT return early before running scrypt
        verify_password(password, _DUMMY_SALT, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_salt, user.password_hash):
        return None
    return user


# ---------------------------------------------------------------------------
# Token generation
# ---------------------------------------------------------------------------


def generate_token() -> str:
    """Return a new 128-bit random token as 32 lowercase hex characters."""
    return secrets.token_hex(_TOKEN_BYTES)


# ---------------------------------------------------------------------------
# User construction
# ---------------------------------------------------------------------------


def new_user(
    username: str,
    password: str,
    player_name: str | None = None,
    preferred_language: str = "en",
    user_uuid: str | None = None,
) -> User:
    """Build an unsaved User with a fresh salt and scrypt hash.

    player_name defaults to username. A random UUID is assigned unless one is
    supplied. Raises ValueError on a blank password or an invalid name; the
    store validates the remaining fields when the user is written.
    """
    validate_username(username)
    validate_password(password)
    player_name = player_name or username
    validate_player_name(player_name)
    salt = generate_salt()
    return User(
        uuid=user_uuid or str(uuid.uuid4()),
        username=username,
        player_name=player_name,
        password_salt=salt,
        password_hash=hash_password(password, salt),
        preferred_language=preferred_language,
    )

"""
auth/passwords.py -- bcrypt password hashing and constant-time credential checks.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

The _DUMMY_HASH constant enables timing equalization in check_credentials()
so response time does not reveal whether an email is registered [C1].
"""

from __future__ import annotations

import bcrypt

from auth.models import Principal

_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Only the first 72 bytes are significant to bcrypt; longer input is cut
    here because bcrypt 5 rejects it outright. The API layer caps password
    fields at 128 characters.
    """
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("mediavault_timing_dummy")


def check_credentials(principal: Principal | None, password: str) -> bool:
    """Verify a login attempt with timing equalization [C1].

    Always runs bcrypt whether or not the principal exists or has a local
    password (OAuth-only accounts have none):
    - Unknown email: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash
    """
    if principal is None or principal.credential_hash is None:
        verify_password(password, _DUMMY_HASH)
        return False
    return verify_password(password, principal.credential_hash)

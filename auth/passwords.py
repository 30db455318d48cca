"""
auth/passwords.py -- Password hashing service (bcrypt).

Security design decisions:
  bcrypt directly, no passlib wrapper. passlib's wrap-bug detection feeds
  bcrypt 4.x a >72 byte password and trips an explicit error; direct usage
  has no such shim.

  Cost factor comes from Settings.bcrypt_rounds (default 12, floor 10). The
  salt is generated per hash by bcrypt.gensalt() and embedded in the output.

  bcrypt.checkpw recomputes the hash and compares the full digests in
  constant time, so verification time does not depend on how many leading
  characters of a guess are right.

  _DUMMY_HASH is computed once so SessionManager can run a full bcrypt
  verification for unknown usernames and keep failed-login latency uniform.

  bcrypt silently ignores bytes past 72. MAX_PASSWORD_BYTES caps input at the
  service boundary so two long passwords sharing a 72-byte prefix cannot both
  be accepted.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a salted bcrypt hash of plain."""
    cost = rounds if rounds is not None else get_settings().bcrypt_rounds
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=cost)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if plain matches hashed. Malformed hashes verify as False."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def password_too_long(plain: str) -> bool:
    return len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES


_dummy_hash: str | None = None


def dummy_hash() -> str:
    """A valid hash nobody knows the password for. Built once, then cached."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = hash_password("gallery_timing_dummy")
    return _dummy_hash

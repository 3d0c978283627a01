"""
auth/tokens.py -- Session tokens and password hashing.

Security design decisions:
  Session tokens: python-jose with HS256. A token carries the username, the
       identity source that authenticated it, a random session id (jti) and a
       hard expiry. The signature lets the session registry reject forged or
       expired tokens before touching its map. Verification returns None on
       any failure -- the registry turns that into UnauthorizedError.

  Passwords: bcrypt, used directly. The _DUMMY_HASH constant enables timing
       equalization in check_password() so response time does not reveal
       whether a username exists [C1].

  SECRET_KEY: sourced from core.config.get_settings(), which validates it at
       startup (dev mode auto-generates, production requires >= 32 chars) [M6].

Layer rule: no imports from api/ or storage/. Import from core/ is allowed --
core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are silently truncated by bcrypt. The API
    layer caps password fields at 255 characters (Pydantic max_length).
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("gatehouse_timing_dummy")


def check_password(plain: str | None, hashed: str | None) -> bool:
    """Constant-work password check [C1].

    Always runs bcrypt, against _DUMMY_HASH when there is no stored hash (the
    user does not exist), so an unknown username and a wrong password take
    the same time and return the same answer.
    """
    if hashed is None or plain is None:
        verify_password(plain or "", _DUMMY_HASH)
        return False
    return verify_password(plain, hashed)


def generate_password() -> str:
    """Random password for accounts created without one (they must be reset to log in)."""
    return secrets.token_urlsafe(24)


# ---------------------------------------------------------------------------
# Session tokens
# ---------------------------------------------------------------------------


def create_session_token(username: str, data_source: str) -> str:
    """Encode a signed session token with a random session id and hard expiry."""
    expire = datetime.now(timezone.utc) + timedelta(seconds=_settings.token_expire_seconds)
    payload = {
        "sub": username,
        "src": data_source,
        "jti": secrets.token_hex(16),
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str) -> dict | None:
    """Decode and verify a session token. Returns the payload or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "sub" not in payload or "jti" not in payload:
        return None
    return payload

"""
auth/tokens.py -- JWT, password hashing, and API key utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry user_id, username, role and
       expiry. Verification returns None on any failure; the dependency
       layer turns that into a 401.

  Passwords: bcrypt, used directly. authenticate_user() always runs one
       bcrypt check, against a dummy hash when the username is unknown, so
       response time does not reveal which usernames exist.

  API keys: secrets.token_hex(32) (256 bits). Stored as
       HMAC-SHA256(SECRET_KEY, raw_key) so lookup is a single indexed read.
       bcrypt's slowness buys nothing for keys of this entropy.

Layer rule: no imports from api/, inventory/, or sync/. core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("vulnwatch.auth")

_ALGORITHM = "HS256"
API_KEY_PREFIX = "vw_"


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of plain. Inputs are capped at 72 bytes by bcrypt itself."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


_DUMMY_HASH: str = hash_password("vulnwatch_timing_dummy")


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Check a username/password pair in constant time. Returns the User or None."""
    user = store.get_by_username(username)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, username: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT. expire_seconds=0 uses Settings.token_expire_seconds."""
    settings = get_settings()
    duration = expire_seconds if expire_seconds > 0 else settings.token_expire_seconds
    payload = {
        "sub": username,
        "user_id": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=duration),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, get_settings().secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload or "role" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


def generate_api_key() -> str:
    """Generate a new API key: vw_<64 hex chars>."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"


def hash_api_key(raw_key: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_key) as hex.

    Deterministic, so the store can look keys up by hash. Without SECRET_KEY
    a leaked database does not let anyone verify guesses.
    """
    return hmac.new(
        get_settings().secret_key.encode(),
        raw_key.encode(),
        hashlib.sha256,
    ).hexdigest()

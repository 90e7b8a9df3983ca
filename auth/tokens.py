"""
auth/tokens.py -- JWT, password hashing, and API key utilities.

  JWT: python-jose HS256, signed with SECRET_KEY. Claims: sub (username),
       user_id, role, exp. decode_access_token() returns None on any failure;
       the dependency layer turns that into a 401.

  Passwords: bcrypt directly. authenticate_user() always runs one bcrypt
       check, against _DUMMY_HASH when the username is unknown, so response
       time does not reveal which usernames exist.

  API keys: "tm_" + 64 hex chars (256 bits). Stored as
       HMAC-SHA256(SECRET_KEY, raw_key) for single-row lookup.

Layer rule: no imports from api/, posture/, or alerts/. core/ is allowed.
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

logger = logging.getLogger("threatmap.auth")

_settings = get_settings()

_ALGORITHM = "HS256"
API_KEY_PREFIX = "tm_"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the plaintext password.

    bcrypt only looks at the first 72 bytes; the API caps password length
    well below the point where that matters for real passphrases.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB.
        return False


# Computed once at import so the first failed login costs the same as later ones.
_DUMMY_HASH: str = hash_password("threatmap_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, username: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT. expire_seconds=0 means Settings.token_expire_seconds."""
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    payload = {
        "sub": username,
        "user_id": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload or "role" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# User authentication
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Check a username/password pair in constant bcrypt time.

    Returns the User on success, None for an unknown user, a wrong password
    or a deactivated account.
    """
    user = store.get_by_username(username)
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        logger.info("Failed login for %s", username)
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"


def hash_api_key(raw_key: str) -> str:
    """HMAC-SHA256(SECRET_KEY, raw_key) as hex. A leaked DB alone cannot verify keys."""
    return hmac.new(
        _settings.secret_key.encode(),
        raw_key.encode(),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Set the JWT as an httpOnly, SameSite=Lax cookie that expires with the token.

    secure follows SECURE_COOKIES (true in production behind HTTPS).
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )

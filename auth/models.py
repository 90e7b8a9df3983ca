"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors core/models.py;
dataclasses own domain shape, stores and routes do the work.

Layer rule: no imports from api/, posture/, or alerts/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLES = ("admin", "analyst", "viewer")

# Roles allowed to create, edit and delete posture records.
WRITE_ROLES = frozenset({"admin", "analyst"})


@dataclass
class User:
    """An authenticated identity.

    Every threat, vulnerability, risk, asset and alert row is owned by exactly
    one user id. email is optional and only used as an alert-mail recipient.
    """

    username: str
    role: str  # "admin", "analyst", "viewer"
    id: int | None = None
    email: str | None = None
    hashed_password: str | None = None
    created_at: str | None = None
    last_login: str | None = None
    is_active: bool = True


@dataclass
class ApiKey:
    """A long-lived credential for non-browser API clients (CI/CD, scanners, scripts).

    - key_hash is HMAC-SHA256(SECRET_KEY, raw_key). Deterministic, so lookup
      is a single indexed read. The keys are 256-bit random, so bcrypt's cost
      factor buys nothing here.
    - key_prefix (first 12 chars of the raw key) is kept for display only.
    - The raw key is returned once at creation and never persisted.
    """

    user_id: int
    name: str
    key_hash: str  # HMAC-SHA256 of the raw key
    key_prefix: str  # first 12 chars of raw key, display only
    id: int | None = None
    created_at: str | None = None
    last_used: str | None = None
    is_active: bool = True

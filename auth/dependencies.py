"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and roles.

Three credential sources are checked in order:
  1. JWT cookie ("access_token") -- set by POST /auth/login.
  2. Authorization: Bearer <token> -- API clients holding a JWT.
  3. X-API-Key -- scanners and scripts using long-lived keys.

All three converge on a User.

try_get_current_user()  soft variant, returns None.
get_current_user()      401 when unauthenticated.
require_role(*roles)    dependency factory, 403 when the role is not listed.
require_writer          admin or analyst (posture mutations).
require_admin           admin only (user management).

Layer rule: may import fastapi (this module is part of the DI system), but
not api/, posture/, or alerts/.
"""

from __future__ import annotations

from typing import Callable

from fastapi import HTTPException, Request

from auth.models import WRITE_ROLES, User
from auth.tokens import decode_access_token, hash_api_key


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request via cookie, Bearer, or API key. Never raises."""
    user_store = request.app.state.user_store

    token: str | None = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]

    if token:
        payload = decode_access_token(token)
        if payload:
            user = user_store.get_by_id(payload["user_id"])
            if user and user.is_active:
                return user

    raw_key = request.headers.get("X-API-Key", "")
    if raw_key:
        key = user_store.get_api_key_by_hash(hash_api_key(raw_key))
        if key and key.is_active:
            user = user_store.get_by_id(key.user_id)
            if user and user.is_active:
                user_store.update_api_key_last_used(key.id)
                return user

    return None


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_role(*roles: str) -> Callable[[Request], User]:
    """Build a dependency that admits only the given roles.

    Usage:
        @router.post("/risks", dependencies=[Depends(require_role("admin", "analyst"))])
    """
    allowed = frozenset(roles)

    def _check(request: Request) -> User:
        user = get_current_user(request)
        if user.role not in allowed:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": f"Requires role: {', '.join(sorted(allowed))}."},
            )
        return user

    return _check


require_writer = require_role(*WRITE_ROLES)


def require_admin(request: Request) -> User:
    """Require admin role. Raises HTTP 401 if unauthenticated, HTTP 403 if not admin."""
    user = get_current_user(request)
    if user.role != "admin":
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Admin access required."},
        )
    return user

"""
api/routes/v1/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST   /api/v1/auth/register         -- self-service sign-up; sets JWT cookie
  POST   /api/v1/auth/login            -- password login; sets JWT cookie
  POST   /api/v1/auth/logout           -- clears cookie; 200
  GET    /api/v1/auth/me               -- current user info (requires auth)
  POST   /api/v1/auth/api-keys         -- create API key (requires auth)
  GET    /api/v1/auth/api-keys         -- list user's API keys (requires auth)
  DELETE /api/v1/auth/api-keys/{id}    -- revoke key (requires auth, ownership checked)
  POST   /api/v1/auth/users            -- create user (admin only)
  GET    /api/v1/auth/users            -- list all users (admin only)
  PATCH  /api/v1/auth/users/{id}       -- update role/is_active (admin only)
  DELETE /api/v1/auth/users/{id}       -- delete user (admin only)

Security:
  POST /login and /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline.
  The last active admin can never be deactivated, demoted or deleted, and
  an admin cannot deactivate or delete their own account.
  Cache-Control: no-store on responses that carry a token.
  IDOR guard: DELETE /api-keys/{id} passes user_id to store; the store checks ownership.

Registration: the first account on an empty install becomes admin; later
self-registered accounts are analysts. With SELF_REGISTRATION_ENABLED=false
only the first account can register, everyone else is created by an admin.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    ApiKeyCreate,
    ApiKeyCreatedResponse,
    ApiKeyResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    RegisterRequest,
    UserCreate,
    UserPatch,
    UserResponse,
)
from auth.dependencies import get_current_user, require_admin
from auth.models import ApiKey, User
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    create_access_token,
    generate_api_key,
    hash_api_key,
    hash_password,
    set_auth_cookie,
)
from core.config import get_settings

_settings = get_settings()

_MAX_API_KEYS = 10

# Auth policy:
# - POST   /api/v1/auth/register:        public -- gated by SELF_REGISTRATION_ENABLED
# - POST   /api/v1/auth/login:           public -- login endpoint must be unauthenticated
# - POST   /api/v1/auth/logout:          public -- clearing a cookie needs no prior auth
# - GET    /api/v1/auth/me:              requires auth (get_current_user)
# - */api-keys:                          requires auth (get_current_user)
# - */users:                             requires admin (require_admin)
router = APIRouter()


def _token_response(user: User, status_code: int = 200) -> JSONResponse:
    """Issue a JWT for user as both the JSON body and the httpOnly cookie."""
    token = create_access_token(user.id, user.username, user.role)
    resp = JSONResponse(
        status_code=status_code,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.token_expire_seconds,
            username=user.username,
            role=user.role,
        ).model_dump(),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/register", response_model=LoginResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and log it in.

    The first user becomes admin. Afterwards registration is open only when
    self-registration is enabled, and new accounts get the analyst role.
    """
    user_store: UserStore = request.app.state.user_store
    first_user = not user_store.has_users()
    if not first_user and not _settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )

    new_user = User(
        username=body.username,
        email=body.email,
        role="admin" if first_user else "analyst",
        hashed_password=hash_password(body.password),
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that username already exists."},
        ) from exc

    user_store.update_last_login(user_id)
    return _token_response(user_store.get_by_id(user_id), status_code=201)


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set JWT cookie.

    Returns the same generic error for wrong username and wrong password
    ("bad_credentials") to avoid leaking username existence information.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    user_store.update_last_login(user.id)
    return _token_response(user)


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the JWT cookie and end the session."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        user_id=current_user.id,
        username=current_user.username,
        role=current_user.role,
        email=current_user.email,
    )


# ---------------------------------------------------------------------------
# API key management (authenticated)
# ---------------------------------------------------------------------------


@router.post("/auth/api-keys", response_model=ApiKeyCreatedResponse, status_code=201)
def create_api_key(
    request: Request,
    body: ApiKeyCreate,
    current_user: User = Depends(get_current_user),
) -> ApiKeyCreatedResponse:
    """Generate a new API key. The raw key is shown ONCE and never stored.

    Capped at 10 active keys per user.
    """
    user_store: UserStore = request.app.state.user_store

    if len(user_store.get_api_keys(current_user.id)) >= _MAX_API_KEYS:
        raise HTTPException(
            status_code=400,
            detail={
                "code": "key_limit_reached",
                "message": f"Maximum of {_MAX_API_KEYS} API keys per user. Revoke an existing key first.",
            },
        )

    raw_key = generate_api_key()
    key_prefix = raw_key[:12]
    key_id = user_store.create_api_key(
        ApiKey(
            user_id=current_user.id,
            name=body.name,
            key_hash=hash_api_key(raw_key),
            key_prefix=key_prefix,
        )
    )
    created = next((k for k in user_store.get_api_keys(current_user.id) if k.id == key_id), None)

    return ApiKeyCreatedResponse(
        id=key_id,
        name=body.name,
        key_prefix=key_prefix,
        created_at=created.created_at if created and created.created_at else "",
        last_used=None,
        key=raw_key,
    )


@router.get("/auth/api-keys", response_model=list[ApiKeyResponse])
def list_api_keys(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> list[ApiKeyResponse]:
    """List all active API keys for the current user. Raw key values are never returned."""
    user_store: UserStore = request.app.state.user_store
    return [
        ApiKeyResponse(
            id=k.id,
            name=k.name,
            key_prefix=k.key_prefix,
            created_at=k.created_at or "",
            last_used=k.last_used,
        )
        for k in user_store.get_api_keys(current_user.id)
    ]


@router.delete("/auth/api-keys/{key_id}", status_code=204)
def revoke_api_key(
    request: Request,
    key_id: int,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Revoke an API key. The store matches on both key_id and owner."""
    user_store: UserStore = request.app.state.user_store
    if not user_store.revoke_api_key(key_id, current_user.id):
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "API key not found."},
        )
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.post("/auth/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Create a new user account with any role. Admin only."""
    user_store: UserStore = request.app.state.user_store
    new_user = User(
        username=body.username,
        email=body.email,
        role=body.role.value,
        hashed_password=hash_password(body.password),
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that username already exists."},
        ) from exc

    return _user_to_response(user_store.get_by_id(user_id))


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    current_user: User = Depends(require_admin),
) -> list[UserResponse]:
    """List all user accounts. Admin only."""
    user_store: UserStore = request.app.state.user_store
    return [_user_to_response(u) for u in user_store.list_users()]


@router.patch("/auth/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Update a user's role or active status. Admin only.

    Blocks self-deactivation, and deactivating or demoting the last active admin.
    """
    user_store: UserStore = request.app.state.user_store
    target = _get_user_or_404(user_store, user_id)

    updates: dict = {}
    removes_admin = False
    if body.role is not None:
        updates["role"] = body.role.value
        removes_admin = target.role == "admin" and body.role.value != "admin"
    if body.is_active is not None:
        if not body.is_active and target.id == current_user.id:
            raise HTTPException(
                status_code=400,
                detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
            )
        removes_admin = removes_admin or (not body.is_active and target.role == "admin")
        updates["is_active"] = body.is_active

    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    if removes_admin and target.is_active:
        _guard_last_admin(user_store)

    user_store.update_user(user_id, **updates)
    return _user_to_response(user_store.get_by_id(user_id))


@router.delete("/auth/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int,
    current_user: User = Depends(require_admin),
) -> Response:
    """Delete a user account. Posture records owned by the user are left in place."""
    user_store: UserStore = request.app.state.user_store
    target = _get_user_or_404(user_store, user_id)
    if target.id == current_user.id:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deletion", "message": "You cannot delete your own account."},
        )
    if target.role == "admin" and target.is_active:
        _guard_last_admin(user_store)
    user_store.delete_user(user_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_user_or_404(user_store: UserStore, user_id: int) -> User:
    user = user_store.get_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )
    return user


def _guard_last_admin(user_store: UserStore) -> None:
    if user_store.count_active_admins() <= 1:
        raise HTTPException(
            status_code=400,
            detail={"code": "last_admin", "message": "Cannot remove the last active admin account."},
        )


def _user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        role=user.role,
        is_active=user.is_active,
        created_at=user.created_at or "",
        last_login=user.last_login,
    )

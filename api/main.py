"""
api/main.py -- FastAPI application entry point for ThreatMap.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan opens the posture store, the user store and the alert notifier on
startup and closes the stores on shutdown.

Error mapping (one ErrorResponse envelope for every failure):
  ValidationError       -> 422 validation_error, per-field list in "fields"
  NotFoundError         -> 404 <entity>_not_found
  RepositoryError       -> 500 internal_error (exception text only in DEBUG)
  RequestValidationError-> 422 validation_error
  RateLimitExceeded     -> 429 rate_limited + Retry-After
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from alerts.notify import AlertNotifier
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, FieldError, HealthResponse
from api.routes.v1.alerts import router as alerts_router
from api.routes.v1.assets import router as assets_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.dashboard import router as dashboard_router
from api.routes.v1.risks import router as risks_router
from api.routes.v1.threats import router as threats_router
from api.routes.v1.vulnerabilities import router as vulnerabilities_router
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from core.config import get_settings
from core.errors import NotFoundError, RepositoryError, ValidationError
from posture.store import PostureStore

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("threatmap.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the stores and the notifier; close the stores on shutdown.

    The notifier needs the posture store, so the store is created first.
    """
    logger.info("ThreatMap API starting up")
    app.state.store = PostureStore(_settings.database_url)
    app.state.notifier = AlertNotifier.from_settings(app.state.store, _settings)
    logger.info(
        "Posture store initialized (alert email=%s, webhook=%s)",
        _settings.alert_critical_email,
        bool(_settings.alert_webhook_url),
    )
    app.state.user_store = UserStore(_settings.auth_database_url)
    logger.info("Auth initialized (users present=%s)", app.state.user_store.has_users())

    yield

    app.state.store.close()
    app.state.user_store.close()
    logger.info("ThreatMap API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ThreatMap API",
    description="Security posture tracking: threats, vulnerabilities, risks, assets and alerts.",
    version=VERSION,
    lifespan=lifespan,
    # Auth-protected equivalents are registered below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order the request should encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(risks_router, prefix="/api/v1", tags=["Risks"])
app.include_router(threats_router, prefix="/api/v1", tags=["Threats"])
app.include_router(vulnerabilities_router, prefix="/api/v1", tags=["Vulnerabilities"])
app.include_router(assets_router, prefix="/api/v1", tags=["Assets"])
app.include_router(alerts_router, prefix="/api/v1", tags=["Alerts"])
app.include_router(dashboard_router, prefix="/api/v1", tags=["Dashboard"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="ThreatMap API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="ThreatMap API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, detail: ErrorDetail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(exclude_none=True),
    )


@app.exception_handler(ValidationError)
async def domain_validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Field-level problems found by the posture mutation guards."""
    return _error(
        422,
        ErrorDetail(
            code="validation_error",
            message=exc.message,
            fields=[FieldError(**e) for e in exc.errors],
        ),
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return _error(404, ErrorDetail(code=f"{exc.entity}_not_found", message=exc.message))


@app.exception_handler(RepositoryError)
async def repository_error_handler(request: Request, exc: RepositoryError) -> JSONResponse:
    """Storage failures: logged in full, reported generically."""
    logger.error("Repository error on %s %s: %s", request.method, request.url.path, exc)
    return _error(
        500,
        ErrorDetail(
            code="internal_error",
            message="An unexpected error occurred.",
            detail=str(exc) if _settings.debug else None,
        ),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    slowapi stores the wait time on the exception as exc.retry_after (int seconds).
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, ErrorDetail(code="rate_limited", message="Too many requests.", detail=str(exc)))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with per-field messages when the body or query params fail validation."""
    fields = []
    for err in exc.errors():
        # loc looks like ("body", "probability") or ("query", "limit").
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        fields.append(FieldError(field=".".join(loc) or "request", message=err.get("msg", "Invalid value")))
    return _error(
        422,
        ErrorDetail(code="validation_error", message="Request validation failed.", fields=fields),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail; that dict becomes the error field as-is.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error(exc.status_code, ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only. In DEBUG the exception text is
    echoed in detail.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(
        500,
        ErrorDetail(
            code="internal_error",
            message="An unexpected error occurred.",
            detail=str(exc) if _settings.debug else None,
        ),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py, unauthenticated and not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)

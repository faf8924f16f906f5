"""
api/main.py -- FastAPI application entry point for the storefront admin backend.

Exposes the security core (sessions, second factor, permissions, audit log,
anomaly detection) and the admin endpoints that sit behind it.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests              -- one log line per request with status and
                                  latency, failed requests included
  2. CORSMiddleware            -- preflight answers and CORS headers for
                                  allowed origins
  3. convert_unhandled_errors  -- unexpected exceptions become the generic
                                  500 envelope here, so it still gets CORS
                                  headers on the way out
  4. SlowAPIMiddleware         -- enforces per-route rate limits from api.limiter

Per-route gate (auth/dependencies.py): configuration probe -> admin token ->
permission -> handler -> audit write -> anomaly check.

Lifespan handles startup (stores, MFA engine, detector) and shutdown (close
every store) symmetrically. Stores are process-scoped: created once here,
reached through app.state, never lazily constructed at module level.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.audit import router as audit_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.csp import router as csp_router
from api.routes.v1.gift_cards import router as gift_cards_router
from api.routes.v1.mfa import router as mfa_router
from api.routes.v1.orders import router as orders_router
from api.routes.v1.products import router as products_router
from api.routes.v1.settings import router as settings_router
from api.routes.v1.sizes import router as sizes_router
from api.routes.v1.users import router as users_router
from audit.anomaly import AnomalyDetector, AnomalyThresholds
from audit.store import AuditStore
from auth.mfa import SecondFactorEngine
from auth.store import PrincipalStore
from catalog.store import CatalogStore
from core.config import get_settings
from core.errors import StorefrontError

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("storefront.api")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


def build_state(app: FastAPI, principal_store: PrincipalStore, audit_store: AuditStore, catalog: CatalogStore) -> None:
    """Attach stores and the services built over them to app.state.

    Shared by the real lifespan and the test lifespan so both wire the same
    object graph.
    """
    settings = get_settings()
    app.state.principal_store = principal_store
    app.state.audit_store = audit_store
    app.state.catalog = catalog
    app.state.mfa = SecondFactorEngine(
        principal_store,
        issuer=settings.mfa_issuer,
        backup_code_count=settings.backup_code_count,
    )
    app.state.anomaly_detector = AnomalyDetector(
        audit_store,
        mismatch_counter=catalog.count_amount_mismatches,
        thresholds=AnomalyThresholds.from_settings(settings),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("Storefront API starting up")
    build_state(
        app,
        PrincipalStore(settings.database_url),
        AuditStore(settings.database_url),
        CatalogStore(settings.database_url),
    )
    if not app.state.principal_store.has_principals():
        logger.warning("No admin principals exist yet. Create one with: python main.py create-admin")
    if not settings.secret_configured:
        logger.critical("JWT_SECRET missing -- every protected endpoint will answer 500")

    yield

    app.state.principal_store.close()
    app.state.audit_store.close()
    app.state.catalog.close()
    logger.info("Storefront API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Storefront Admin API",
    description="Admin backend for a small storefront: sessions, two-factor login, permissions and audit trail.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps middleware in reverse registration order: the LAST
# registered layer is the OUTERMOST. Registration below runs innermost first.
# ---------------------------------------------------------------------------


def internal_error_response() -> JSONResponse:
    """The generic 500 envelope. Never carries exception text."""
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(exclude_none=True),
    )


app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def convert_unhandled_errors(request: Request, call_next):
    """Turn an unhandled exception into the generic 500 inside CORSMiddleware.

    Starlette runs the Exception handler in ServerErrorMiddleware, outside
    every user middleware, so a 500 rendered there never gets CORS headers
    and a browser client only sees an opaque network error.
    """
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return internal_error_response()


app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().allowed_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Pattern: Interceptor / Chain of Responsibility. Registered last, so it is
# the outermost layer and also sees CORS preflight answers.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            status_code,
            ms,
            request.client.host if request.client else "unknown",
        )


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(mfa_router, prefix="/api/v1", tags=["Two-factor"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(audit_router, prefix="/api/v1", tags=["Audit"])
app.include_router(products_router, prefix="/api/v1", tags=["Products"])
app.include_router(sizes_router, prefix="/api/v1", tags=["Sizes"])
app.include_router(settings_router, prefix="/api/v1", tags=["Settings"])
app.include_router(orders_router, prefix="/api/v1", tags=["Orders"])
app.include_router(gift_cards_router, prefix="/api/v1", tags=["Gift cards"])
app.include_router(csp_router, prefix="/api/v1", tags=["Reports"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Render the domain error kinds (401/403/400/404/409/500) with their safe message."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(exclude_none=True),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(exclude_none=True),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for HTTP exceptions, including the router's own 404 and 405.

    Registered on the Starlette base class: the router raises that, not
    FastAPI's subclass, for unknown paths and wrong methods.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(exclude_none=True),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the server log only, never
    to the response body. The client receives only a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return internal_error_response()


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the database and signing secret are usable."""
    components = {"app": "ok"}
    try:
        with request.app.state.audit_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        components["database"] = "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    components["signing_secret"] = "ok" if get_settings().secret_configured else "missing"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components=components)

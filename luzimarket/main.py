"""
main.py: Luzimarket storefront API entry point.

Start with: uvicorn luzimarket.main:app --reload --port 8000
(run from the project root)
"""
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from luzimarket.config import settings
from luzimarket.errors import (
    DuplicateAccount,
    InvalidSelection,
    LuzimarketError,
    NoActiveSession,
    TransientFetchFailure,
    Unauthorized,
)

# ---------------------------------------------------------------------------
# Logging, configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


async def _seed_reference_data() -> None:
    from luzimarket.database import AsyncSessionLocal
    from luzimarket.delivery.catalog import SEED_STATES, SEED_ZONES
    from luzimarket.store import SqlStore

    async with AsyncSessionLocal() as session:
        seeded = await SqlStore(session).seed_catalog(SEED_STATES, SEED_ZONES)
        await session.commit()
    if seeded:
        logger.info("Seeded %d states and %d delivery zones", len(SEED_STATES), len(SEED_ZONES))


# ---------------------------------------------------------------------------
# Lifespan: startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Run Alembic migrations
      2. Seed states and delivery zones on an empty catalog
      3. Initialize Redis connection pool
    Shutdown:
      1. Close Redis pool
    """
    # --- 1. Database: run Alembic migrations ---
    package_dir = os.path.dirname(os.path.abspath(__file__))
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
        cwd=package_dir,
    )
    if result.returncode != 0:
        logger.error("Alembic migration failed:\n%s", result.stderr)
        raise RuntimeError(f"Alembic migration failed: {result.stderr}")
    msg = result.stdout.strip() or "No pending migrations"
    logger.info("Alembic: %s", msg)

    # --- 2. Reference data ---
    if settings.seed_reference_data:
        await _seed_reference_data()

    # --- 3. Redis: zone list cache ---
    from luzimarket.cache import create_redis_pool
    app.state.redis = await create_redis_pool()

    logger.info("Luzimarket v%s starting up", settings.app_version)
    yield

    # --- Shutdown ---
    await app.state.redis.aclose()
    logger.info("Redis connection pool closed")

    from luzimarket.database import dispose_engine
    await dispose_engine()
    logger.info("Luzimarket shutting down")


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Luzimarket API",
    version=settings.app_version,
    description=(
        "Storefront session identity (guest and authenticated) and "
        "delivery-location selection for Luzimarket."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error response helper
# ---------------------------------------------------------------------------
def _make_error_response(
    code: str,
    message: str,
    details: list[dict[str, Any]] | None = None,
    status_code: int = 500,
) -> JSONResponse:
    """Build a standard {error: {code, message, details}} response."""
    body = {
        "error": {
            "code": code,
            "message": message,
            "details": details or [],
        }
    }
    return JSONResponse(status_code=status_code, content=body)


# Domain error → HTTP status
_DOMAIN_STATUS = {
    Unauthorized: 401,
    NoActiveSession: 401,
    InvalidSelection: 422,
    DuplicateAccount: 409,
    TransientFetchFailure: 503,
}


# ---------------------------------------------------------------------------
# Global exception handlers, registered BEFORE routers
# ---------------------------------------------------------------------------
@app.exception_handler(LuzimarketError)
async def domain_exception_handler(
    request: Request, exc: LuzimarketError
) -> JSONResponse:
    status_code = _DOMAIN_STATUS.get(type(exc), 400)
    if status_code == 401:
        logger.info("%s on %s %s", exc.code, request.method, request.url.path)
    response = _make_error_response(code=exc.code, message=exc.message, status_code=status_code)
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Converts Pydantic / FastAPI 422 validation errors to standard format.
    Returns ALL field violations in one response.
    """
    details = []
    for error in exc.errors():
        # Dot-notation field path without the top-level 'body' loc
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        details.append({"field": field or None, "issue": error["msg"]})
    return _make_error_response(
        code="VALIDATION_ERROR",
        message="Request validation failed",
        details=details,
        status_code=422,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code_map = {
        400: "BAD_REQUEST",
        401: "UNAUTHORIZED",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(ValueError)
async def value_error_handler(
    request: Request, exc: ValueError
) -> JSONResponse:
    return _make_error_response(
        code="VALIDATION_ERROR",
        message=str(exc),
        status_code=422,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(
    request: Request, exc: Exception
) -> JSONResponse:
    """
    Catch-all for unexpected errors.
    DEBUG=true  → includes exception type & message in details (dev only).
    DEBUG=false → generic message; full traceback logged server-side only.
    """
    logger.error(
        "Unhandled exception on %s %s",
        request.method,
        request.url.path,
        exc_info=True,
    )
    if settings.debug:
        details = [{"issue": f"{type(exc).__name__}: {exc}"}]
        message = "An unexpected error occurred (debug details included)"
    else:
        details = []
        message = "An unexpected error occurred"
    return _make_error_response(
        code="INTERNAL_ERROR",
        message=message,
        details=details,
        status_code=500,
    )


# ---------------------------------------------------------------------------
# Health endpoint (no auth required)
# ---------------------------------------------------------------------------
@app.get("/api/health", tags=["System"])
async def health_check() -> dict:
    return {
        "status": "ok",
        "version": settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
from luzimarket.delivery.routes import router as delivery_router  # noqa: E402
from luzimarket.identity.routes import router as identity_router  # noqa: E402

app.include_router(identity_router)
app.include_router(delivery_router)

"""
PowerLink — FastAPI Application Entry Point
"""

from __future__ import annotations

import traceback
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from powerlink.api.v1 import (
    admin,
    auth,
    baana,
    beam,
    expenses,
    installments,
    loans,
    stats,
    workers,
)
from powerlink.config import get_settings
from powerlink.core.exceptions import (
    DatabaseUnavailableError,
    PowerLinkError,
    RateLimitedError,
)
from powerlink.core.logging import configure_logging, get_logger
from powerlink.database import ConnectionState, db_manager, init_db

settings = get_settings()
logger = get_logger(__name__)

API_PREFIX = "/api"

_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMITED",
}


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and create tables; an unreachable database is retried per request."""
    configure_logging(settings.LOG_LEVEL)
    try:
        init_db()
    except DatabaseUnavailableError:
        logger.warning("Starting without a database connection; requests will retry")
    yield
    db_manager.dispose()


# ─── App ──────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.APP_TITLE,
    version=settings.APP_VERSION,
    description=(
        "PowerLink — business records for a powerloom operation: workers, "
        "loans and repayments, expenses, baana and beam arrivals, behind "
        "role and permission gated accounts."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# ─── CORS ─────────────────────────────────────────────────────────────────────

# Credentialed requests carry the refresh cookie, so origins stay explicit.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Exception handlers ───────────────────────────────────────────────────────


@app.exception_handler(PowerLinkError)
async def powerlink_exception_handler(request: Request, exc: PowerLinkError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        status_code=exc.http_status_code,
        content=exc.to_dict(),
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={
            "error": {
                "message": "Validation failed",
                "code": "VALIDATION_ERROR",
                "details": details,
            }
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": str(exc.detail),
                "code": _HTTP_CODES.get(exc.status_code, "ERROR"),
            }
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error: Dict[str, Any] = {
        "message": "An internal error occurred.",
        "code": "SERVER_ERROR",
    }
    if settings.DEBUG:
        error["message"] = str(exc)
        error["details"] = {"traceback": traceback.format_exc()}
    return JSONResponse(status_code=500, content={"error": error})


# ─── Health endpoint ──────────────────────────────────────────────────────────


@app.get(f"{API_PREFIX}/health", tags=["health"])
def health_check() -> Dict[str, Any]:
    """Liveness plus database reachability, for load balancer probes."""
    try:
        db_manager.ensure_connected()
    except DatabaseUnavailableError:
        pass
    db_ok = db_manager.state is ConnectionState.CONNECTED

    return {
        "status": "ok" if db_ok else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "dbConnected": db_ok,
    }


@app.get(API_PREFIX, tags=["health"])
def api_root() -> Dict[str, Any]:
    return {"name": settings.APP_TITLE, "version": settings.APP_VERSION, "docs": "/docs"}


# ─── Routers ──────────────────────────────────────────────────────────────────

app.include_router(auth.router, prefix=API_PREFIX)
app.include_router(admin.router, prefix=API_PREFIX)
app.include_router(workers.router, prefix=API_PREFIX)
app.include_router(loans.router, prefix=API_PREFIX)
app.include_router(installments.router, prefix=API_PREFIX)
app.include_router(expenses.router, prefix=API_PREFIX)
app.include_router(baana.router, prefix=API_PREFIX)
app.include_router(beam.router, prefix=API_PREFIX)
app.include_router(stats.router, prefix=API_PREFIX)

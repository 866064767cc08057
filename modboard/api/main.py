"""
modboard.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn modboard.api.main:app --port 3001

or ``python -m modboard``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

load_dotenv()

from modboard.api.auth import router as auth_router  # noqa: E402
from modboard.api.deps import get_config, get_engine  # noqa: E402
from modboard.api.routes.guilds import router as guilds_router  # noqa: E402
from modboard.api.routes.realtime import router as realtime_router  # noqa: E402
from modboard.config import DashboardConfig  # noqa: E402
from modboard.database.engine import ping, run_query  # noqa: E402
from modboard.services.broadcast_hub import BroadcastHub  # noqa: E402
from modboard.services.event_relay import DashboardEventListener  # noqa: E402

logger = logging.getLogger(__name__)

_STARTED_AT = time.monotonic()

# Fatal at import when mandatory settings are missing.
cfg = get_config()


def _log_async_fault(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """Log faults nobody awaited instead of letting them vanish or kill us."""
    logger.error(
        "Unhandled asynchronous fault: %s",
        context.get("message", "unknown"),
        exc_info=context.get("exception"),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — hub, event relay, loop fault handler."""
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_log_async_fault)

    hub = BroadcastHub()
    app.state.hub = hub

    listener: DashboardEventListener | None = None
    if cfg.database_url.startswith("postgresql"):
        listener = DashboardEventListener(get_engine(), hub, loop)
        listener.start()

    logger.info("Dashboard API server running")
    logger.info("Port: %s", cfg.port)
    logger.info("Environment: %s", cfg.environment)
    logger.info("Dashboard URL: %s", cfg.dashboard_url)
    logger.info("Callback URL: %s", cfg.discord_callback_url)
    logger.info("Database: %s", "configured" if cfg.database_url else "not configured")
    logger.info("Allowed CORS origins: %s", ", ".join(cfg.cors_origins))
    yield
    if listener is not None:
        listener.stop()
    hub.close()
    logger.info("Dashboard API shutting down")


app = FastAPI(
    title="Moderation Dashboard API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(cfg.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info(
        "%s %s from %s",
        request.method, request.url.path, request.headers.get("origin", "unknown"),
    )
    return await call_next(request)


# ---------------------------------------------------------------------------
# Error bodies: always {"error": "<message>"}
# ---------------------------------------------------------------------------
@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"error": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    logger.info("Rejected %s %s: %s", request.method, request.url.path, exc.errors())
    return JSONResponse({"error": "Invalid request"}, status_code=400)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


# Mount routers
app.include_router(auth_router)
app.include_router(guilds_router)
app.include_router(realtime_router)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
@app.get("/health", response_class=PlainTextResponse)
def health():
    """Liveness only — no dependency checks."""
    return "OK"


@app.get("/health/detailed")
async def health_detailed(
    settings: DashboardConfig = Depends(get_config),
    engine: Engine = Depends(get_engine),
):
    """Liveness plus a ``SELECT 1`` round-trip to the store, bounded by the
    query timeout.
    """
    try:
        await run_query(settings.query_timeout_seconds, ping, engine)
    except Exception:
        logger.exception("Health check: database unreachable")
        return JSONResponse(
            {"status": "unhealthy", "error": "Database connection failed"},
            status_code=503,
        )
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "uptime": round(time.monotonic() - _STARTED_AT, 3),
        "database": "connected",
    }


"""
Covenant — FastAPI Application Entry Point

Production-ready application with:
- Async lifespan management (DB pool warm-up, Redis message broker)
- CORS, timeout, and structured-logging middleware
- Domain-error rendering as ``{"error", "detail"}`` JSON
- Health-check endpoints (liveness + deep readiness)
- Active-request tracking for graceful shutdown
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from covenant.config import get_settings
from covenant.database import get_engine, get_session_factory
from covenant.errors import CovenantError
from covenant.services.realtime import get_broker

# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(get_settings().LOG_LEVEL.upper())
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger("covenant")

# ---------------------------------------------------------------------------
# In-flight request tracking for graceful shutdown
# ---------------------------------------------------------------------------

DRAIN_TIMEOUT_SECONDS = 15


class InFlightRequests:
    """Count requests in progress so shutdown can wait for them."""

    def __init__(self) -> None:
        self.count = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def enter(self) -> None:
        self.count += 1
        self._idle.clear()

    def leave(self) -> None:
        self.count -= 1
        if self.count <= 0:
            self.count = 0
            self._idle.set()

    async def drain(self, timeout: float = DRAIN_TIMEOUT_SECONDS) -> bool:
        """Wait for the count to reach zero; False if ``timeout`` elapsed first."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("drain_timeout_exceeded", remaining_requests=self.count)
            return False
        return True


in_flight = InFlightRequests()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Warm the store, reach the broker, and release both on shutdown."""
    settings = get_settings()
    broker = get_broker()

    logger.info(
        "startup_begin",
        environment=settings.ENVIRONMENT,
        log_level=settings.LOG_LEVEL,
    )

    async with get_engine().begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("database_pool_initialised")

    # Messages still commit without Redis; only live delivery is lost.
    try:
        await broker.ping()
        logger.info("broker_ready", url=settings.REDIS_URL)
    except Exception:
        logger.exception("broker_unreachable", url=settings.REDIS_URL)

    logger.info("startup_complete")

    yield

    logger.info("shutdown_begin", in_flight=in_flight.count)
    await in_flight.drain()
    await broker.close()
    await get_engine().dispose()
    logger.info("shutdown_complete")


# ---------------------------------------------------------------------------
# Middleware classes
# ---------------------------------------------------------------------------

class TimeoutMiddleware(BaseHTTPMiddleware):
    """Answer 504 when a request runs past ``REQUEST_TIMEOUT_SECONDS``."""

    def __init__(self, app, timeout_seconds: float) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("request_timeout", timeout=self.timeout_seconds)
            return JSONResponse(
                status_code=504,
                content={"error": "timeout", "detail": "Request timed out"},
            )


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Bind a request id into the log context and log one line per request."""

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        start = time.perf_counter()

        in_flight.enter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_error",
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise
        finally:
            in_flight.leave()

        response.headers["x-request-id"] = request_id
        logger.info(
            "request_handled",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response



# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

settings = get_settings()

app = FastAPI(
    title="Covenant",
    description="Faith-centred matrimony matching and relationship lifecycle engine",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- Middleware (applied in reverse order; last added runs first) ---------- #

app.add_middleware(StructuredLoggingMiddleware)
app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -- Error rendering ------------------------------------------------------- #


@app.exception_handler(CovenantError)
async def covenant_error_handler(request: Request, exc: CovenantError) -> JSONResponse:
    log = logger.bind(error=exc.code, status=exc.status_code)
    if exc.retryable:
        log.error("request_failed_retryable", detail=exc.message)
    else:
        log.info("request_rejected", detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# -- Health-check endpoints ------------------------------------------------ #


@app.get("/health", tags=["health"])
async def health_liveness() -> dict:
    """Lightweight liveness probe — always returns healthy if the process is
    running."""
    return {"status": "healthy"}


async def _ping_database() -> None:
    async with get_session_factory()() as session:
        await session.execute(text("SELECT 1"))


@app.get("/health/deep", tags=["health"])
async def health_deep() -> dict:
    """Readiness probe: the store and the message broker must both answer."""
    result: dict = {"status": "healthy"}
    probes = {"database": _ping_database, "redis": get_broker().ping}

    for name, probe in probes.items():
        try:
            await probe()
            result[name] = "connected"
        except Exception as exc:
            logger.error("health_probe_failed", dependency=name, error=str(exc))
            result[name] = f"error: {exc}"
            result["status"] = "degraded"

    return result


# -- API router ------------------------------------------------------------ #

from covenant.api.router import router as api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")

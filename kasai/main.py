"""
main.py — KasAI FastAPI application entry point.

Start with: uvicorn kasai.main:app --reload --port 8000
(run from the repository root)
"""
import asyncio
import logging
import os
import subprocess
import sys
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from kasai.config import settings
from kasai.sessions.errors import DurableStoreFailure

# ---------------------------------------------------------------------------
# Logging — configured before anything else
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan — startup & shutdown hooks
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
      1. Run Alembic migrations (auto-applied, no manual step needed)
      2. Redis pool + first cache health check (purges stale keys before use)
      3. Session manager over PostgreSQL + Redis tiers
      4. Mistral interpreter, ledger, state machine, mode controller, dispatcher
      5. Maintenance loop
    Shutdown:
      1. Stop maintenance loop
      2. Close Redis pool, dispose engine
    """
    # --- 1. Database: run Alembic migrations ---
    kasai_dir = os.path.dirname(os.path.abspath(__file__))
    result = subprocess.run(
        [sys.executable, "-m", "alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
        cwd=kasai_dir,
    )
    if result.returncode != 0:
        logger.error("Alembic migration failed:\n%s", result.stderr)
        raise RuntimeError(f"Alembic migration failed: {result.stderr}")
    msg = result.stdout.strip() or "No pending migrations"
    logger.info("Alembic: %s", msg)

    from kasai.database import AsyncSessionLocal, async_engine
    from kasai.sessions.manager import CacheHealth, SessionManager
    from kasai.sessions.tiers import PostgresDurableTier

    # --- 2. Redis: connection pool, trusted only after a successful PING ---
    cache_tier = None
    app.state.redis = None
    if settings.redis_enabled:
        from kasai.cache import RedisCacheTier, create_redis_pool

        app.state.redis = await create_redis_pool()
        cache_tier = RedisCacheTier(app.state.redis)
    else:
        logger.info("Redis disabled by configuration, durable tier only")

    # --- 3. Session manager ---
    durable_tier = PostgresDurableTier(AsyncSessionLocal, settings.transport_session_ttl)
    manager = SessionManager(
        durable_tier,
        cache_tier,
        health=CacheHealth(healthy=False),
        cache_enabled=settings.redis_enabled,
    )
    if cache_tier is not None:
        healthy = await manager.check_cache_health()
        logger.info("Initial cache health: %s", "healthy" if healthy else "unhealthy (bypassed)")
    app.state.session_manager = manager

    # --- 4. Collaborators and conversation core ---
    from mistralai import Mistral

    from kasai.conversation.dispatcher import MessageDispatcher
    from kasai.conversation.flows import ConversationStateMachine
    from kasai.interpreter.mistral_interpreter import MistralInterpreter
    from kasai.ledger import SqlLedger
    from kasai.modes.controller import ModeController

    # Semaphore MUST be created inside async context (not module level)
    app.state.mistral = Mistral(api_key=settings.mistral_api_key)
    app.state.llm_semaphore = asyncio.Semaphore(2)
    interpreter = MistralInterpreter(
        app.state.mistral,
        app.state.llm_semaphore,
        model=settings.mistral_model,
        bot_name=settings.bot_name,
    )
    logger.info("Mistral interpreter initialized model=%s", settings.mistral_model)

    ledger = SqlLedger(AsyncSessionLocal)
    flows = ConversationStateMachine(manager, ledger, interpreter)
    # No text-to-speech provider ships with the service: voice replies fall back
    # to text until a Synthesizer is passed to ModeController.
    modes = ModeController(manager, flows, interpreter)
    logger.info("No voice synthesizer configured, supportive replies are text-only")
    app.state.dispatcher = MessageDispatcher(manager, flows, modes, interpreter, ledger)

    # --- 5. Maintenance sweep ---
    from kasai.sessions.maintenance import MaintenanceLoop

    app.state.maintenance = MaintenanceLoop(manager, settings.maintenance_interval_seconds)
    app.state.maintenance.start()

    logger.info("%s v%s starting up", settings.bot_name, settings.app_version)
    yield

    # --- Shutdown ---
    await app.state.maintenance.stop()
    if cache_tier is not None:
        await cache_tier.close()
    await async_engine.dispose()
    logger.info("%s shutting down", settings.bot_name)


# ---------------------------------------------------------------------------
# FastAPI application instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title="KasAI API",
    version=settings.app_version,
    description=(
        "Session persistence and conversation-state core of the KasAI financial "
        "tracking assistant: dual-tier session store, pending-flow state machine "
        "and supportive-chat mode controller."
    ),
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# ---------------------------------------------------------------------------
# CORS middleware — restricted to admin dashboard origins from settings
# ---------------------------------------------------------------------------
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


# ---------------------------------------------------------------------------
# Global exception handlers — registered BEFORE routers
# ---------------------------------------------------------------------------
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
        # Build dot-notation field path, excluding the top-level 'body' loc
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
    """
    Converts FastAPI HTTPException to standard error format with semantic code.
    """
    code_map = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        409: "CONFLICT",
        422: "VALIDATION_ERROR",
        429: "RATE_LIMITED",
        503: "SERVICE_UNAVAILABLE",
    }
    code = code_map.get(exc.status_code, f"HTTP_{exc.status_code}")
    return _make_error_response(
        code=code,
        message=str(exc.detail),
        status_code=exc.status_code,
    )


@app.exception_handler(DurableStoreFailure)
async def durable_store_failure_handler(
    request: Request, exc: DurableStoreFailure
) -> JSONResponse:
    """
    The system of record is unreachable. Message handling answers in-band; this
    covers the admin endpoints (stats, cache check) that have no apology path.
    """
    logger.error("Durable store failure on %s %s: %s", request.method, request.url.path, exc.message)
    return _make_error_response(
        code="STORE_UNAVAILABLE",
        message="Session store is temporarily unavailable",
        details=[{"issue": f"operation={exc.operation}"}] if exc.operation else [],
        status_code=503,
    )


@app.exception_handler(ValueError)
async def value_error_handler(
    request: Request, exc: ValueError
) -> JSONResponse:
    """
    Catches explicit ValueError raises from business logic (ledger field checks).
    Surfaces as 422 VALIDATION_ERROR so the caller understands it's a data issue.
    """
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
# Routers
# ---------------------------------------------------------------------------
from kasai.api.routes import router as api_router

app.include_router(api_router)

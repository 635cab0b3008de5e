"""FastAPI application initialization."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional
from uuid import uuid4

from dotenv import load_dotenv

# Load environment variables before anything else
load_dotenv()

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from user_onboard import __version__, database
from user_onboard.api.admin import router as admin_router
from user_onboard.api.auth import router as auth_router
from user_onboard.api.error_handling import onboard_error_handler
from user_onboard.api.middleware import CorrelationIdMiddleware
from user_onboard.config import get_settings
from user_onboard.errors import OnboardError
from user_onboard.runtime import Runtime, build_runtime
from user_onboard.services.logging_service import configure_logging, get_logger
from user_onboard.services.redis_service import close_redis, connect_redis


async def _purge_loop(runtime: Runtime, interval_seconds: int) -> None:
    """Periodically delete expired and long-revoked refresh tokens."""
    logger = get_logger("main")
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            deleted = await runtime.auth.purge_stale_tokens()
            if deleted > 0:
                logger.info("token_purge_cycle", deleted=deleted)
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning("token_purge_cycle_error", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events.

    Key and configuration errors are not caught: the service refuses to
    start without a usable signing key pair.
    """
    # Startup
    settings = get_settings()
    configure_logging(settings.log_level)
    logger = get_logger("main")

    runtime: Optional[Runtime] = app.state.runtime
    redis_client = None
    owns_database = False

    if runtime is None:
        if settings.events_redis_enabled:
            redis_client = await connect_redis(settings.redis_url)
            if redis_client is None:
                logger.warning(
                    "redis_initialization_failed",
                    note="Continuing without Redis - events are delivered in-process only",
                )

        runtime = build_runtime(settings, redis_client=redis_client)
        app.state.runtime = runtime

        if not runtime.uses_memory_store:
            await database.init_database()
            await database.run_migrations()
            owns_database = True
            logger.info("database_initialized")

    purge_task = None
    interval = runtime.settings.token_purge_interval_seconds
    if interval > 0:
        purge_task = asyncio.create_task(_purge_loop(runtime, interval))
        logger.info("token_purge_task_started", interval_seconds=interval)

    logger.info(
        "application_started",
        version=__version__,
        backend="memory" if runtime.uses_memory_store else "postgres",
        log_level=settings.log_level,
    )

    yield

    # Shutdown
    if purge_task is not None:
        purge_task.cancel()
        try:
            await purge_task
        except asyncio.CancelledError:
            pass
        logger.info("token_purge_task_stopped")

    # Let in-flight event deliveries finish before closing connections
    await runtime.events.drain(timeout=5.0)

    if owns_database:
        await database.close_database()

    await close_redis(redis_client)

    logger.info("application_shutdown")


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors with a 400 and the first failing field."""
    correlation_id = getattr(request.state, "correlation_id", None) or str(uuid4())
    logger = structlog.get_logger()

    errors = exc.errors()
    if errors:
        first_error = errors[0]
        field = ".".join(str(loc) for loc in first_error.get("loc", ["unknown"]))
        message = first_error.get("msg", "Validation failed")
        detail = f"Field '{field}': {message}"
    else:
        detail = "Request validation failed"

    # error entries may echo the submitted password, so only the summary is logged
    logger.warning("validation_error", correlation_id=correlation_id, detail=detail)

    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation error",
            "detail": detail,
            "correlation_id": correlation_id,
        },
        headers={"X-Correlation-Id": correlation_id},
    )


def create_app(runtime: Optional[Runtime] = None) -> FastAPI:
    """Build the application.

    Args:
        runtime: Pre-built services; when omitted they are built from
            settings during startup
    """
    application = FastAPI(
        title="User Onboarding Service",
        description="Registration, admin approval and JWT sessions",
        version=__version__,
        lifespan=lifespan,
    )
    application.state.runtime = runtime

    application.add_exception_handler(RequestValidationError, validation_exception_handler)
    application.add_exception_handler(OnboardError, onboard_error_handler)

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(auth_router)
    application.include_router(admin_router)

    @application.get("/health")
    async def health(request: Request) -> JSONResponse:
        """Liveness plus a backing store check."""
        current: Optional[Runtime] = request.app.state.runtime
        store_ok = current is not None and await current.health_check()
        return JSONResponse(
            status_code=200 if store_ok else 503,
            content={
                "status": "healthy" if store_ok else "unhealthy",
                "store": "ok" if store_ok else "unavailable",
                "version": __version__,
            },
        )

    return application


app = create_app()

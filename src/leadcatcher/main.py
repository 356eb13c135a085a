"""
FastAPI application entry point.
"""

import asyncio
import hashlib
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from leadcatcher import __version__
from leadcatcher.billing.router import router as billing_router
from leadcatcher.config import get_settings
from leadcatcher.polling.router import router as polling_router
from leadcatcher.polling.service import GracePeriodPoller, PollConfig
from leadcatcher.shared.database import get_database_manager
from leadcatcher.shared.exceptions import AppError
from leadcatcher.shared.logging import correlation_id_var, get_logger, setup_logging
from leadcatcher.telephony.factory import get_messaging_provider
from leadcatcher.telephony.twilio_adapter import TwilioAdapter
from leadcatcher.telephony.webhooks.router import router as twilio_router

logger = get_logger(__name__)

POLL_LOCK_KEY = "leadcatcher:repairdesk-poll"
REQUEST_ID_HEADER = "X-Request-ID"


def _advisory_lock_id(key: str) -> int:
    """Derive a stable signed bigint lock id from an arbitrary string key."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=False) & 0x7FFF_FFFF_FFFF_FFFF


async def _poll_loop(interval_seconds: int) -> None:
    settings = get_settings()
    db_manager = get_database_manager()
    provider = get_messaging_provider()
    config = PollConfig.from_settings(settings)

    while True:
        try:
            async with db_manager.session() as session:
                await GracePeriodPoller(session, provider, config).run_once()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Poll tick failed")
        await asyncio.sleep(interval_seconds)


async def _poll_supervisor() -> None:
    """Run the poll loop only on the process holding the advisory lock.

    Overlapping runs are already safe; the lock just keeps N workers from
    hitting the ticketing API N times per interval.
    """
    settings = get_settings()
    db_manager = get_database_manager()
    lock_id = _advisory_lock_id(POLL_LOCK_KEY)
    retry_sleep = 5

    logger.info(
        "Poll supervisor starting",
        extra={"interval_seconds": settings.poll_interval_seconds, "lock_id": lock_id},
    )

    if db_manager.engine.dialect.name != "postgresql":
        await _poll_loop(settings.poll_interval_seconds)
        return

    while True:
        try:
            # Dedicated connection used to hold the advisory lock.
            async with db_manager.engine.connect() as conn:
                res = await conn.execute(
                    text("SELECT pg_try_advisory_lock(:lock_id)"),
                    {"lock_id": lock_id},
                )
                if not res.scalar():
                    logger.info("Poll leader lock busy; standby", extra={"lock_id": lock_id})
                    await asyncio.sleep(retry_sleep)
                    continue

                logger.info("Poll leader lock acquired", extra={"lock_id": lock_id})
                await _poll_loop(settings.poll_interval_seconds)
        except asyncio.CancelledError:
            logger.info("Poll supervisor cancelled; stopping")
            raise
        except Exception:
            logger.exception("Poll supervisor error; retrying", extra={"sleep_seconds": retry_sleep})
            await asyncio.sleep(retry_sleep)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    setup_logging()
    settings = get_settings()

    logger.info("Application starting", extra={"env": settings.app_env})
    missing = settings.missing_required_settings()
    if missing:
        logger.warning("Missing configuration", extra={"missing": missing})

    poll_task: asyncio.Task[None] | None = None
    if settings.poll_scheduler_enabled:
        poll_task = asyncio.create_task(_poll_supervisor())
        logger.info("In-process poll enabled; background task created")

    yield

    logger.info("Shutting down application")

    if poll_task is not None:
        poll_task.cancel()
        try:
            await poll_task
        except asyncio.CancelledError:
            pass
        logger.info("Poll background task stopped")

    if get_messaging_provider.cache_info().currsize:
        provider = get_messaging_provider()
        if isinstance(provider, TwilioAdapter):
            provider.close()

    await get_database_manager().close()
    logger.info("Application shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="LeadCatcher API",
        description="Missed-call-to-text lead capture",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    @app.exception_handler(AppError)
    async def _app_error(_: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code},
        )

    # Request validation (FastAPI/Pydantic) -> consistent 422 payload
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            errors.append({"field": field, "message": error["msg"], "type": error["type"]})
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "errors": errors,
                }
            },
        )

    @app.middleware("http")
    async def correlation_id_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        correlation_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = correlation_id
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(twilio_router)
    app.include_router(billing_router)
    app.include_router(polling_router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()

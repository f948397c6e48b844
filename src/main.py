"""rollcall - member onboarding and approval bot."""

import asyncio
import contextlib
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.core.config import constants, settings
from src.core.container import build_container
from src.core.logging import configure_logfire, instrument_fastapi, instrument_httpx
from src.core.scheduler import start_scheduler, stop_scheduler
from src.interface.admin_router import router as admin_router
from src.interface.webhook import router as webhook_router


logger = logging.getLogger(__name__)


async def check_bridge_connectivity() -> None:
    """Check that the platform bridge answers (optional at startup).

    The bridge may come up after us; an unreachable bridge is logged, not fatal.
    """
    url = f"{settings.bridge_base_url.rstrip('/')}/health"
    headers = {}
    if settings.bridge_api_key:
        headers["X-Api-Key"] = settings.bridge_api_key

    try:
        async with httpx.AsyncClient(timeout=constants.BRIDGE_TIMEOUT_SECONDS) as client:
            response = await client.get(url, headers=headers)
        if response.is_success:
            logger.info("startup_validation", extra={"service": "bridge", "status": "ok"})
        else:
            logger.warning(
                "startup_validation",
                extra={"service": "bridge", "status": "unavailable", "http_status": response.status_code},
            )
    except httpx.HTTPError as e:
        logger.warning("startup_validation", extra={"service": "bridge", "status": "unavailable", "error": str(e)})


async def validate_startup_configuration() -> None:
    """Validate required configuration and external service connectivity.

    Raises:
        SystemExit: If required credentials are missing
    """
    logger.info("startup_validation_begin")

    try:
        settings.require_credential("guild_id", "Guild")
        settings.require_credential("admin_channel_id", "Operator channel")
        settings.require_credential("invite_api_url", "Member directory invitation API")
        settings.require_credential("invite_api_secret", "Member directory API secret")

        logger.info("startup_validation", extra={"stage": "credentials", "status": "ok"})

        await check_bridge_connectivity()

        logger.info("startup_validation_complete", extra={"status": "ok"})

    except ValueError as e:
        logger.error("startup_validation_failed", extra={"error": str(e)})
        print(f"\n❌ Startup validation failed: {e}\n", file=sys.stderr)  # noqa: T201
        sys.exit(1)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Startup
    # Configure logging first so validation logs are captured
    configure_logfire()
    instrument_httpx()

    await validate_startup_configuration()

    container = build_container(settings)
    app.state.container = container

    scheduler = start_scheduler(onboarding=container.onboarding, sweep_minutes=settings.session_sweep_minutes)
    stop_polling = asyncio.Event()
    poller_task = asyncio.create_task(container.poller.run_forever(stop_polling), name="pending_poller")
    yield
    # Shutdown
    stop_polling.set()
    with contextlib.suppress(asyncio.CancelledError):
        await poller_task
    stop_scheduler(scheduler)


app = FastAPI(
    title="rollcall",
    description="Member onboarding and approval bot",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

# Register routers
app.include_router(webhook_router)
app.include_router(admin_router)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=200)


@app.get("/health/poller")
async def poller_health_check(request: Request) -> JSONResponse:
    """Pending poller health: last successful poll and last error."""
    poller = request.app.state.container.poller
    overall_status = "degraded" if poller.last_error else "healthy"
    return JSONResponse(
        content={
            "status": overall_status,
            "last_polled_at": poller.last_polled_at.isoformat() if poller.last_polled_at else None,
            "last_error": poller.last_error,
            "tick_in_flight": poller.is_running_tick,
            "sessions": len(request.app.state.container.registry),
        },
        status_code=200 if overall_status == "healthy" else 503,
    )

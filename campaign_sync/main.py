from contextlib import asynccontextmanager
import logging
import time

from fastapi import FastAPI
from starlette.requests import Request

from campaign_sync.api.router import api_router
from campaign_sync.core.config import get_settings
from campaign_sync.core.telemetry import TelemetryRuntime, setup_api_telemetry, shutdown_api_telemetry
from campaign_sync.services.repository import get_repository
from campaign_sync.services.snapshots import get_nocodb_client
from campaign_sync.services.sync_client import get_sync_client

settings = get_settings()
_telemetry_runtime: TelemetryRuntime | None = None
logger = logging.getLogger(__name__)

QUIET_PATHS = frozenset({"/healthz"})


@asynccontextmanager
async def lifespan(_: FastAPI):
    logger.info(
        "campaign-sync api starting environment=%s database_configured=%s nocodb_configured=%s",
        settings.environment,
        bool(settings.database_url),
        bool(settings.nocodb_base_url and settings.nocodb_api_token),
    )
    try:
        yield
    finally:
        if _telemetry_runtime is not None:
            shutdown_api_telemetry(app, _telemetry_runtime)
        await get_repository().close()
        get_repository.cache_clear()
        get_sync_client.cache_clear()
        get_nocodb_client.cache_clear()
        logger.info("campaign-sync api stopped")


app = FastAPI(title=settings.app_name, lifespan=lifespan)
_telemetry_runtime = setup_api_telemetry(app, settings)


@app.middleware("http")
async def request_logging_middleware(request: Request, call_next):
    started_at = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started_at) * 1000.0
    response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.2f}"
    if request.url.path in QUIET_PATHS and response.status_code < 400:
        return response
    logger.info(
        "http request method=%s path=%s module_id=%s status=%s duration_ms=%.2f",
        request.method,
        request.url.path,
        request.headers.get("x-module-id", "-"),
        response.status_code,
        elapsed_ms,
    )
    return response


app.include_router(api_router)

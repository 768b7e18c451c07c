"""
FormSync - keeps form responses in sync with Airtable through webhooks.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from formsync.config import get_settings
from formsync.database import dispose_engine
from formsync.api.router import api_router
from formsync.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)
from formsync.workers.ingestion_tasks import shutdown_ingestion_tasks

logger = logging.getLogger("formsync")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("FormSync starting up (env=%s)", settings.app_env)

    # Security warnings
    if not settings.encryption_key:
        logger.warning(
            "ENCRYPTION_KEY not set - webhook MAC secrets will be stored unencrypted. "
            "Generate a Fernet key for production."
        )
    if not settings.admin_api_key:
        logger.warning("ADMIN_API_KEY not set - management endpoints are unauthenticated outside production.")
    if not settings.airtable_pat:
        logger.warning("AIRTABLE_PAT not set - payload fetches will be rejected by Airtable.")

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    worker_tasks: list[asyncio.Task] = []

    if settings.payload_poll_interval_seconds > 0:
        from formsync.workers.payload_poller import run_payload_poller
        worker_tasks.append(asyncio.create_task(run_payload_poller()))
        logger.info("Payload poller started")
    else:
        logger.info("Payload poller disabled (PAYLOAD_POLL_INTERVAL_SECONDS=0)")

    yield

    logger.info("FormSync shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    if worker_tasks:
        await asyncio.gather(*worker_tasks, return_exceptions=True)

    # In-flight ingestion runs get a grace period; their cursors are already saved
    await shutdown_ingestion_tasks(timeout=10.0)
    await dispose_engine()
    logger.info("FormSync shutdown complete")


def _cors_origins(settings) -> list[str]:
    origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        settings.app_base_url,
    ]
    for origin in settings.allowed_origins.split(","):
        origin = origin.strip()
        if origin and origin not in origins:
            origins.append(origin)
    return origins


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    # Configure structured JSON logging with correlation IDs
    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="FormSync",
        description="Airtable-backed form response ingestion",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Content-Type", "X-Correlation-ID", "X-Admin-Key",
            "Accept", "Origin", "X-Requested-With",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()

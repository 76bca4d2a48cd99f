"""
payhooks - payment-provider webhook intake for the HeartHeals app.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from payhooks.api.router import api_router
from payhooks.config import get_settings
from payhooks.services.webhook_pipeline import WebhookPipeline, build_pipeline
from payhooks.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)
from payhooks.workers.rate_limit_reaper import run_rate_limit_reaper

logger = logging.getLogger("payhooks")


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
    logger.info("payhooks starting up (env=%s)", settings.app_env)

    if not settings.webhook_shared_secret:
        logger.error(
            "WEBHOOK_SHARED_SECRET not set - every webhook delivery will be rejected with 500 "
            "until it is configured."
        )
    if not settings.health_check_token:
        logger.warning("HEALTH_CHECK_TOKEN not set - GET /webhooks/payment will refuse all callers.")

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

    if getattr(app.state, "pipeline", None) is None:
        app.state.pipeline = build_pipeline(settings)

    worker_tasks: list[asyncio.Task] = [
        asyncio.create_task(
            run_rate_limit_reaper(
                app.state.pipeline.rate_limiter,
                settings.rate_limit_reap_interval_seconds,
            )
        ),
    ]
    logger.info("Rate limit reaper started")

    yield

    logger.info("payhooks shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    await asyncio.gather(*worker_tasks, return_exceptions=True)

    from payhooks.database import dispose_engine
    from payhooks.utils.redis_client import close_redis
    await close_redis()
    await dispose_engine()
    logger.info("payhooks shutdown complete")


def create_app(pipeline: Optional[WebhookPipeline] = None) -> FastAPI:
    """
    Application factory. Pass a prebuilt pipeline to bypass the one the
    lifespan would compose from settings (tests, embedding).
    """
    settings = get_settings()

    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="payhooks",
        description="Payment webhook intake: verification, rate limiting, idempotent dispatch",
        version="1.0.0",
        lifespan=lifespan,
    )
    application.state.pipeline = pipeline

    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)

    return application


app = create_app()

"""
Webhook pipeline - takes one inbound delivery from raw bytes to HTTP response.

    rate limit -> signature -> freshness -> dedupe -> claim -> dispatch -> record -> metrics

Rejections before dispatch (rate limit, missing secret, bad signature, stale
event) are non-2xx so the provider's retry policy decides what happens next;
nothing is recorded for them. Once an event has been dispatched the response
is always 200: business failures are recorded as processed-with-error rather
than inviting a redelivery storm. Anything unexpected is logged and answered
with 500 so the provider redelivers.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from payhooks.config import Settings
from payhooks.services.event_processor import EventContext, EventProcessor
from payhooks.services.idempotency import IdempotencyStore
from payhooks.utils.alerting import AlertType, send_alert
from payhooks.utils.locks import InFlightClaims, RedisInFlightClaims
from payhooks.utils.logging import get_correlation_id
from payhooks.utils.metrics import ERROR_BUCKET, MetricsRegistry, Timer
from payhooks.utils.rate_limiter import RateLimiterService, RedisRateLimiter
from payhooks.utils.webhook_signatures import verify_signature, verify_timestamp

logger = logging.getLogger(__name__)

RATE_LIMITED_MESSAGE = "Too many requests, please try again later."
SECRET_MISSING_MESSAGE = "Webhook secret not configured"
STALE_EVENT_MESSAGE = "Event timestamp outside tolerance window"
INTERNAL_ERROR_MESSAGE = "Webhook processing failed"


@dataclass
class PipelineResponse:
    status_code: int
    body: dict
    headers: dict[str, str] = field(default_factory=dict)


IDEMPOTENT_BODY = {"received": True, "idempotent": True}


class WebhookPipeline:
    def __init__(
        self,
        settings: Settings,
        rate_limiter,
        idempotency_store: IdempotencyStore,
        claims,
        processor: EventProcessor,
        metrics: MetricsRegistry,
        session_factory=None,
    ):
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.idempotency_store = idempotency_store
        self.claims = claims
        self.processor = processor
        self.metrics = metrics
        self.session_factory = session_factory

    async def handle(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        client_ip: str,
    ) -> PipelineResponse:
        """Top-level entry: never raises, always returns a response."""
        try:
            return await self._handle(raw_body, signature_header, client_ip)
        except Exception as e:
            logger.error(
                "Unexpected error processing webhook from %s: %s", client_ip, str(e),
                exc_info=True,
                extra={"client_ip": client_ip, "status_code": 500},
            )
            self.metrics.record(ERROR_BUCKET, success=False, error=f"{e.__class__.__name__}: {e}")
            await send_alert(
                AlertType.WEBHOOK_PROCESSING_FAILED,
                f"Webhook processing failed: {e.__class__.__name__}: {e}",
                extra={"client_ip": client_ip},
            )
            return PipelineResponse(500, {"error": INTERNAL_ERROR_MESSAGE})

    async def _handle(
        self,
        raw_body: bytes,
        signature_header: Optional[str],
        client_ip: str,
    ) -> PipelineResponse:
        # RATE_LIMIT_CHECKED
        limit = await self.rate_limiter.check(
            client_ip, self.settings.rate_limit_max, self.settings.rate_limit_window_ms,
        )
        if not limit.allowed:
            self.metrics.record(ERROR_BUCKET, success=False, error="Rate limit exceeded")
            reset_at = datetime.fromtimestamp(limit.reset_at, tz=timezone.utc)
            return PipelineResponse(
                429,
                {"error": RATE_LIMITED_MESSAGE, "reset_at": reset_at.isoformat()},
                headers={
                    "Retry-After": str(limit.retry_after_seconds(self.rate_limiter.now())),
                    "X-RateLimit-Limit": str(limit.limit),
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": reset_at.strftime("%a, %d %b %Y %H:%M:%S GMT"),
                },
            )

        secret = self.settings.webhook_shared_secret
        if not secret:
            # Fail closed: never accept unsigned events
            logger.error("WEBHOOK_SHARED_SECRET is not set - rejecting webhook")
            self.metrics.record(ERROR_BUCKET, success=False, error=SECRET_MISSING_MESSAGE)
            await send_alert(
                AlertType.WEBHOOK_SECRET_MISSING,
                "WEBHOOK_SHARED_SECRET is not set - all webhook deliveries are being rejected",
                severity="critical",
            )
            return PipelineResponse(500, {"error": SECRET_MISSING_MESSAGE})

        # SIGNATURE_VERIFIED
        verification = verify_signature(raw_body, signature_header, secret)
        if not verification.valid:
            logger.warning(
                "Webhook signature rejected from %s: %s", client_ip, verification.error,
                extra={"client_ip": client_ip, "status_code": 400},
            )
            self.metrics.record(ERROR_BUCKET, success=False, error=verification.error)
            return PipelineResponse(400, {"error": verification.error})
        event = verification.event
        log_extra = {"event_id": event.id, "event_type": event.type, "client_ip": client_ip}

        # FRESH
        if not verify_timestamp(event.created):
            logger.warning(
                "Stale webhook event %s (created=%d)", event.id, event.created, extra=log_extra,
            )
            self.metrics.record(ERROR_BUCKET, success=False, error=STALE_EVENT_MESSAGE)
            return PipelineResponse(400, {"error": STALE_EVENT_MESSAGE})

        # DEDUPED
        if await self.idempotency_store.has_processed(event.id):
            logger.info("Duplicate delivery of %s - already processed", event.id, extra=log_extra)
            self.metrics.record_duplicate(event.type)
            return PipelineResponse(200, dict(IDEMPOTENT_BODY))

        async with self.claims.claim(event.id) as acquired:
            if not acquired:
                logger.info("Event %s is already being processed", event.id, extra=log_extra)
                self.metrics.record_duplicate(event.type)
                return PipelineResponse(200, dict(IDEMPOTENT_BODY))
            # The previous holder may have recorded between our check and the claim
            if await self.idempotency_store.has_processed(event.id):
                self.metrics.record_duplicate(event.type)
                return PipelineResponse(200, dict(IDEMPOTENT_BODY))

            # DISPATCHED
            timer = Timer().start()
            context = EventContext(
                event_id=event.id,
                event_type=event.type,
                event_created_at=event.created_at,
                session_factory=self.session_factory,
                correlation_id=get_correlation_id(),
            )
            result = await self.processor.process(event, context)
            elapsed_ms = timer.stop()

            # RECORDED
            written = await self.idempotency_store.record(
                event_id=event.id,
                event_type=event.type,
                event_created_at=event.created_at,
                success=result.success,
                processing_time_ms=elapsed_ms,
                error=result.error or result.message,
            )
            if not written:
                self.metrics.record_duplicate(event.type)
                return PipelineResponse(200, dict(IDEMPOTENT_BODY))

        self.metrics.record(event.type, result.success, elapsed_ms, result.error or result.message)

        # RESPONDED
        if result.success:
            logger.info(
                "Processed %s event %s in %dms", event.type, event.id, elapsed_ms,
                extra={**log_extra, "processing_time_ms": elapsed_ms},
            )
            return PipelineResponse(200, {"received": True, "processed": True})

        logger.warning(
            "Event %s (%s) failed: %s", event.id, event.type, result.error or result.message,
            extra={**log_extra, "processing_time_ms": elapsed_ms},
        )
        return PipelineResponse(
            200,
            {"received": True, "processed": False, "error": result.error or result.message},
        )


def build_pipeline(settings: Settings, session_factory=None) -> WebhookPipeline:
    """Compose the pipeline from settings. Used by the app lifespan."""
    from payhooks.services.billing import EVENT_HANDLERS

    if session_factory is None:
        from payhooks.database import get_session_factory
        session_factory = get_session_factory()

    if settings.coordination_backend == "redis":
        rate_limiter = RedisRateLimiter()
        claims = RedisInFlightClaims(ttl=settings.claim_ttl_seconds)
    else:
        rate_limiter = RateLimiterService()
        claims = InFlightClaims()

    return WebhookPipeline(
        settings=settings,
        rate_limiter=rate_limiter,
        idempotency_store=IdempotencyStore(session_factory),
        claims=claims,
        processor=EventProcessor(EVENT_HANDLERS, timeout_seconds=settings.handler_timeout_seconds),
        metrics=MetricsRegistry(),
        session_factory=session_factory,
    )

"""
Payment webhook endpoints.

- POST /webhooks/payment - provider event intake (signature verified, no auth)
- GET  /webhooks/payment - processing health snapshot (bearer token)

The POST body is read as raw bytes before any parsing: the signature is
computed over the exact bytes the provider sent.
"""
import hmac
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from payhooks.services.webhook_pipeline import WebhookPipeline
from payhooks.utils.rate_limiter import get_client_ip

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["webhooks"])

bearer_scheme = HTTPBearer(auto_error=False)


def get_pipeline(request: Request) -> WebhookPipeline:
    """Dependency returning the pipeline composed at startup."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Webhook pipeline not initialized")
    return pipeline


async def require_health_token(
    pipeline: WebhookPipeline = Depends(get_pipeline),
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """401 without a bearer token, 403 with the wrong one, 500 if none is configured."""
    expected = pipeline.settings.health_check_token
    if not expected:
        logger.error("HEALTH_CHECK_TOKEN is not set - refusing health snapshot")
        raise HTTPException(status_code=500, detail="Health check token not configured")
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=401,
            detail="Missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not hmac.compare_digest(credentials.credentials.encode(), expected.encode()):
        raise HTTPException(status_code=403, detail="Invalid token")


@router.post("/payment")
async def payment_webhook(
    request: Request,
    pipeline: WebhookPipeline = Depends(get_pipeline),
):
    """
    Provider webhook endpoint. No auth - uses signature verification.
    Only non-2xx responses make the provider redeliver.
    """
    settings = pipeline.settings
    client_ip = get_client_ip(request, settings.trust_proxy_headers)
    raw_body = await request.body()
    signature = request.headers.get(settings.webhook_signature_header)

    result = await pipeline.handle(raw_body, signature, client_ip)
    return JSONResponse(status_code=result.status_code, content=result.body, headers=result.headers)


@router.get("/payment", dependencies=[Depends(require_health_token)])
async def payment_webhook_health(pipeline: WebhookPipeline = Depends(get_pipeline)):
    """Aggregate processing metrics per event type plus overall health."""
    status = pipeline.metrics.get_health_status()
    status["rate_limiter"] = {"tracked_keys": pipeline.rate_limiter.tracked_keys}
    status["handled_event_types"] = pipeline.processor.handled_types
    return status

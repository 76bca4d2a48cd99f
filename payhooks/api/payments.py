"""
Payments API - the server-side half of the subscription checkout form:
PaymentIntents, incomplete subscriptions and billing portal sessions.
"""
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from payhooks.services import payments as payments_service
from payhooks.services.payments import PaymentResult

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


async def _json_body(request: Request) -> dict:
    try:
        payload = await request.json()
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    return payload if isinstance(payload, dict) else {}


def _error_response(result: PaymentResult) -> JSONResponse:
    body = {"error": result.message, "kind": result.error_kind.value, "code": result.code}
    status = 400 if result.is_client_error else 500
    return JSONResponse(status_code=status, content=body)


@router.post("/intent")
async def create_payment_intent(request: Request):
    """Returns the client secret the browser needs to confirm the payment."""
    payload = await _json_body(request)
    result = await payments_service.create_payment_intent(payload.get("amount"))

    if result.ok:
        return {"client_secret": result.client_secret, "payment_intent_id": result.payment_intent_id}
    return _error_response(result)


@router.post("/subscription")
async def create_subscription(request: Request):
    payload = await _json_body(request)
    result = await payments_service.create_subscription(
        payload.get("customer_id"), payload.get("price_id"),
    )

    if result.ok:
        return {"subscription_id": result.subscription_id, "client_secret": result.client_secret}
    return _error_response(result)


@router.post("/portal")
async def create_portal_session(request: Request):
    """Returns the Stripe-hosted billing portal URL to redirect the customer to."""
    payload = await _json_body(request)
    result = await payments_service.create_billing_portal_session(
        payload.get("customer_id"), payload.get("return_url"),
    )

    if result.ok:
        return {"url": result.url}
    return _error_response(result)

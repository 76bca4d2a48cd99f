"""
Stripe payment intents, subscriptions and billing portal sessions - creation
with explicit error-kind results.

Provider SDK exceptions (declines, bad requests, outages) are translated into
a PaymentResult carrying a PaymentErrorKind from a small closed set, so
callers can tell an expected business rejection from a systemic failure
without catching SDK exception types.

All Stripe calls are synchronous and run via run_in_executor to avoid blocking
the asyncio event loop.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from payhooks.config import get_settings

logger = logging.getLogger(__name__)

MIN_AMOUNT_CENTS = 50  # Stripe minimum charge ($0.50)
DEFAULT_CURRENCY = "usd"
PRODUCT_NAME = "HeartHeals Premium Subscription"


class PaymentErrorKind(str, Enum):
    CARD_DECLINED = "card_declined"
    INVALID_REQUEST = "invalid_request"
    AUTHENTICATION = "authentication"
    RATE_LIMITED = "rate_limited"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    NOT_CONFIGURED = "not_configured"
    UNKNOWN = "unknown"


# Kinds the caller can act on (fix input, retry later); everything else is ours
CLIENT_ERROR_KINDS = frozenset({
    PaymentErrorKind.CARD_DECLINED,
    PaymentErrorKind.INVALID_REQUEST,
    PaymentErrorKind.AUTHENTICATION,
    PaymentErrorKind.RATE_LIMITED,
})

ERROR_MESSAGES = {
    PaymentErrorKind.CARD_DECLINED: "Your card was declined. Please try another card or contact your bank.",
    PaymentErrorKind.INVALID_REQUEST: "Invalid payment information. Please check and try again.",
    PaymentErrorKind.AUTHENTICATION: "Authentication with payment system failed. Please contact support.",
    PaymentErrorKind.RATE_LIMITED: "Too many requests. Please try again later.",
    PaymentErrorKind.PROVIDER_UNAVAILABLE: "Payment system error. Please try again later.",
    PaymentErrorKind.NOT_CONFIGURED: "Payments are not available right now.",
    PaymentErrorKind.UNKNOWN: "An error occurred processing your payment. Please try again.",
}

# Provider decline / error codes seen on payment_intent.last_payment_error
_DECLINE_CODE_KINDS = {
    "card_declined": PaymentErrorKind.CARD_DECLINED,
    "insufficient_funds": PaymentErrorKind.CARD_DECLINED,
    "expired_card": PaymentErrorKind.CARD_DECLINED,
    "incorrect_cvc": PaymentErrorKind.CARD_DECLINED,
    "incorrect_number": PaymentErrorKind.CARD_DECLINED,
    "invalid_number": PaymentErrorKind.CARD_DECLINED,
    "invalid_expiry_month": PaymentErrorKind.CARD_DECLINED,
    "invalid_expiry_year": PaymentErrorKind.CARD_DECLINED,
    "lost_card": PaymentErrorKind.CARD_DECLINED,
    "stolen_card": PaymentErrorKind.CARD_DECLINED,
    "processing_error": PaymentErrorKind.PROVIDER_UNAVAILABLE,
    "api_error": PaymentErrorKind.PROVIDER_UNAVAILABLE,
    "rate_limit": PaymentErrorKind.RATE_LIMITED,
    "rate_limit_error": PaymentErrorKind.RATE_LIMITED,
    "authentication_required": PaymentErrorKind.AUTHENTICATION,
    "authentication_error": PaymentErrorKind.AUTHENTICATION,
    "invalid_request_error": PaymentErrorKind.INVALID_REQUEST,
    "parameter_missing": PaymentErrorKind.INVALID_REQUEST,
    "parameter_invalid_integer": PaymentErrorKind.INVALID_REQUEST,
    "amount_too_small": PaymentErrorKind.INVALID_REQUEST,
}

# Stripe API timeout (seconds)
STRIPE_API_TIMEOUT = 10


@dataclass
class PaymentResult:
    ok: bool
    client_secret: Optional[str] = None
    payment_intent_id: Optional[str] = None
    subscription_id: Optional[str] = None
    url: Optional[str] = None
    error_kind: Optional[PaymentErrorKind] = None
    message: Optional[str] = None
    code: Optional[str] = None

    @property
    def is_client_error(self) -> bool:
        return self.error_kind in CLIENT_ERROR_KINDS


def classify_decline_code(code: Optional[str]) -> PaymentErrorKind:
    """Map a provider error/decline code onto PaymentErrorKind."""
    if not code:
        return PaymentErrorKind.UNKNOWN
    return _DECLINE_CODE_KINDS.get(code.lower(), PaymentErrorKind.UNKNOWN)


def classify_stripe_error(error: Exception) -> PaymentErrorKind:
    """Map a Stripe SDK exception onto PaymentErrorKind."""
    import stripe

    if isinstance(error, stripe.CardError):
        return PaymentErrorKind.CARD_DECLINED
    if isinstance(error, stripe.InvalidRequestError):
        return PaymentErrorKind.INVALID_REQUEST
    if isinstance(error, (stripe.AuthenticationError, stripe.PermissionError)):
        return PaymentErrorKind.AUTHENTICATION
    if isinstance(error, stripe.RateLimitError):
        return PaymentErrorKind.RATE_LIMITED
    if isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
        return PaymentErrorKind.PROVIDER_UNAVAILABLE
    return PaymentErrorKind.UNKNOWN


def error_message_for(kind: PaymentErrorKind, provider_message: Optional[str] = None) -> str:
    if kind == PaymentErrorKind.CARD_DECLINED and provider_message:
        return f"Card error: {provider_message}"
    return ERROR_MESSAGES[kind]


def _get_stripe():
    """Get configured Stripe module with per-request API key. Raises if not configured."""
    import stripe
    settings = get_settings()
    if not settings.stripe_secret_key:
        raise ValueError("Stripe secret key not configured")
    stripe.api_key = settings.stripe_secret_key
    stripe.max_network_retries = 1
    return stripe


async def _run_sync(func, *args, **kwargs):
    """Run a synchronous Stripe SDK call in the default thread pool executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


def _failure(kind: PaymentErrorKind, message: Optional[str] = None, code: Optional[str] = None) -> PaymentResult:
    return PaymentResult(ok=False, error_kind=kind, message=message or ERROR_MESSAGES[kind], code=code)


def _provider_failure(action: str, error: Exception) -> PaymentResult:
    """Translate an exception from a Stripe call into a failed PaymentResult."""
    if isinstance(error, asyncio.TimeoutError):
        logger.error("Stripe %s timed out after %ss", action, STRIPE_API_TIMEOUT)
        return _failure(PaymentErrorKind.PROVIDER_UNAVAILABLE)

    kind = classify_stripe_error(error)
    logger.warning(
        "Stripe %s failed (%s): %s", action, kind.value, str(error),
        extra={"error_kind": kind.value},
    )
    return _failure(
        kind,
        error_message_for(kind, getattr(error, "user_message", None)),
        code=getattr(error, "code", None),
    )


async def create_payment_intent(amount: int, currency: str = DEFAULT_CURRENCY) -> PaymentResult:
    """
    Create a PaymentIntent for `amount` cents.

    Returns PaymentResult; never raises for provider errors.
    """
    if not isinstance(amount, int) or isinstance(amount, bool) or amount < MIN_AMOUNT_CENTS:
        return _failure(PaymentErrorKind.INVALID_REQUEST, "Invalid amount")

    try:
        stripe = _get_stripe()
    except ValueError as e:
        logger.error("Stripe not configured: %s", str(e))
        return _failure(PaymentErrorKind.NOT_CONFIGURED)

    try:
        intent = await asyncio.wait_for(
            _run_sync(
                stripe.PaymentIntent.create,
                amount=amount,
                currency=currency,
                automatic_payment_methods={"enabled": True},
                metadata={
                    "product": PRODUCT_NAME,
                    "amount_display": f"${amount / 100:.2f}",
                },
            ),
            timeout=STRIPE_API_TIMEOUT,
        )
    except Exception as e:
        return _provider_failure("payment intent creation", e)

    logger.info("Payment intent created: %s (%d %s)", intent.id, amount, currency)
    return PaymentResult(ok=True, client_secret=intent.client_secret, payment_intent_id=intent.id)


async def create_subscription(customer_id: Optional[str], price_id: Optional[str] = None) -> PaymentResult:
    """
    Start a subscription for an existing Stripe customer.

    The subscription is created incomplete; the browser confirms the first
    invoice's payment with the returned client secret. `price_id` falls back
    to STRIPE_PRICE_ID.
    """
    price_id = price_id or get_settings().stripe_price_id
    if not customer_id or not price_id:
        return _failure(PaymentErrorKind.INVALID_REQUEST, "Missing required fields")

    try:
        stripe = _get_stripe()
    except ValueError as e:
        logger.error("Stripe not configured: %s", str(e))
        return _failure(PaymentErrorKind.NOT_CONFIGURED)

    try:
        subscription = await asyncio.wait_for(
            _run_sync(
                stripe.Subscription.create,
                customer=customer_id,
                items=[{"price": price_id}],
                payment_behavior="default_incomplete",
                payment_settings={"save_default_payment_method": "on_subscription"},
                expand=["latest_invoice.payment_intent"],
            ),
            timeout=STRIPE_API_TIMEOUT,
        )
    except Exception as e:
        return _provider_failure("subscription creation", e)

    invoice = getattr(subscription, "latest_invoice", None)
    intent = getattr(invoice, "payment_intent", None)
    client_secret = getattr(intent, "client_secret", None)
    if not client_secret:
        logger.error("Subscription %s has no payment intent to confirm", subscription.id)
        return _failure(PaymentErrorKind.UNKNOWN)

    logger.info("Subscription created: %s for customer %s", subscription.id, customer_id)
    return PaymentResult(ok=True, subscription_id=subscription.id, client_secret=client_secret)


async def create_billing_portal_session(
    customer_id: Optional[str],
    return_url: Optional[str] = None,
) -> PaymentResult:
    """
    Create a Stripe Billing Portal session where the customer manages their
    subscription. Returns to `<APP_BASE_URL>/subscription` unless told otherwise.
    """
    if not customer_id:
        return _failure(PaymentErrorKind.INVALID_REQUEST, "Missing required fields")

    try:
        stripe = _get_stripe()
    except ValueError as e:
        logger.error("Stripe not configured: %s", str(e))
        return _failure(PaymentErrorKind.NOT_CONFIGURED)

    return_url = return_url or f"{get_settings().app_base_url}/subscription"
    try:
        session = await asyncio.wait_for(
            _run_sync(
                stripe.billing_portal.Session.create,
                customer=customer_id,
                return_url=return_url,
            ),
            timeout=STRIPE_API_TIMEOUT,
        )
    except Exception as e:
        return _provider_failure("portal session creation", e)

    logger.info("Billing portal session created for customer %s", customer_id)
    return PaymentResult(ok=True, url=session.url)


async def validate_stripe_config() -> dict:
    """
    Make a cheap authenticated call to confirm the Stripe key works.

    Returns: {"valid": bool, "message": str|None}
    """
    try:
        stripe = _get_stripe()
    except ValueError as e:
        return {"valid": False, "message": str(e)}

    try:
        await asyncio.wait_for(_run_sync(stripe.Balance.retrieve), timeout=STRIPE_API_TIMEOUT)
        return {"valid": True, "message": None}
    except asyncio.TimeoutError:
        return {"valid": False, "message": "Stripe API timed out"}
    except Exception as e:
        logger.error("Stripe configuration validation failed: %s", str(e))
        if classify_stripe_error(e) == PaymentErrorKind.AUTHENTICATION:
            return {
                "valid": False,
                "message": "Invalid API key provided. Please check your Stripe secret key.",
            }
        return {"valid": False, "message": str(e)}

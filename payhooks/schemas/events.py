"""
Inbound payment-provider event schemas.

The envelope (InboundEvent) is validated for every delivery. The object under
data.object is narrowed to a typed payload per event type; types we don't
know about fall through to UnknownPayload so new provider events never break
intake.
"""
from datetime import datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Largest epoch second datetime can represent (9999-12-31T23:59:59Z)
MAX_EVENT_TIMESTAMP = 253_402_300_799


class EventData(BaseModel):
    object: dict[str, Any] = Field(default_factory=dict)


class InboundEvent(BaseModel):
    """Provider event envelope. `id` is preserved across redeliveries."""
    model_config = ConfigDict(extra="ignore")

    # Bounds match the processed_webhook_events columns
    id: str = Field(min_length=1, max_length=255)
    type: str = Field(min_length=1, max_length=100)
    created: int = Field(ge=0, le=MAX_EVENT_TIMESTAMP)  # epoch seconds, sender-asserted
    api_version: Optional[str] = None
    data: EventData = Field(default_factory=EventData)

    @property
    def created_at(self) -> datetime:
        return datetime.fromtimestamp(self.created, tz=timezone.utc)


# --- Typed payloads -------------------------------------------------------

class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class PaymentError(_Payload):
    code: Optional[str] = None
    decline_code: Optional[str] = None
    message: Optional[str] = None
    type: Optional[str] = None


class PaymentIntentPayload(_Payload):
    id: str
    amount: int = 0
    currency: str = "usd"
    customer: Optional[str] = None
    receipt_email: Optional[str] = None
    status: Optional[str] = None
    last_payment_error: Optional[PaymentError] = None


class InvoicePayload(_Payload):
    id: str
    customer: Optional[str] = None
    subscription: Optional[str] = None
    customer_email: Optional[str] = None
    amount_paid: int = 0
    amount_due: int = 0
    currency: str = "usd"
    attempt_count: int = 0


class SubscriptionPayload(_Payload):
    id: str
    customer: Optional[str] = None
    status: str
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    items: dict[str, Any] = Field(default_factory=dict)

    @property
    def price_id(self) -> Optional[str]:
        data = self.items.get("data") or []
        if not data:
            return None
        return (data[0].get("price") or {}).get("id")


class CheckoutSessionPayload(_Payload):
    id: str
    customer: Optional[str] = None
    subscription: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _email_from_customer_details(cls, data: Any) -> Any:
        # Stripe nests the email under customer_details on newer API versions
        if isinstance(data, dict) and not data.get("customer_email"):
            details = data.get("customer_details") or {}
            if details.get("email"):
                return {**data, "customer_email": details["email"]}
        return data


class UnknownPayload(_Payload):
    model_config = ConfigDict(extra="allow")

    raw: dict[str, Any] = Field(default_factory=dict)


EventPayload = Union[
    PaymentIntentPayload,
    InvoicePayload,
    SubscriptionPayload,
    CheckoutSessionPayload,
    UnknownPayload,
]

PAYLOAD_MODELS: dict[str, type[_Payload]] = {
    "payment_intent.succeeded": PaymentIntentPayload,
    "payment_intent.payment_failed": PaymentIntentPayload,
    "invoice.paid": InvoicePayload,
    "invoice.payment_succeeded": InvoicePayload,
    "invoice.payment_failed": InvoicePayload,
    "customer.subscription.created": SubscriptionPayload,
    "customer.subscription.updated": SubscriptionPayload,
    "customer.subscription.deleted": SubscriptionPayload,
    "checkout.session.completed": CheckoutSessionPayload,
}


def parse_event_payload(event: InboundEvent) -> EventPayload:
    """
    Narrow event.data.object to the payload model registered for event.type.
    Raises pydantic.ValidationError when a known type has a malformed object.
    """
    model = PAYLOAD_MODELS.get(event.type)
    if model is None:
        return UnknownPayload(raw=event.data.object)
    return model.model_validate(event.data.object)

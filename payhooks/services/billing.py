"""
Billing event handlers - the business effects behind each webhook event type.

Each handler takes the typed payload and the EventContext and returns None
(success) or a ProcessResult. Raising is fine too: the EventProcessor turns
exceptions and timeouts into failed results.

Subscription updates assign absolute state and carry the event's creation
time, so a replay is a no-op and an older event arriving after a newer one
is ignored instead of rolling state back.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from payhooks.models.subscription import CustomerSubscription
from payhooks.schemas.events import (
    CheckoutSessionPayload,
    InvoicePayload,
    PaymentIntentPayload,
    SubscriptionPayload,
)
from payhooks.services import notifications
from payhooks.services.event_processor import EventContext, EventHandler, ProcessResult
from payhooks.services.payments import classify_decline_code
from payhooks.utils.alerting import AlertType, send_alert

logger = logging.getLogger(__name__)

# Provider subscription status -> our billing status
STATUS_MAPPING = {
    "active": "active",
    "trialing": "trial",
    "past_due": "past_due",
    "unpaid": "past_due",
    "canceled": "canceled",
    "incomplete": "incomplete",
    "incomplete_expired": "canceled",
    "paused": "paused",
}

STALE_EVENT_MESSAGE = "Stale event ignored"


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _session_factory(context: EventContext):
    if context.session_factory is not None:
        return context.session_factory
    from payhooks.database import get_session_factory
    return get_session_factory()


async def _apply_subscription_state(
    context: EventContext,
    subscription_id: str,
    **fields,
) -> bool:
    """
    Create or update a subscription row with the non-None `fields`.
    Returns False when the row already reflects a newer event.
    """
    changes = {k: v for k, v in fields.items() if v is not None}
    event_at = _as_utc(context.event_created_at)

    for attempt in range(2):
        async with _session_factory(context)() as db:
            result = await db.execute(
                select(CustomerSubscription).where(
                    CustomerSubscription.subscription_id == subscription_id
                )
            )
            row = result.scalar_one_or_none()
            if row is not None:
                last_event_at = _as_utc(row.last_event_at)
                if last_event_at is not None and event_at < last_event_at:
                    logger.info(
                        "Ignoring %s for subscription %s: older than last applied event",
                        context.event_type, subscription_id,
                        extra={"event_id": context.event_id, "event_type": context.event_type},
                    )
                    return False
            else:
                row = CustomerSubscription(subscription_id=subscription_id)
                db.add(row)

            for key, value in changes.items():
                setattr(row, key, value)
            if row.status is None:
                row.status = "incomplete"
            row.last_event_at = event_at

            try:
                await db.commit()
            except IntegrityError:
                # Another event created the row first; reload and re-check
                await db.rollback()
                if attempt:
                    raise
                continue

            logger.info(
                "Subscription %s -> %s", subscription_id, row.status,
                extra={"event_id": context.event_id, "event_type": context.event_type},
            )
            return True
    return False


async def handle_checkout_completed(
    session: CheckoutSessionPayload, context: EventContext,
) -> Optional[ProcessResult]:
    """Checkout finished - activate the subscription and confirm by email."""
    if not session.subscription:
        logger.info("Checkout %s completed without a subscription", session.id)
        return ProcessResult.ok("No subscription on checkout session")

    applied = await _apply_subscription_state(
        context,
        session.subscription,
        customer_id=session.customer,
        customer_email=session.customer_email,
        status="active",
    )
    if not applied:
        return ProcessResult.ok(STALE_EVENT_MESSAGE)

    if session.customer_email:
        plan_name = session.metadata.get("plan_name", "Premium")
        amount = session.metadata.get("amount_display", "$5.00")
        result = await notifications.send_subscription_confirmation(
            session.customer_email, plan_name, amount,
        )
        if result["error"]:
            return ProcessResult.failed(f"Confirmation email failed: {result['error']}")
    return None


async def handle_subscription_changed(
    subscription: SubscriptionPayload, context: EventContext,
) -> Optional[ProcessResult]:
    """customer.subscription.created / .updated"""
    period_end = None
    if subscription.current_period_end:
        period_end = datetime.fromtimestamp(subscription.current_period_end, tz=timezone.utc)

    applied = await _apply_subscription_state(
        context,
        subscription.id,
        customer_id=subscription.customer,
        status=STATUS_MAPPING.get(subscription.status, subscription.status),
        price_id=subscription.price_id,
        current_period_end=period_end,
        cancel_at_period_end=subscription.cancel_at_period_end,
    )
    if not applied:
        return ProcessResult.ok(STALE_EVENT_MESSAGE)
    return None


async def handle_subscription_deleted(
    subscription: SubscriptionPayload, context: EventContext,
) -> Optional[ProcessResult]:
    applied = await _apply_subscription_state(
        context,
        subscription.id,
        customer_id=subscription.customer,
        status="canceled",
        cancel_at_period_end=False,
    )
    if not applied:
        return ProcessResult.ok(STALE_EVENT_MESSAGE)
    return None


async def handle_invoice_paid(
    invoice: InvoicePayload, context: EventContext,
) -> Optional[ProcessResult]:
    """Recurring payment succeeded - keep the subscription active and send a receipt."""
    if invoice.subscription:
        await _apply_subscription_state(
            context,
            invoice.subscription,
            customer_id=invoice.customer,
            customer_email=invoice.customer_email,
            status="active",
        )

    if invoice.customer_email and invoice.amount_paid > 0:
        result = await notifications.send_payment_receipt(
            invoice.customer_email, invoice.amount_paid, invoice.currency, reference=invoice.id,
        )
        if result["error"]:
            return ProcessResult.failed(f"Receipt email failed: {result['error']}")
    return None


async def handle_invoice_payment_failed(
    invoice: InvoicePayload, context: EventContext,
) -> Optional[ProcessResult]:
    """Recurring payment failed - mark past due and alert ops."""
    if invoice.subscription:
        await _apply_subscription_state(
            context,
            invoice.subscription,
            customer_id=invoice.customer,
            customer_email=invoice.customer_email,
            status="past_due",
        )

    logger.warning(
        "Invoice %s payment failed (attempt %d)", invoice.id, invoice.attempt_count,
        extra={"event_id": context.event_id, "event_type": context.event_type},
    )
    await send_alert(
        AlertType.PAYMENT_FAILED,
        f"Payment failed for invoice {invoice.id}",
        severity="warning",
        extra={"customer": invoice.customer, "attempt_count": invoice.attempt_count},
    )
    return ProcessResult.ok("Subscription marked past_due" if invoice.subscription else None)


async def handle_payment_intent_succeeded(
    intent: PaymentIntentPayload, context: EventContext,
) -> Optional[ProcessResult]:
    logger.info(
        "Payment intent %s succeeded (%d %s)", intent.id, intent.amount, intent.currency,
        extra={"event_id": context.event_id, "event_type": context.event_type},
    )
    if intent.receipt_email:
        result = await notifications.send_payment_receipt(
            intent.receipt_email, intent.amount, intent.currency, reference=intent.id,
        )
        if result["error"]:
            return ProcessResult.failed(f"Receipt email failed: {result['error']}")
    return None


async def handle_payment_intent_failed(
    intent: PaymentIntentPayload, context: EventContext,
) -> Optional[ProcessResult]:
    error = intent.last_payment_error
    code = (error.decline_code or error.code) if error else None
    kind = classify_decline_code(code)
    logger.warning(
        "Payment intent %s failed: %s (%s)",
        intent.id, code or "no code", error.message if error and error.message else "no message",
        extra={"event_id": context.event_id, "event_type": context.event_type, "error_kind": kind.value},
    )
    return ProcessResult.ok(f"Payment failure recorded: {kind.value}")


EVENT_HANDLERS: dict[str, EventHandler] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_changed,
    "customer.subscription.updated": handle_subscription_changed,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.paid": handle_invoice_paid,
    "invoice.payment_succeeded": handle_invoice_paid,
    "invoice.payment_failed": handle_invoice_payment_failed,
    "payment_intent.succeeded": handle_payment_intent_succeeded,
    "payment_intent.payment_failed": handle_payment_intent_failed,
}

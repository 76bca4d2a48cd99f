"""
Transactional email - subscription confirmations and payment receipts.

Sent through the Resend HTTP API. Outside production, or without an API key,
emails are logged instead of sent so local webhook replays don't mail anyone.
"""
import logging
from datetime import datetime, timedelta, timezone

import httpx

from payhooks.config import get_settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
EMAIL_TIMEOUT_SECONDS = 10.0
BILLING_PERIOD_DAYS = 30


def _format_amount(amount_cents: int, currency: str = "usd") -> str:
    if currency.lower() == "usd":
        return f"${amount_cents / 100:.2f}"
    return f"{amount_cents / 100:.2f} {currency.upper()}"


async def _send_email(to: str, subject: str, html: str) -> dict:
    """
    Deliver one email.

    Returns: {"sent": bool, "message_id": str|None, "dev_mode": bool, "error": str|None}
    """
    settings = get_settings()

    if settings.app_env != "production" or not settings.resend_api_key:
        logger.info(
            "Development mode: email to %s not sent (subject=%r, preview=%r)",
            to, subject, html[:200],
        )
        return {"sent": True, "message_id": "dev-mode-email-id", "dev_mode": True, "error": None}

    try:
        async with httpx.AsyncClient(timeout=EMAIL_TIMEOUT_SECONDS) as client:
            resp = await client.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {settings.resend_api_key}"},
                json={
                    "from": settings.email_from,
                    "to": [to],
                    "subject": subject,
                    "html": html,
                },
            )
        if resp.status_code >= 400:
            logger.warning("Email delivery rejected (%d): %s", resp.status_code, resp.text[:200])
            return {
                "sent": False,
                "message_id": None,
                "dev_mode": False,
                "error": f"Email provider returned {resp.status_code}",
            }
        return {"sent": True, "message_id": resp.json().get("id"), "dev_mode": False, "error": None}
    except httpx.HTTPError as e:
        logger.warning("Email delivery failed: %s", str(e))
        return {"sent": False, "message_id": None, "dev_mode": False, "error": str(e) or e.__class__.__name__}


async def send_subscription_confirmation(
    email: str,
    plan_name: str = "Premium",
    amount: str = "$5.00",
) -> dict:
    """Tell the customer their subscription is active."""
    settings = get_settings()
    today = datetime.now(timezone.utc)
    next_billing = today + timedelta(days=BILLING_PERIOD_DAYS)
    html = (
        f"<h1>Your HeartHeals {plan_name} subscription is active!</h1>"
        f"<p>Plan: {plan_name} ({amount} per month)</p>"
        f"<p>Started: {today.strftime('%B %d, %Y')}</p>"
        f"<p>Next billing date: {next_billing.strftime('%B %d, %Y')}</p>"
        f"<p><a href=\"{settings.app_base_url}\">Open HeartHeals</a></p>"
    )
    return await _send_email(email, f"Your HeartHeals {plan_name} Subscription is Active!", html)


async def send_payment_receipt(
    email: str,
    amount_cents: int,
    currency: str = "usd",
    reference: str = "",
) -> dict:
    """Receipt for a successful charge."""
    amount = _format_amount(amount_cents, currency)
    html = (
        "<h1>Payment received</h1>"
        f"<p>We received your payment of {amount}.</p>"
        + (f"<p>Reference: {reference}</p>" if reference else "")
    )
    return await _send_email(email, f"HeartHeals receipt for {amount}", html)

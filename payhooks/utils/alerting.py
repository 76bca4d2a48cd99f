"""
Ops alerting - sends alerts on payment and intake problems.

Alert channels:
1. Structured log (always) - at ERROR/CRITICAL level
2. Webhook (configurable) - Discord/Slack URL via ALERT_WEBHOOK_URL env var

Rate limiting: per-type in-memory cooldown to prevent alert storms.
"""
import logging
import time
from typing import Optional

import httpx

from payhooks.config import get_settings
from payhooks.utils.logging import get_correlation_id

logger = logging.getLogger(__name__)

ALERT_COOLDOWN_SECONDS = 300  # 5 minutes
ALERT_WEBHOOK_TIMEOUT_SECONDS = 5.0

_local_cooldowns: dict[str, float] = {}  # alert_type -> expiry (monotonic)


class AlertType:
    """Alert type constants."""
    PAYMENT_FAILED = "payment_failed"
    WEBHOOK_PROCESSING_FAILED = "webhook_processing_failed"
    WEBHOOK_SECRET_MISSING = "webhook_secret_missing"


def _acquire_cooldown(alert_type: str) -> bool:
    """Check-and-set the cooldown for alert_type. True if the alert should go out."""
    now = time.monotonic()
    if now < _local_cooldowns.get(alert_type, 0):
        return False
    _local_cooldowns[alert_type] = now + ALERT_COOLDOWN_SECONDS
    return True


async def send_alert(
    alert_type: str,
    message: str,
    severity: str = "error",
    extra: Optional[dict] = None,
) -> None:
    """
    Send an alert through all configured channels.
    Rate-limited per alert type. Never raises.
    """
    if not _acquire_cooldown(alert_type):
        return

    cid = get_correlation_id()
    log_message = f"ALERT [{alert_type}]: {message}"
    if cid:
        log_message += f" (correlation_id={cid})"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    await _send_webhook_alert(alert_type, message, severity, cid, extra)


async def _send_webhook_alert(
    alert_type: str,
    message: str,
    severity: str,
    correlation_id: Optional[str],
    extra: Optional[dict],
) -> None:
    """Send alert to configured webhook (Discord/Slack)."""
    try:
        webhook_url = get_settings().alert_webhook_url
        if not webhook_url:
            return

        content = f"[{severity.upper()}] **{alert_type}**\n{message}"
        if correlation_id:
            content += f"\n`correlation_id: {correlation_id}`"
        if extra:
            for key, val in extra.items():
                content += f"\n`{key}: {val}`"

        async with httpx.AsyncClient(timeout=ALERT_WEBHOOK_TIMEOUT_SECONDS) as client:
            await client.post(webhook_url, json={"content": content})
    except Exception as e:
        # Alert sending failure should never crash the system
        logger.warning("Failed to send webhook alert: %s", str(e))

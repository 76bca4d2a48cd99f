"""
Tests for payhooks/utils/alerting.py - cooldowns and webhook delivery.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from payhooks.utils import alerting
from payhooks.utils.alerting import AlertType, _send_webhook_alert, send_alert


@pytest.fixture(autouse=True)
def clear_cooldowns():
    alerting._local_cooldowns.clear()
    yield
    alerting._local_cooldowns.clear()


def _mock_client():
    client = AsyncMock()
    client.post = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


class TestSendAlert:
    async def test_cooldown_suppresses_repeat(self):
        with patch("payhooks.utils.alerting._send_webhook_alert", new_callable=AsyncMock) as mock_send:
            await send_alert(AlertType.PAYMENT_FAILED, "first")
            await send_alert(AlertType.PAYMENT_FAILED, "second")
            await send_alert(AlertType.WEBHOOK_PROCESSING_FAILED, "other type")
        assert mock_send.await_count == 2

    async def test_critical_logged(self, caplog):
        with patch("payhooks.utils.alerting._send_webhook_alert", new_callable=AsyncMock):
            with caplog.at_level("CRITICAL", logger="payhooks.utils.alerting"):
                await send_alert(AlertType.WEBHOOK_SECRET_MISSING, "no secret", severity="critical")
        assert any("ALERT [webhook_secret_missing]" in r.message for r in caplog.records)


class TestSendWebhookAlert:
    async def test_posts_content_with_extra(self):
        settings = MagicMock()
        settings.alert_webhook_url = "https://hooks.example.com/test"
        client = _mock_client()
        with (
            patch("payhooks.utils.alerting.get_settings", return_value=settings),
            patch("payhooks.utils.alerting.httpx.AsyncClient", return_value=client),
        ):
            await _send_webhook_alert(
                "payment_failed", "Payment failed for invoice in_1", "warning",
                "corr-abc-123", {"customer": "cus_1"},
            )

        client.post.assert_awaited_once()
        url = client.post.call_args[0][0]
        content = client.post.call_args[1]["json"]["content"]
        assert url == "https://hooks.example.com/test"
        assert "[WARNING]" in content
        assert "corr-abc-123" in content
        assert "cus_1" in content

    async def test_no_url_configured(self):
        settings = MagicMock()
        settings.alert_webhook_url = ""
        with (
            patch("payhooks.utils.alerting.get_settings", return_value=settings),
            patch("payhooks.utils.alerting.httpx.AsyncClient") as mock_cls,
        ):
            await _send_webhook_alert("payment_failed", "msg", "error", None, None)
        mock_cls.assert_not_called()

    async def test_delivery_error_swallowed(self):
        settings = MagicMock()
        settings.alert_webhook_url = "https://hooks.example.com/test"
        client = _mock_client()
        client.post = AsyncMock(side_effect=Exception("network down"))
        with (
            patch("payhooks.utils.alerting.get_settings", return_value=settings),
            patch("payhooks.utils.alerting.httpx.AsyncClient", return_value=client),
        ):
            await _send_webhook_alert("payment_failed", "msg", "error", None, None)

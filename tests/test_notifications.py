"""
Tests for payhooks/services/notifications.py - Resend email delivery.
"""
import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from payhooks.services.notifications import (
    RESEND_API_URL,
    send_payment_receipt,
    send_subscription_confirmation,
)


def _settings(**overrides):
    settings = MagicMock()
    settings.app_env = "production"
    settings.resend_api_key = "re_test"
    settings.email_from = "HeartHeals <billing@example.com>"
    settings.app_base_url = "https://app.example.com"
    for k, v in overrides.items():
        setattr(settings, k, v)
    return settings


def _mock_client(response=None, error=None):
    client = AsyncMock()
    client.post = AsyncMock(return_value=response, side_effect=error)
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


class TestSendEmail:
    async def test_dev_mode_does_not_send(self):
        with (
            patch("payhooks.services.notifications.get_settings", return_value=_settings(app_env="development")),
            patch("payhooks.services.notifications.httpx.AsyncClient") as mock_cls,
        ):
            result = await send_payment_receipt("a@example.com", 500)
        assert result["sent"] is True
        assert result["dev_mode"] is True
        mock_cls.assert_not_called()

    async def test_no_key_is_dev_mode(self):
        with patch(
            "payhooks.services.notifications.get_settings", return_value=_settings(resend_api_key=""),
        ):
            result = await send_payment_receipt("a@example.com", 500)
        assert result["dev_mode"] is True

    async def test_production_send(self):
        response = MagicMock(status_code=200)
        response.json = MagicMock(return_value={"id": "email_123"})
        client = _mock_client(response=response)
        with (
            patch("payhooks.services.notifications.get_settings", return_value=_settings()),
            patch("payhooks.services.notifications.httpx.AsyncClient", return_value=client),
        ):
            result = await send_payment_receipt("a@example.com", 1250, "usd", reference="in_1")

        assert result == {"sent": True, "message_id": "email_123", "dev_mode": False, "error": None}
        args, kwargs = client.post.call_args
        assert args[0] == RESEND_API_URL
        assert kwargs["headers"]["Authorization"] == "Bearer re_test"
        assert kwargs["json"]["to"] == ["a@example.com"]
        assert "$12.50" in kwargs["json"]["subject"]
        assert "in_1" in kwargs["json"]["html"]

    async def test_provider_rejection(self):
        response = MagicMock(status_code=422, text="invalid from address")
        client = _mock_client(response=response)
        with (
            patch("payhooks.services.notifications.get_settings", return_value=_settings()),
            patch("payhooks.services.notifications.httpx.AsyncClient", return_value=client),
        ):
            result = await send_subscription_confirmation("a@example.com")
        assert result["sent"] is False
        assert result["error"] == "Email provider returned 422"

    async def test_network_error(self):
        client = _mock_client(error=httpx.ConnectError("connection refused"))
        with (
            patch("payhooks.services.notifications.get_settings", return_value=_settings()),
            patch("payhooks.services.notifications.httpx.AsyncClient", return_value=client),
        ):
            result = await send_subscription_confirmation("a@example.com", "Premium", "$5.00")
        assert result["sent"] is False
        assert "connection refused" in result["error"]

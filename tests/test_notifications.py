"""
Unit tests for confirmation mail and health checks.
"""
import smtplib
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from parking_lot.integrations.email_client import EmailClient
from parking_lot.integrations.stripe_client import StripeError, StripeErrorType
from parking_lot.monitoring.health import HealthCheck, HealthCheckError


class TestEmailClient:
    """Test suite for EmailClient."""

    @pytest.mark.unit
    def test_build_confirmation(self, test_settings: Any) -> None:
        message = EmailClient(settings=test_settings).build_confirmation(
            "driver@example.com", Decimal("50"), "ron"
        )

        assert message["To"] == "driver@example.com"
        assert message["Subject"] == "Payment confirmation"
        assert "50.00 RON" in message.get_content()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_skipped_without_smtp(self, test_settings: Any) -> None:
        assert not await EmailClient(settings=test_settings).send_confirmation_email(
            "driver@example.com"
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_sends_through_relay(self, test_settings: Any) -> None:
        test_settings.smtp_host = "smtp.example.com"
        test_settings.smtp_username = "mailer"
        test_settings.smtp_password = "pw"

        with patch("parking_lot.integrations.email_client.smtplib.SMTP") as smtp_cls:
            sent = await EmailClient(settings=test_settings).send_confirmation_email(
                "driver@example.com", Decimal("10"), "ron"
            )

        assert sent
        smtp = smtp_cls.return_value.__enter__.return_value
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("mailer", "pw")
        smtp.send_message.assert_called_once()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_delivery_failure_is_reported(self, test_settings: Any) -> None:
        test_settings.smtp_host = "smtp.example.com"

        with patch(
            "parking_lot.integrations.email_client.smtplib.SMTP",
            side_effect=smtplib.SMTPConnectError(421, "unavailable"),
        ):
            sent = await EmailClient(settings=test_settings).send_confirmation_email(
                "driver@example.com"
            )

        assert not sent


class TestHealthCheck:
    """Test suite for HealthCheck."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stripe_healthy(self) -> None:
        gateway = MagicMock()
        gateway.ping = AsyncMock()

        result = await HealthCheck(gateway=gateway).check_stripe()

        assert result["status"] == "healthy"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stripe_unhealthy(self) -> None:
        gateway = MagicMock()
        gateway.ping = AsyncMock(
            side_effect=StripeError("Circuit breaker is open", StripeErrorType.TRANSIENT)
        )

        with pytest.raises(HealthCheckError, match="Stripe health check failed"):
            await HealthCheck(gateway=gateway).check_stripe()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_check_all_reports_failures(self) -> None:
        health_check = HealthCheck(gateway=MagicMock())
        health_check.check_database = AsyncMock(return_value={"status": "healthy"})
        health_check.check_stripe = AsyncMock(side_effect=HealthCheckError("down"))

        result = await health_check.check_all()

        assert result["status"] == "unhealthy"
        assert result["checks"]["database"] == {"status": "healthy"}
        assert result["checks"]["stripe"]["status"] == "unhealthy"
        assert "redis" not in result["checks"]

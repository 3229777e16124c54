"""
Outbound mail for payment confirmations.

Delivery is best effort: failures are logged and reported to the caller as
``False``, never raised, so a mail outage cannot fail a payment.
"""
import asyncio
import smtplib
from decimal import Decimal
from email.message import EmailMessage
from typing import Optional

import structlog

from parking_lot.config import Settings, get_settings

logger = structlog.get_logger(__name__)


class EmailClient:
    """Sends notification mail through the configured SMTP relay."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def build_confirmation(
        self, to_email: str, amount: Optional[Decimal] = None, currency: Optional[str] = None
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = "Payment confirmation"
        message["From"] = self.settings.mail_sender
        message["To"] = to_email
        body = "Your payment was successful and the funds were added to your balance."
        if amount is not None:
            body = (
                f"Your payment of {amount:.2f} {(currency or '').upper()} was successful "
                "and the funds were added to your balance."
            )
        message.set_content(body)
        return message

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=10) as smtp:
            if self.settings.smtp_use_tls:
                smtp.starttls()
            if self.settings.smtp_username:
                smtp.login(self.settings.smtp_username, self.settings.smtp_password or "")
            smtp.send_message(message)

    async def send_confirmation_email(
        self, to_email: str, amount: Optional[Decimal] = None, currency: Optional[str] = None
    ) -> bool:
        """
        Send the payment confirmation mail.

        Returns:
            bool: Whether the mail was handed to the relay
        """
        if not self.settings.mail_enabled:
            logger.info("confirmation_email_skipped", reason="smtp_not_configured", to=to_email)
            return False

        message = self.build_confirmation(to_email, amount, currency)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("confirmation_email_failed", to=to_email, error=str(e))
            return False

        logger.info("confirmation_email_sent", to=to_email)
        return True

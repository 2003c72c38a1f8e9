"""Email service for sending transactional emails via SMTP."""

import html
import logging
from dataclasses import dataclass
from decimal import Decimal
from email.message import EmailMessage
from enum import Enum
from uuid import UUID

from app.core.config import settings

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """Kinds of settlement notifications."""

    PAYMENT_CONFIRMATION = "payment_confirmation"
    PAYMENT_RECEIVED = "payment_received"
    REFUND_ISSUED = "refund_issued"
    DEPOSIT_REFUNDED = "deposit_refunded"
    PAYOUT_SENT = "payout_sent"
    PAYOUT_FAILED = "payout_failed"


@dataclass
class EmailNotification:
    """A notification addressed to one user."""

    recipient_email: str
    subject: str
    body: str
    type: NotificationType
    user_id: UUID | None = None


def format_amount(value: object, currency: str = "USD") -> str:
    """Format a monetary amount to two decimal places with its currency."""
    if value is None:
        return f"0.00 {currency}"
    return f"{Decimal(str(value)):.2f} {currency}"


class EmailService:
    """Service for sending transactional emails via SMTP."""

    async def send_email(self, to: str, subject: str, html_body: str) -> bool:
        """Send an email via SMTP.

        Args:
            to: Recipient email address.
            subject: Email subject line.
            html_body: HTML content of the email.

        Returns:
            True if sent successfully (or no-op when SMTP unconfigured).
        """
        if not settings.SMTP_HOST:
            logger.info("SMTP not configured, skipping email to %s: %s", to, subject)
            return True

        import aiosmtplib

        msg = EmailMessage()
        msg["From"] = f"{settings.SMTP_FROM_NAME} <{settings.SMTP_FROM_EMAIL}>"
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content("Please view this email in an HTML-capable client.")
        msg.add_alternative(html_body, subtype="html")

        await aiosmtplib.send(
            msg,
            hostname=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME or None,
            password=settings.SMTP_PASSWORD or None,
            start_tls=settings.SMTP_USE_TLS,
        )
        logger.info("Email sent to %s: %s", to, subject)
        return True

    async def send_notification(self, notification: EmailNotification) -> bool:
        """Send a settlement notification.

        Only called after the unit of work that produced it has committed.
        """
        if not notification.recipient_email:
            logger.warning(
                "No recipient for %s notification to user %s",
                notification.type.value,
                notification.user_id,
            )
            return False

        paragraphs = "".join(
            f"<p>{html.escape(line)}</p>" for line in notification.body.split("\n") if line.strip()
        )
        html_body = (
            f"<h2>{html.escape(notification.subject)}</h2>"
            f"{paragraphs}"
            f'<p><a href="{settings.FRONTEND_BASE_URL}">{settings.APP_NAME}</a></p>'
        )
        return await self.send_email(notification.recipient_email, notification.subject, html_body)

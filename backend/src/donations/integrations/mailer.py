"""Mail integration for payment receipts."""
import asyncio
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional

import structlog

from donations.config import Settings, settings

logger = structlog.get_logger(__name__)


class Mailer:
    """
    Sends receipt emails.

    With an SMTP host configured, mail is relayed through it. Without one the
    message is only logged, which is what development and test deployments
    use.
    """

    def __init__(self, config: Settings = settings):
        """
        Initialize the mailer.

        Args:
            config: Settings holding the sender, bcc and SMTP relay
        """
        self.sender = config.receipt_sender
        self.sender_name = config.receipt_sender_name
        self.bcc = config.receipt_bcc
        self.smtp_host = config.smtp_host
        self.smtp_port = config.smtp_port
        self.smtp_username = config.smtp_username
        self.smtp_password = config.smtp_password
        self.smtp_use_tls = config.smtp_use_tls

    async def send_mail(self, key: str, to: Optional[str], subject: str, body: str) -> dict:
        """
        Send an email.

        Args:
            key: Mail key identifying the message kind (e.g., "donation_form_receipt")
            to: Recipient email address
            subject: Email subject
            body: Plain text body

        Returns:
            Dictionary with ``send`` set to whether the message was accepted
        """
        if not to:
            logger.warning("email_without_recipient", key=key)
            return {"send": False}

        try:
            message = self._build_message(to, subject, body)
        except ValueError as e:
            # Header values with line breaks are refused by the email package.
            logger.error("email_invalid_message", key=key, error=str(e))
            return {"send": False}

        if not self.smtp_host:
            logger.info(
                "email_notification",
                key=key,
                subject=subject,
                provider="log",
                has_bcc=self.bcc is not None,
            )
            return {"send": True}

        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("email_send_failed", key=key, error=str(e))
            return {"send": False}

        logger.info("email_sent", key=key, subject=subject, provider="smtp")
        return {"send": True}

    def _build_message(self, to: str, subject: str, body: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((self.sender_name, self.sender))
        message["To"] = to
        message["Subject"] = subject
        if self.bcc:
            message["Bcc"] = self.bcc
        message.set_content(body)
        return message

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as smtp:
            if self.smtp_use_tls:
                smtp.starttls()
            if self.smtp_username and self.smtp_password:
                smtp.login(self.smtp_username, self.smtp_password)
            smtp.send_message(message)

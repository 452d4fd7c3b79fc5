"""
Email sender abstraction for notification delivery.

Supports multiple providers:
- SendGrid (production)
- SMTP (development)
- Mock (testing)

Every provider call is bounded by a timeout; a timeout is reported as a
failed SendResult, never raised.
"""

import os
import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional, List, Set

import httpx

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"
DEFAULT_TIMEOUT_SECONDS = 15.0


@dataclass
class EmailMessage:
    """Email message data."""
    to_email: str
    to_name: Optional[str]
    subject: str
    html_body: str
    text_body: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None
    reply_to: Optional[str] = None
    tags: Optional[List[str]] = None


@dataclass
class SendResult:
    """Outcome of one delivery attempt."""
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"success": self.success, "error": self.error}


class EmailSender(ABC):
    """Abstract base class for email sending."""

    @abstractmethod
    def send(self, message: EmailMessage) -> SendResult:
        """
        Send an email.

        Args:
            message: Email message to send

        Returns:
            SendResult; failures carry a short error description
        """
        pass


class SendGridEmailSender(EmailSender):
    """SendGrid email sender implementation."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: Optional[httpx.Client] = None,
    ):
        """
        Initialize SendGrid sender.

        Args:
            api_key: SendGrid API key (or from SENDGRID_API_KEY env var)
            from_email: Default sender email (or from NOTIFICATION_FROM_EMAIL env var)
            from_name: Default sender name (or from NOTIFICATION_FROM_NAME env var)
            timeout: Seconds before the request is abandoned
            http_client: Pre-built client (tests inject a MockTransport here)
        """
        self.api_key = api_key or os.getenv("SENDGRID_API_KEY")
        self.from_email = from_email or os.getenv(
            "NOTIFICATION_FROM_EMAIL", "notifications@example.com"
        )
        self.from_name = from_name or os.getenv(
            "NOTIFICATION_FROM_NAME", "Heirloom"
        )
        self.timeout = timeout
        self._http_client = http_client

        if not self.api_key:
            logger.warning("SendGrid API key not configured")

    def _build_payload(self, message: EmailMessage) -> dict:
        payload = {
            "personalizations": [
                {
                    "to": [{"email": message.to_email, "name": message.to_name or ""}],
                }
            ],
            "from": {
                "email": message.from_email or self.from_email,
                "name": message.from_name or self.from_name,
            },
            "subject": message.subject,
            "content": [
                {"type": "text/html", "value": message.html_body},
            ],
        }

        if message.text_body:
            payload["content"].insert(0, {"type": "text/plain", "value": message.text_body})

        if message.reply_to:
            payload["reply_to"] = {"email": message.reply_to}

        if message.tags:
            payload["categories"] = message.tags

        return payload

    def _post(self, client: httpx.Client, payload: dict) -> httpx.Response:
        return client.post(
            SENDGRID_SEND_URL,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json=payload,
        )

    def send(self, message: EmailMessage) -> SendResult:
        """Send email via SendGrid API."""
        if not self.api_key:
            logger.error("Cannot send email: SendGrid API key not configured")
            return SendResult(success=False, error="sendgrid_not_configured")

        payload = self._build_payload(message)

        try:
            if self._http_client is not None:
                response = self._post(self._http_client, payload)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = self._post(client, payload)
        except httpx.TimeoutException:
            logger.error(
                "SendGrid request timed out",
                extra={"to_email": message.to_email, "timeout": self.timeout},
            )
            return SendResult(success=False, error="timeout")
        except httpx.HTTPError as e:
            logger.error(
                "Failed to send email via SendGrid",
                extra={"to_email": message.to_email, "error": str(e)},
                exc_info=True,
            )
            return SendResult(success=False, error=str(e))

        if response.status_code in (200, 202):
            logger.info(
                "Email sent successfully",
                extra={"to_email": message.to_email, "subject": message.subject},
            )
            return SendResult(success=True)

        logger.error(
            "SendGrid API error",
            extra={
                "status_code": response.status_code,
                "response": response.text,
                "to_email": message.to_email,
            },
        )
        return SendResult(success=False, error=f"sendgrid_status_{response.status_code}")


class SMTPEmailSender(EmailSender):
    """SMTP email sender for development/testing."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.host = host or os.getenv("SMTP_HOST", "localhost")
        self.port = port or int(os.getenv("SMTP_PORT", "587"))
        self.username = username or os.getenv("SMTP_USERNAME")
        self.password = password or os.getenv("SMTP_PASSWORD")
        self.use_tls = use_tls
        self.from_email = from_email or os.getenv(
            "NOTIFICATION_FROM_EMAIL", "notifications@example.com"
        )
        self.from_name = from_name or os.getenv(
            "NOTIFICATION_FROM_NAME", "Heirloom"
        )
        self.timeout = timeout

    def send(self, message: EmailMessage) -> SendResult:
        """Send email via SMTP."""
        from_email = message.from_email or self.from_email
        from_name = message.from_name or self.from_name

        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = f"{from_name} <{from_email}>"
        msg["To"] = message.to_email

        if message.reply_to:
            msg["Reply-To"] = message.reply_to

        if message.text_body:
            msg.attach(MIMEText(message.text_body, "plain", "utf-8"))
        msg.attach(MIMEText(message.html_body, "html", "utf-8"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.sendmail(from_email, [message.to_email], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "Failed to send email via SMTP",
                extra={"to_email": message.to_email, "error": str(e)},
                exc_info=True,
            )
            return SendResult(success=False, error=str(e))

        logger.info(
            "Email sent via SMTP",
            extra={"to_email": message.to_email, "subject": message.subject},
        )
        return SendResult(success=True)


@dataclass
class MockEmailSender(EmailSender):
    """Mock email sender for testing."""
    sent_messages: List[EmailMessage] = field(default_factory=list)
    # Recipients whose sends fail, to exercise failure paths
    failing_recipients: Set[str] = field(default_factory=set)

    def send(self, message: EmailMessage) -> SendResult:
        """Record email in sent_messages list."""
        if message.to_email in self.failing_recipients:
            return SendResult(success=False, error="mock_failure")
        self.sent_messages.append(message)
        logger.info(
            "Mock email sent",
            extra={"to_email": message.to_email, "subject": message.subject},
        )
        return SendResult(success=True)

    def clear(self) -> None:
        """Clear sent messages."""
        self.sent_messages.clear()


def get_email_sender(timeout: float = DEFAULT_TIMEOUT_SECONDS) -> EmailSender:
    """
    Get configured email sender based on NOTIFICATION_EMAIL_PROVIDER.

    Returns:
        Appropriate EmailSender implementation
    """
    provider = os.getenv("NOTIFICATION_EMAIL_PROVIDER", "sendgrid").lower()

    if provider == "smtp":
        return SMTPEmailSender(timeout=timeout)
    elif provider == "mock":
        return MockEmailSender()
    else:
        return SendGridEmailSender(timeout=timeout)

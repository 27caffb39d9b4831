"""
Transactional email boundary.

Business code builds an EmailMessage and hands it to an EmailSender. The
production sender posts to the Resend HTTP API; when no API key is set
outside production, a logging sender records the message instead.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol
from uuid import uuid4

import httpx

from magicpaws.core.config import settings
from magicpaws.core.errors import UpstreamError

logger = logging.getLogger("magicpaws")


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    reply_to: Optional[str] = None


class EmailSender(Protocol):
    def send(self, message: EmailMessage) -> str:
        """Deliver the message and return the provider message id."""
        ...


class EmailDeliveryError(UpstreamError):
    """The email provider refused the message or could not be reached."""

    def __init__(self, message: str, *, transient: bool = False, **kwargs):
        super().__init__(message, provider="resend", transient=transient, **kwargs)


class ResendEmailSender:
    """Sends through the Resend REST API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        api_url: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key or settings.RESEND_API_KEY
        if not self.api_key:
            raise EmailDeliveryError("RESEND_API_KEY not configured")
        self.api_url = api_url or settings.RESEND_API_URL
        self.sender = sender or settings.EMAIL_FROM
        self.timeout = timeout or settings.EMAIL_TIMEOUT_SECONDS
        self._client = client

    def _post(self, payload: dict) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self._client is not None:
            return self._client.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(self.api_url, json=payload, headers=headers)

    def send(self, message: EmailMessage) -> str:
        payload = {
            "from": self.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        reply_to = message.reply_to or settings.EMAIL_REPLY_TO
        if reply_to:
            payload["reply_to"] = reply_to

        try:
            response = self._post(payload)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise EmailDeliveryError(f"Email send timed out: {e}", transient=True)
        except httpx.HTTPStatusError as e:
            raise EmailDeliveryError(
                f"Email provider returned {e.response.status_code}",
                transient=e.response.status_code >= 500,
            )
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Email send failed: {e}", transient=True)

        body = response.json() if response.content else {}
        return body.get("id") or ""


class LoggingEmailSender:
    """Development sender: logs instead of delivering."""

    def __init__(self):
        self.sent = []

    def send(self, message: EmailMessage) -> str:
        message_id = f"dev-{uuid4().hex[:12]}"
        self.sent.append(message)
        logger.info("email.dev_send", extra={"to": message.to, "subject": message.subject, "message_id": message_id})
        return message_id


def get_email_sender() -> EmailSender:
    """
    Sender for the current environment.

    Raises:
        EmailDeliveryError: production without RESEND_API_KEY
    """
    if settings.RESEND_API_KEY:
        return ResendEmailSender()
    if (settings.ENV or "").lower() == "production":
        raise EmailDeliveryError("RESEND_API_KEY not configured")
    return LoggingEmailSender()

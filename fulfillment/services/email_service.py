"""
Email Service - order confirmation e-mails over the SendGrid v3 API.
"""

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from fulfillment.config import settings

logger = logging.getLogger(__name__)

SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


@dataclass
class Attachment:
    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str
    attachments: List[Attachment] = field(default_factory=list)


@dataclass
class SendResult:
    success: bool
    error: Optional[str] = None
    message_id: Optional[str] = None


class EmailTransport(ABC):
    """Outbound e-mail. send() reports failure instead of raising."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> SendResult:
        ...


class SendGridTransport(EmailTransport):
    """Service for sending e-mail via the SendGrid API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.sendgrid_api_key
        self.timeout = timeout or settings.email_timeout_seconds
        self.transport = transport

    def _payload(self, message: EmailMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "personalizations": [{"to": [{"email": message.to}]}],
            "from": {"email": settings.email_from_address, "name": settings.email_from_name},
            "reply_to": {"email": settings.support_email},
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.text},
                {"type": "text/html", "value": message.html},
            ],
        }
        if message.attachments:
            payload["attachments"] = [
                {
                    "content": base64.b64encode(a.content).decode("ascii"),
                    "type": a.content_type,
                    "filename": a.filename,
                    "disposition": "attachment",
                }
                for a in message.attachments
            ]
        return payload

    async def send(self, message: EmailMessage) -> SendResult:
        if not self.api_key:
            logger.error("SendGrid API key not configured")
            return SendResult(success=False, error="Email service not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    SENDGRID_API_URL,
                    json=self._payload(message),
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException:
            logger.error("SendGrid request timeout")
            return SendResult(success=False, error="Email service timed out")
        except httpx.HTTPError as e:
            logger.error(f"SendGrid send error: {e}")
            return SendResult(success=False, error=str(e))

        if response.status_code >= 400:
            logger.error(f"SendGrid HTTP error: {response.status_code} {response.text}")
            return SendResult(success=False, error=f"SendGrid returned {response.status_code}")

        return SendResult(success=True, message_id=response.headers.get("X-Message-Id"))


def render_order_confirmation(
    order_id: str,
    email: str,
    total: Decimal,
    currency: str,
    downloads: List[Dict[str, Any]],
    attachment_names: List[str],
) -> EmailMessage:
    """Build the confirmation e-mail for a completed order."""
    context = {
        "order_ref": order_id[:8].upper(),
        "total": f"{Decimal(total):.2f}",
        "currency": currency,
        "downloads": downloads,
        "attachment_names": attachment_names,
        "max_downloads": settings.download_max_count,
        "ttl_days": settings.download_ttl_days,
        "site_url": settings.site_url,
        "support_email": settings.support_email,
        "shop_name": settings.email_from_name,
    }
    return EmailMessage(
        to=email,
        subject=f"Your {settings.email_from_name} order #{context['order_ref']}",
        html=_env.get_template("order_confirmation.html").render(**context),
        text=_env.get_template("order_confirmation.txt").render(**context),
    )

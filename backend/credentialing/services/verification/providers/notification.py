"""
Notification providers: SendGrid (email) and Twilio (WhatsApp).

Both talk to the vendors' REST APIs through requests. Delivery failures are
returned as NotificationResult(success=False), never raised.
"""
import logging
import re
from typing import Optional, Protocol

import requests
from bs4 import BeautifulSoup

from ....models.verification import NotificationChannel, NotificationPayload, NotificationResult
from ...taxid import mask_email, mask_phone

logger = logging.getLogger(__name__)


class NotificationProvider(Protocol):
    name: str
    channel: NotificationChannel

    def is_available(self) -> bool:
        ...

    def send(self, payload: NotificationPayload) -> NotificationResult:
        ...


def strip_html(content: str) -> str:
    """Plain-text alternative for an HTML email body."""
    soup = BeautifulSoup(content or "", "html.parser")
    for tag in soup(["style", "script"]):
        tag.decompose()
    return soup.get_text(" ", strip=True)


class SendGridProvider:
    name = "SENDGRID"
    channel = NotificationChannel.EMAIL

    API_URL = "https://api.sendgrid.com/v3/mail/send"

    def __init__(
        self,
        api_key: Optional[str],
        from_email: str,
        from_name: str,
        timeout: int = 30,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.api_key)

    def send(self, payload: NotificationPayload) -> NotificationResult:
        logger.info(f"[{self.name}] Sending email to {mask_email(payload.to)}")
        html = payload.html_content or payload.content
        message = {
            "personalizations": [{"to": [{"email": payload.to}]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": payload.subject or "",
            "content": [
                {"type": "text/plain", "value": strip_html(payload.content)},
                {"type": "text/html", "value": html},
            ],
        }
        if payload.metadata:
            message["custom_args"] = {k: str(v) for k, v in payload.metadata.items()}

        try:
            response = requests.post(
                self.API_URL,
                json=message,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"[{self.name}] Email delivery failed: {e}")
            return NotificationResult(success=False, provider=self.name, channel=self.channel, error=str(e))

        message_id = response.headers.get("X-Message-Id")
        logger.info(f"[{self.name}] Email accepted. Message ID: {message_id}")
        return NotificationResult(
            success=True, provider=self.name, channel=self.channel, message_id=message_id,
        )


class TwilioWhatsAppProvider:
    name = "TWILIO_WHATSAPP"
    channel = NotificationChannel.WHATSAPP

    API_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

    def __init__(
        self,
        account_sid: Optional[str],
        auth_token: Optional[str],
        from_number: Optional[str],
        timeout: int = 30,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    @staticmethod
    def _whatsapp_address(number: str) -> str:
        if number.startswith("whatsapp:"):
            return number
        digits = re.sub(r"\D", "", number)
        return f"whatsapp:+{digits}"

    def send(self, payload: NotificationPayload) -> NotificationResult:
        logger.info(f"[{self.name}] Sending WhatsApp to {mask_phone(payload.to)}")
        try:
            response = requests.post(
                self.API_URL.format(sid=self.account_sid),
                data={
                    "From": self._whatsapp_address(self.from_number),
                    "To": self._whatsapp_address(payload.to),
                    "Body": payload.content,
                },
                auth=(self.account_sid, self.auth_token),
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"[{self.name}] WhatsApp delivery failed: {e}")
            return NotificationResult(success=False, provider=self.name, channel=self.channel, error=str(e))

        return NotificationResult(
            success=True, provider=self.name, channel=self.channel, message_id=body.get("sid"),
        )

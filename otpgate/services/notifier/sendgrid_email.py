"""SendGrid email notifier"""
import logging
from typing import Optional

import httpx

from ...core.config import settings
from ...models.enums import Channel, OtpPurpose
from ...utils.contact import mask_contact
from .base import Notifier, PURPOSE_SUBJECTS, render_message

logger = logging.getLogger(__name__)


class SendGridEmailNotifier(Notifier):

    SENDGRID_API_URL = "https://api.sendgrid.com/v3/mail/send"

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None):
        self.api_key = settings.SENDGRID_API_KEY
        self.from_email = settings.EMAIL_FROM
        self.from_name = settings.EMAIL_FROM_NAME
        self.timeout = timeout or settings.NOTIFIER_TIMEOUT_SECONDS
        self.transport = transport

    def send(self, contact: str, code: str, channel: Channel, purpose: OtpPurpose) -> bool:
        if channel != Channel.EMAIL:
            logger.error(f"[Notifier][SendGrid] Cannot send {channel.value} code by email")
            return False
        if not self.api_key:
            logger.error("[Notifier][SendGrid] No API key configured")
            return False

        payload = {
            "personalizations": [{"to": [{"email": contact}]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": PURPOSE_SUBJECTS[purpose],
            "content": [
                {"type": "text/plain", "value": render_message(code, purpose, settings.OTP_EXPIRE_MINUTES)},
            ],
        }

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(
                    self.SENDGRID_API_URL,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"[Notifier][SendGrid] Request to SendGrid failed: {e}")
            return False

        if response.status_code in (200, 201, 202):
            logger.info(f"[Notifier][SendGrid] Sent to {mask_contact(contact)}")
            return True
        logger.error(f"[Notifier][SendGrid] Failed: {response.status_code} - {response.text}")
        return False

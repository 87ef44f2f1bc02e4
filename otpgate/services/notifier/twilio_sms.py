"""Twilio SMS notifier"""
import logging
from typing import Optional

from twilio.base.exceptions import TwilioException
from twilio.http.http_client import TwilioHttpClient
from twilio.rest import Client

from ...core.config import settings
from ...models.enums import Channel, OtpPurpose
from ...utils.contact import mask_contact
from .base import Notifier, render_message

logger = logging.getLogger(__name__)


class TwilioSMSNotifier(Notifier):
    """Sends codes by SMS from OTP_FROM_NUMBER."""

    def __init__(self, timeout: Optional[float] = None):
        if not settings.TWILIO_ACCOUNT_SID or not settings.TWILIO_AUTH_TOKEN:
            raise ValueError("Twilio credentials not configured")
        if not settings.OTP_FROM_NUMBER:
            raise ValueError("OTP_FROM_NUMBER not configured for SMS notifier")

        http_client = TwilioHttpClient(timeout=timeout or settings.NOTIFIER_TIMEOUT_SECONDS)
        self.client = Client(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN, http_client=http_client)
        self.from_number = settings.OTP_FROM_NUMBER

    def send(self, contact: str, code: str, channel: Channel, purpose: OtpPurpose) -> bool:
        if channel != Channel.PHONE:
            logger.error(f"[Notifier][Twilio] Cannot send {channel.value} code by SMS")
            return False

        try:
            message = self.client.messages.create(
                body=render_message(code, purpose, settings.OTP_EXPIRE_MINUTES),
                from_=self.from_number,
                to=contact,
            )
            logger.info(f"[Notifier][Twilio] SMS sent to {mask_contact(contact)}, sid={message.sid}")
            return True
        except TwilioException as e:
            logger.error(f"[Notifier][Twilio] Failed to send SMS to {mask_contact(contact)}: {e}")
            return False
        except Exception as e:
            logger.exception(f"[Notifier][Twilio] Unexpected error sending SMS: {e}")
            return False

"""Notifier factory - returns the configured notifier"""
import logging
from typing import Optional

from ...core.config import settings
from .base import Notifier
from .console import ConsoleNotifier
from .routing import RoutingNotifier
from .sendgrid_email import SendGridEmailNotifier
from .twilio_sms import TwilioSMSNotifier

logger = logging.getLogger(__name__)

_notifier_instance: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """Get configured notifier instance."""
    global _notifier_instance

    if _notifier_instance is None:
        provider = settings.NOTIFIER_PROVIDER.lower()

        if provider == "twilio":
            _notifier_instance = RoutingNotifier(sms=TwilioSMSNotifier(), email=ConsoleNotifier())
        elif provider == "sendgrid":
            _notifier_instance = RoutingNotifier(sms=ConsoleNotifier(), email=SendGridEmailNotifier())
        elif provider == "routing":
            _notifier_instance = RoutingNotifier(sms=TwilioSMSNotifier(), email=SendGridEmailNotifier())
        else:
            _notifier_instance = ConsoleNotifier()
        logger.info(f"[Notifier] Using {type(_notifier_instance).__name__} (provider: {provider})")

    return _notifier_instance


def reset_notifier():
    """Drop the cached notifier so the next call re-reads settings."""
    global _notifier_instance
    _notifier_instance = None

"""Console notifier for local development"""
import logging

from ...core.config import is_local_env
from ...models.enums import Channel, OtpPurpose
from ...utils.contact import mask_contact
from .base import Notifier, render_message

logger = logging.getLogger(__name__)


class ConsoleNotifier(Notifier):
    """Logs codes instead of sending them. Codes are only printed in local envs."""

    def send(self, contact: str, code: str, channel: Channel, purpose: OtpPurpose) -> bool:
        if is_local_env():
            logger.info(f"[Notifier][Console] {channel.value} to {mask_contact(contact)}: {render_message(code, purpose)}")
        else:
            logger.info(f"[Notifier][Console] {channel.value} to {mask_contact(contact)} ({purpose.value})")
        return True

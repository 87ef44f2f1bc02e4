from ...models.enums import Channel, OtpPurpose
from .base import Notifier


class RoutingNotifier(Notifier):
    """Dispatches phone codes to the SMS notifier and email codes to the email notifier."""

    def __init__(self, sms: Notifier, email: Notifier):
        self.sms = sms
        self.email = email

    def send(self, contact: str, code: str, channel: Channel, purpose: OtpPurpose) -> bool:
        target = self.sms if channel == Channel.PHONE else self.email
        return target.send(contact, code, channel, purpose)

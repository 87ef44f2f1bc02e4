"""Notifier interface for OTP delivery"""
from abc import ABC, abstractmethod

from ...models.enums import Channel, OtpPurpose

PURPOSE_SUBJECTS = {
    OtpPurpose.REGISTRATION: "Verify your account",
    OtpPurpose.LOGIN: "Your login code",
    OtpPurpose.PASSWORD_RESET: "Reset your password",
    OtpPurpose.CONTACT_VERIFICATION: "Verify your contact details",
}


def render_message(code: str, purpose: OtpPurpose, expiry_minutes: int = 10) -> str:
    return f"{PURPOSE_SUBJECTS[purpose]}: {code}. This code expires in {expiry_minutes} minutes."


class Notifier(ABC):
    """
    Delivers an OTP to a contact.

    Implementations must bound their network calls with a timeout and report
    failure by returning False rather than raising.
    """

    @abstractmethod
    def send(self, contact: str, code: str, channel: Channel, purpose: OtpPurpose) -> bool:
        """
        Send a code to an email address or E.164 phone number.

        Returns:
            True if the provider accepted the message
        """
        pass

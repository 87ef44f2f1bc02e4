"""
Contact normalization, channel detection and display masking.
"""
import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat
from email_validator import validate_email, EmailNotValidError

from ..models.enums import Channel


def normalize_phone(phone: str, default_region: str = "US") -> str:
    """
    Normalize phone number to E.164 format.

    Raises:
        ValueError: If phone number is invalid
    """
    try:
        parsed = phonenumbers.parse(phone, default_region)
    except NumberParseException as e:
        raise ValueError(f"Invalid phone number format: {str(e)}")

    if not phonenumbers.is_valid_number(parsed):
        raise ValueError("Invalid phone number")

    return phonenumbers.format_number(parsed, PhoneNumberFormat.E164)


def normalize_email(email: str) -> str:
    """Lowercased, syntax-checked email address. Raises ValueError if invalid."""
    try:
        validated = validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValueError(f"Invalid email address: {str(e)}")
    return validated.normalized.lower()


def detect_channel(identifier: str) -> Channel:
    return Channel.EMAIL if "@" in identifier else Channel.PHONE


def normalize_contact(contact: str, channel: Channel, default_region: str = "US") -> str:
    if channel == Channel.EMAIL:
        return normalize_email(contact)
    return normalize_phone(contact, default_region)


def get_phone_last4(phone: str) -> str:
    digits = "".join(filter(str.isdigit, phone))
    return digits[-4:] if len(digits) >= 4 else digits


def mask_contact(contact: str) -> str:
    """
    Safe display form of a contact.

    Emails keep the first character of the local part (a***@x.com),
    phones keep the last four digits (***1234).
    """
    if not contact:
        return ""
    if "@" in contact:
        local, _, domain = contact.partition("@")
        return f"{local[:1]}***@{domain}"
    return f"***{get_phone_last4(contact)}"

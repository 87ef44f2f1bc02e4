from enum import Enum


class Channel(str, Enum):
    EMAIL = "EMAIL"
    PHONE = "PHONE"


class OtpPurpose(str, Enum):
    REGISTRATION = "REGISTRATION"
    LOGIN = "LOGIN"
    PASSWORD_RESET = "PASSWORD_RESET"
    CONTACT_VERIFICATION = "CONTACT_VERIFICATION"


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PENDING_DELETION = "PENDING_DELETION"
    # Reported by Account.effective_status only, never stored
    SUSPENDED = "SUSPENDED"
    DELETED = "DELETED"


class DeletionMode(str, Enum):
    ALL = "ALL"
    STATUS_ONLY = "STATUS_ONLY"


class TicketStatus(str, Enum):
    PENDING_DELETION = "PENDING_DELETION"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"

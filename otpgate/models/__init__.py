from .enums import AccountStatus, Channel, DeletionMode, OtpPurpose, TicketStatus
from .otp_record import OtpRecord
from .staged_registration import StagedRegistration
from .account import Account, PASSWORD_HISTORY_SIZE
from .deletion_ticket import DeletionTicket

__all__ = [
    "Account",
    "AccountStatus",
    "Channel",
    "DeletionMode",
    "DeletionTicket",
    "OtpPurpose",
    "OtpRecord",
    "PASSWORD_HISTORY_SIZE",
    "StagedRegistration",
    "TicketStatus",
]

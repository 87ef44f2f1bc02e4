from datetime import datetime
from typing import Optional
from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON
from sqlalchemy.orm import relationship
from ..db import Base
from ..core.clock import utcnow
from ..core.uuid_type import UUIDType, generate_uuid
from .enums import AccountStatus, Channel

PASSWORD_HISTORY_SIZE = 4


class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True)
    public_id = Column(UUIDType, unique=True, nullable=False, index=True, default=generate_uuid)  # JWT sub
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    phone = Column(String, nullable=False, unique=True, index=True)  # E.164
    email_verified = Column(Boolean, nullable=False, default=False)
    phone_verified = Column(Boolean, nullable=False, default=False)
    email_primary = Column(Boolean, nullable=False, default=False)
    phone_primary = Column(Boolean, nullable=False, default=False)

    password_hash = Column(String, nullable=True)  # cleared when scrubbed
    password_history = Column(JSON, nullable=False, default=list)  # newest first

    active = Column(Boolean, nullable=False, default=True)
    logged_in = Column(Boolean, nullable=False, default=False)
    suspended_until = Column(DateTime, nullable=True)
    suspension_reason = Column(String(500), nullable=True)

    # Deletion lifecycle only: ACTIVE, PENDING_DELETION, DELETED
    account_status = Column(String(32), nullable=False, default=AccountStatus.ACTIVE.value, index=True)

    origin_registration_id = Column(String(64), nullable=True, unique=True)
    origin_otp_hash = Column(String, nullable=True)  # code that promoted the registration; checked on retried confirms
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=True, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime, nullable=True)

    deletion_tickets = relationship("DeletionTicket", back_populates="account")

    def is_suspended(self, now: Optional[datetime] = None) -> bool:
        if self.suspended_until is None:
            return False
        return (now or utcnow()) < self.suspended_until

    @property
    def is_deleted(self) -> bool:
        return self.account_status == AccountStatus.DELETED.value

    @property
    def is_pending_deletion(self) -> bool:
        return self.account_status == AccountStatus.PENDING_DELETION.value

    def effective_status(self, now: Optional[datetime] = None) -> AccountStatus:
        status = AccountStatus(self.account_status)
        if status == AccountStatus.ACTIVE and self.is_suspended(now):
            return AccountStatus.SUSPENDED
        return status

    def contact_for(self, channel: Channel) -> str:
        return self.email if channel == Channel.EMAIL else self.phone

    def is_verified(self, channel: Channel) -> bool:
        return self.email_verified if channel == Channel.EMAIL else self.phone_verified

    def mark_verified(self, channel: Channel) -> None:
        if channel == Channel.EMAIL:
            self.email_verified = True
        else:
            self.phone_verified = True

    def set_primary(self, channel: Channel) -> None:
        self.email_primary = channel == Channel.EMAIL
        self.phone_primary = channel == Channel.PHONE

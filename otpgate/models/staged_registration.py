from sqlalchemy import Column, String, Integer, Boolean, DateTime
from ..db import Base
from ..core.clock import utcnow


class StagedRegistration(Base):
    """
    Account data awaiting OTP confirmation.

    Carries its own copy of the OTP so it can expire independently of the
    daily ledger. Unique email and phone keep one staged row per contact pair.
    """

    __tablename__ = "staged_registrations"

    registration_id = Column(String(64), primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String, nullable=False, unique=True)
    phone = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    channel = Column(String(16), nullable=False)
    otp_code_hash = Column(String, nullable=True)
    otp_expires_at = Column(DateTime, nullable=True, index=True)
    otp_attempts = Column(Integer, nullable=False, default=0)
    verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    @property
    def contact(self) -> str:
        return self.email if self.channel == "EMAIL" else self.phone

from sqlalchemy import Column, String, Integer, Boolean, DateTime, UniqueConstraint
from ..db import Base
from ..core.clock import utcnow
from ..core.uuid_type import UUIDType, generate_uuid


class OtpRecord(Base):
    """One row per contact per UTC day. Resends overwrite the code in place."""

    __tablename__ = "otp_records"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    contact = Column(String, nullable=False, index=True)  # E.164 phone or lowercased email
    day = Column(String(10), nullable=False)  # YYYY-MM-DD
    channel = Column(String(16), nullable=False)
    purpose = Column(String(32), nullable=False)
    code_hash = Column(String, nullable=False)
    attempts_today = Column(Integer, nullable=False, default=1)
    verify_attempts = Column(Integer, nullable=False, default=0)  # wrong guesses against the current code
    expires_at = Column(DateTime, nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    verification_id = Column(String(64), nullable=True, unique=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("contact", "day", name="uq_otp_records_contact_day"),
    )

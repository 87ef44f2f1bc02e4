from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from ..db import Base
from ..core.clock import utcnow
from ..core.uuid_type import UUIDType, generate_uuid


class DeletionTicket(Base):
    __tablename__ = "deletion_tickets"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    mode = Column(String(16), nullable=False)  # ALL, STATUS_ONLY
    reason = Column(String(500), nullable=False)
    scheduled_for = Column(DateTime, nullable=False, index=True)
    status = Column(String(32), nullable=False, default="PENDING_DELETION", index=True)
    cancelled_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    account = relationship("Account", back_populates="deletion_tickets")

    __table_args__ = (
        # At most one pending ticket per account
        Index(
            "uq_deletion_tickets_pending_account",
            "account_id",
            unique=True,
            sqlite_where=text("status = 'PENDING_DELETION'"),
            postgresql_where=text("status = 'PENDING_DELETION'"),
        ),
    )

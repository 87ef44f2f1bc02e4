"""
Deletion ledger and sweep.

Tickets are queried directly so the sweep never scans accounts. Each due
ticket is processed in its own transaction: the ticket is claimed with a
conditional UPDATE on status, so a login that cancels the same ticket and the
sweep cannot both win.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..core.clock import resolve_now
from ..core.config import IdentityConfig
from ..models import Account, AccountStatus, DeletionMode, DeletionTicket, TicketStatus
from .audit import AuditService

logger = logging.getLogger(__name__)

DELETED_FIRST_NAME = "Deleted"
DELETED_LAST_NAME = "User"


@dataclass
class SweepFailure:
    ticket_id: str
    account_id: int
    error: str


@dataclass
class SweepSummary:
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    failures: List[SweepFailure] = field(default_factory=list)


@dataclass
class DeletionStats:
    pending: int
    cancelled: int
    completed: int
    due_now: int

    @property
    def total(self) -> int:
        return self.pending + self.cancelled + self.completed


def anonymize_account(account: Account, now: datetime) -> None:
    """Replace PII with placeholders. The account id and public_id survive so references still resolve."""
    account.first_name = DELETED_FIRST_NAME
    account.last_name = DELETED_LAST_NAME
    account.email = f"deleted_{account.public_id}@deleted.local"
    account.phone = f"deleted_{account.public_id}"
    account.email_verified = False
    account.phone_verified = False
    account.email_primary = False
    account.phone_primary = False
    account.password_hash = None
    account.origin_otp_hash = None
    account.password_history = []
    account.active = False
    account.logged_in = False
    account.suspended_until = None
    account.suspension_reason = None
    account.account_status = AccountStatus.DELETED.value
    account.deleted_at = now


def mark_deleted(account: Account, now: datetime) -> None:
    account.account_status = AccountStatus.DELETED.value
    account.logged_in = False
    account.deleted_at = now


class DeletionService:

    def __init__(self, config: IdentityConfig):
        self.config = config

    def due_tickets(self, db: Session, as_of: Optional[datetime] = None) -> List[DeletionTicket]:
        """Pending tickets due at `as_of`, oldest first."""
        as_of = resolve_now(as_of)
        return (
            db.query(DeletionTicket)
            .filter(
                DeletionTicket.status == TicketStatus.PENDING_DELETION.value,
                DeletionTicket.scheduled_for <= as_of,
            )
            .order_by(DeletionTicket.scheduled_for.asc())
            .all()
        )

    def _claim(self, db: Session, ticket_id: str, now: datetime) -> bool:
        result = db.execute(
            update(DeletionTicket)
            .where(
                DeletionTicket.id == ticket_id,
                DeletionTicket.status == TicketStatus.PENDING_DELETION.value,
            )
            .values(status=TicketStatus.COMPLETED.value, completed_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    def _process_ticket(self, db: Session, ticket_id: str, account_id: int, mode: str, now: datetime) -> bool:
        """Returns False if the ticket was no longer pending."""
        if not self._claim(db, ticket_id, now):
            return False

        account = db.query(Account).filter(Account.id == account_id).populate_existing().first()
        if account is None:
            logger.info(f"[Deletion] Account {account_id} for ticket {ticket_id} no longer exists")
        elif mode == DeletionMode.ALL.value:
            anonymize_account(account, now)
        else:
            mark_deleted(account, now)
        db.commit()
        if account is not None:
            AuditService.log_deletion(account.public_id, "completed", mode=mode)
        return True

    def sweep(self, db: Session, as_of: Optional[datetime] = None) -> SweepSummary:
        """
        Finalize every due ticket. One ticket failing never stops the others.
        """
        as_of = resolve_now(as_of)
        due = [(t.id, t.account_id, t.mode) for t in self.due_tickets(db, as_of)]
        logger.info(f"[Deletion] Sweep found {len(due)} due tickets as of {as_of.isoformat()}")

        summary = SweepSummary()
        for ticket_id, account_id, mode in due:
            try:
                if self._process_ticket(db, ticket_id, account_id, mode, as_of):
                    summary.processed += 1
                else:
                    summary.skipped += 1
                    logger.info(f"[Deletion] Ticket {ticket_id} was cancelled before the sweep reached it")
            except Exception as e:
                db.rollback()
                summary.failed += 1
                summary.failures.append(SweepFailure(ticket_id=ticket_id, account_id=account_id, error=str(e)))
                logger.exception(f"[Deletion] Failed to process ticket {ticket_id} for account {account_id}: {e}")

        logger.info(
            f"[Deletion] Sweep complete: {summary.processed} processed, "
            f"{summary.failed} failed, {summary.skipped} skipped"
        )
        return summary

    def purge_old_tickets(
        self,
        db: Session,
        retention_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Delete COMPLETED tickets whose completion is older than the retention window."""
        now = resolve_now(now)
        if retention_days is None:
            retention_days = self.config.deletion_retention_days
        cutoff = now - timedelta(days=retention_days)
        deleted = db.query(DeletionTicket).filter(
            DeletionTicket.status == TicketStatus.COMPLETED.value,
            DeletionTicket.completed_at < cutoff,
        ).delete(synchronize_session=False)
        db.commit()
        logger.info(f"[Deletion] Purged {deleted} completed tickets older than {retention_days} days")
        return deleted

    def deletion_stats(self, db: Session, now: Optional[datetime] = None) -> DeletionStats:
        now = resolve_now(now)
        counts: Dict[str, int] = dict(
            db.query(DeletionTicket.status, func.count(DeletionTicket.id))
            .group_by(DeletionTicket.status)
            .all()
        )
        due_now = db.query(func.count(DeletionTicket.id)).filter(
            DeletionTicket.status == TicketStatus.PENDING_DELETION.value,
            DeletionTicket.scheduled_for <= now,
        ).scalar()
        return DeletionStats(
            pending=counts.get(TicketStatus.PENDING_DELETION.value, 0),
            cancelled=counts.get(TicketStatus.CANCELLED.value, 0),
            completed=counts.get(TicketStatus.COMPLETED.value, 0),
            due_now=due_now or 0,
        )

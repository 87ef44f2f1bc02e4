"""
Deletion sweep job

Finalizes due deletion tickets and performs identity housekeeping. Meant to be
invoked by an external scheduler: `sweep` daily, `purge` weekly.

Run command:
    python -m otpgate.jobs.deletion_sweep sweep
    python -m otpgate.jobs.deletion_sweep purge --retention-days 30
    python -m otpgate.jobs.deletion_sweep housekeeping
    python -m otpgate.jobs.deletion_sweep stats
"""
import argparse
import logging
import sys
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.clock import resolve_now
from ..core.config import IdentityConfig, settings
from ..db import SessionLocal
from ..models import OtpRecord, StagedRegistration
from ..services.deletion_service import DeletionService, SweepSummary

logger = logging.getLogger(__name__)


def _deletion_service() -> DeletionService:
    return DeletionService(IdentityConfig.from_settings(settings))


def run_deletion_sweep(db: Session, as_of: Optional[datetime] = None) -> SweepSummary:
    return _deletion_service().sweep(db, as_of)


def run_ticket_purge(db: Session, retention_days: Optional[int] = None, now: Optional[datetime] = None) -> int:
    return _deletion_service().purge_old_tickets(db, retention_days, now)


def run_housekeeping(db: Session, now: Optional[datetime] = None) -> Dict[str, int]:
    """
    Remove ephemeral identity state:
    - OTP ledger rows older than OTP_RETENTION_DAYS
    - staged registrations whose code window has lapsed
    """
    now = resolve_now(now)
    config = IdentityConfig.from_settings(settings)

    cutoff_day = (now - timedelta(days=config.otp_retention_days)).date().isoformat()
    deleted_otp = db.query(OtpRecord).filter(OtpRecord.day < cutoff_day).delete(synchronize_session=False)
    logger.info(f"Deleted {deleted_otp} otp_records older than {config.otp_retention_days} days")

    deleted_staged = db.query(StagedRegistration).filter(
        StagedRegistration.otp_expires_at < now
    ).delete(synchronize_session=False)
    logger.info(f"Deleted {deleted_staged} expired staged_registrations")

    db.commit()
    return {"otp_records": deleted_otp, "staged_registrations": deleted_staged}


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Account deletion sweep and identity housekeeping")
    parser.add_argument("command", choices=["sweep", "purge", "housekeeping", "stats"])
    parser.add_argument("--retention-days", type=int, default=None, help="purge: keep completed tickets this long")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = _parse_args(argv)

    db = SessionLocal()
    try:
        if args.command == "sweep":
            summary = run_deletion_sweep(db)
            logger.info(f"Sweep: {summary.processed} processed, {summary.failed} failed, {summary.skipped} skipped")
            for failure in summary.failures:
                logger.warning(f"Ticket {failure.ticket_id} (account {failure.account_id}) failed: {failure.error}")
            return 1 if summary.failed else 0
        if args.command == "purge":
            purged = run_ticket_purge(db, args.retention_days)
            logger.info(f"Purge: {purged} completed tickets removed")
        elif args.command == "housekeeping":
            counts = run_housekeeping(db)
            logger.info(f"Housekeeping: {counts}")
        else:
            stats = _deletion_service().deletion_stats(db)
            logger.info(
                f"Deletion tickets: {stats.pending} pending ({stats.due_now} due), "
                f"{stats.cancelled} cancelled, {stats.completed} completed"
            )
        return 0
    except Exception as e:
        logger.error(f"Deletion job '{args.command}' failed: {e}", exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())

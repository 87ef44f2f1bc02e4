"""
Per-contact daily OTP ledger.

One OtpRecord per (contact, UTC day). Issuing a code inserts the day's row or
overwrites it in place; the daily counter is only ever bumped through a
conditional UPDATE so concurrent issuers cannot push it past the limit.

The ledger flushes but never commits. Callers own the transaction and roll it
back when delivery fails.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..core.clock import day_key, next_day_start, resolve_now
from ..core.config import IdentityConfig
from ..core.errors import Expired, InvalidOtp, MaxAttemptsReached, NotFound, OtpMismatch, RateLimitExceeded
from ..core.security import generate_otp_code, hash_password, verify_password
from ..db import insert_ignore
from ..models import Channel, OtpPurpose, OtpRecord
from ..core.uuid_type import generate_uuid
from ..utils.contact import mask_contact

logger = logging.getLogger(__name__)


@dataclass
class OtpIssue:
    """Everything a notifier needs to deliver a freshly issued code."""
    code: str
    code_hash: str
    expires_at: datetime
    attempts_today: int
    attempts_left: int
    verification_id: Optional[str] = None


@dataclass
class OtpVerification:
    contact: str
    channel: Channel
    purpose: OtpPurpose
    verification_id: Optional[str] = None


class OtpLedger:

    def __init__(self, config: IdentityConfig):
        self.config = config

    def _record_for_day(self, db: Session, contact: str, now: datetime) -> Optional[OtpRecord]:
        return (
            db.query(OtpRecord)
            .filter(OtpRecord.contact == contact, OtpRecord.day == day_key(now))
            .populate_existing()
            .first()
        )

    def has_reached_daily_limit(self, db: Session, contact: str, now: Optional[datetime] = None) -> bool:
        now = resolve_now(now)
        record = self._record_for_day(db, contact, now)
        return record is not None and record.attempts_today >= self.config.otp_daily_limit

    def attempts_left(self, db: Session, contact: str, now: Optional[datetime] = None) -> int:
        now = resolve_now(now)
        record = self._record_for_day(db, contact, now)
        used = record.attempts_today if record else 0
        return max(self.config.otp_daily_limit - used, 0)

    def issue(
        self,
        db: Session,
        contact: str,
        channel: Channel,
        purpose: OtpPurpose,
        verification_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OtpIssue:
        """
        Generate a code for contact and record it against today's ledger row.

        Raises:
            RateLimitExceeded: if the contact already used today's allowance
        """
        now = resolve_now(now)
        day = day_key(now)
        code = generate_otp_code(self.config.otp_length)
        code_hash = hash_password(code)
        expires_at = now + self.config.otp_expiry
        limit = self.config.otp_daily_limit

        inserted = insert_ignore(
            db,
            OtpRecord,
            {
                "id": generate_uuid(),
                "contact": contact,
                "day": day,
                "channel": Channel(channel).value,
                "purpose": OtpPurpose(purpose).value,
                "code_hash": code_hash,
                "attempts_today": 1,
                "verify_attempts": 0,
                "expires_at": expires_at,
                "used": False,
                "verification_id": verification_id,
                "created_at": now,
                "updated_at": now,
            },
            ["contact", "day"],
        )

        if not inserted:
            # Compare-and-swap on attempts_today: only one issuer may take the last slot
            result = db.execute(
                update(OtpRecord)
                .where(
                    OtpRecord.contact == contact,
                    OtpRecord.day == day,
                    OtpRecord.attempts_today < limit,
                )
                .values(
                    channel=Channel(channel).value,
                    purpose=OtpPurpose(purpose).value,
                    code_hash=code_hash,
                    attempts_today=OtpRecord.attempts_today + 1,
                    verify_attempts=0,
                    expires_at=expires_at,
                    used=False,
                    verification_id=verification_id,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                logger.warning(f"[OTP] Daily limit reached for {mask_contact(contact)}")
                raise RateLimitExceeded(retry_at=next_day_start(now))

        db.flush()
        record = self._record_for_day(db, contact, now)
        attempts_today = record.attempts_today
        logger.info(f"[OTP] Issued {OtpPurpose(purpose).value} code for {mask_contact(contact)} ({attempts_today}/{limit} today)")

        return OtpIssue(
            code=code,
            code_hash=code_hash,
            expires_at=expires_at,
            attempts_today=attempts_today,
            attempts_left=max(limit - attempts_today, 0),
            verification_id=verification_id,
        )

    def _consume(
        self,
        db: Session,
        record: Optional[OtpRecord],
        code: str,
        purpose: Optional[OtpPurpose],
        now: datetime,
    ) -> OtpVerification:
        if record is None:
            raise NotFound("otp", message="No code was requested for this contact today")
        if record.used:
            raise InvalidOtp("Code has already been used")
        if now > record.expires_at:
            raise Expired("otp")
        if purpose is not None and record.purpose != OtpPurpose(purpose).value:
            raise InvalidOtp()
        if record.verify_attempts >= self.config.otp_max_verify_attempts:
            raise MaxAttemptsReached("Too many incorrect codes. Request a new one.")
        if not verify_password(code, record.code_hash):
            logger.info(f"[OTP] Invalid code for {mask_contact(record.contact)}")
            raise OtpMismatch(record.id, record.code_hash)

        result = db.execute(
            update(OtpRecord)
            .where(OtpRecord.id == record.id, OtpRecord.used.is_(False))
            .values(used=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # A concurrent verify consumed it first
            raise InvalidOtp("Code has already been used")
        db.flush()

        logger.info(f"[OTP] Verified code for {mask_contact(record.contact)}")
        return OtpVerification(
            contact=record.contact,
            channel=Channel(record.channel),
            purpose=OtpPurpose(record.purpose),
            verification_id=record.verification_id,
        )

    def verify(
        self,
        db: Session,
        contact: str,
        code: str,
        purpose: Optional[OtpPurpose] = None,
        now: Optional[datetime] = None,
    ) -> OtpVerification:
        """
        Consume today's code for contact. Succeeds at most once per issued code.

        Raises:
            NotFound: no code issued today
            InvalidOtp: mismatch, wrong purpose, or already used
            Expired: past expires_at
            MaxAttemptsReached: too many wrong guesses against this code
        """
        now = resolve_now(now)
        record = self._record_for_day(db, contact, now)
        return self._consume(db, record, code, purpose, now)

    def verify_by_correlation_id(
        self,
        db: Session,
        verification_id: str,
        code: str,
        now: Optional[datetime] = None,
    ) -> OtpVerification:
        now = resolve_now(now)
        record = (
            db.query(OtpRecord)
            .filter(OtpRecord.verification_id == verification_id)
            .populate_existing()
            .first()
        )
        return self._consume(db, record, code, OtpPurpose.CONTACT_VERIFICATION, now)

    def record_failed_attempt(self, db: Session, record_id: str, code_hash: str) -> bool:
        """
        Count one wrong guess against the code that was checked.

        Matching on code_hash leaves a row that was reissued in the meantime alone.
        """
        result = db.execute(
            update(OtpRecord)
            .where(OtpRecord.id == record_id, OtpRecord.code_hash == code_hash)
            .values(verify_attempts=OtpRecord.verify_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        db.flush()
        return result.rowcount > 0

"""
Staged registration: hold a candidate account until its contact is proven by OTP.

Staging replaces any earlier staged row for the same email or phone, issues a
code through the daily ledger and keeps a copy of it on the staged row so the
row can expire on its own. Confirming promotes the row into an Account in the
same transaction that deletes it.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.clock import next_day_start, resolve_now
from ..core.config import IdentityConfig
from ..core.errors import (
    AlreadyRegistered,
    Expired,
    IdentityError,
    Internal,
    InvalidOtp,
    InvalidRequest,
    MaxAttemptsReached,
    NotFound,
    OtpSendFailed,
    RateLimitExceeded,
)
from ..core.security import generate_registration_id, hash_password, verify_password
from ..db import atomic
from ..models import Account, AccountStatus, Channel, OtpPurpose, StagedRegistration
from ..utils.contact import mask_contact, normalize_email, normalize_phone
from .audit import AuditService
from .credential_issuer import CredentialIssuer
from .notifier import Notifier
from .otp_ledger import OtpLedger

logger = logging.getLogger(__name__)


@dataclass
class RegistrationProfile:
    first_name: str
    last_name: str
    email: str
    phone: str
    password: str


@dataclass
class StageResult:
    registration_id: str
    channel: Channel
    masked_contact: str
    expires_at: datetime
    attempts_today: int
    attempts_left: int


@dataclass
class RegistrationResult:
    account: Account
    token: str
    replayed: bool = False


class RegistrationService:

    def __init__(
        self,
        config: IdentityConfig,
        ledger: OtpLedger,
        notifier: Notifier,
        credentials: CredentialIssuer,
    ):
        self.config = config
        self.ledger = ledger
        self.notifier = notifier
        self.credentials = credentials

    def _normalize(self, email: str, phone: str):
        try:
            return normalize_email(email), normalize_phone(phone, self.config.default_phone_region)
        except ValueError as e:
            raise InvalidRequest(str(e))

    def _find_collision(self, db: Session, email: str, phone: str) -> Optional[str]:
        if db.query(Account.id).filter(Account.email == email).first():
            return "email"
        if db.query(Account.id).filter(Account.phone == phone).first():
            return "phone"
        return None

    def check_availability(self, db: Session, email: str, phone: str) -> None:
        """
        Raises:
            AlreadyRegistered: naming the contact field an account already holds
        """
        email, phone = self._normalize(email, phone)
        field = self._find_collision(db, email, phone)
        if field:
            raise AlreadyRegistered(field)

    def _replace_staged(self, db: Session, registration: StagedRegistration) -> StagedRegistration:
        """Delete staged rows for either contact and insert the new one; retried once on a unique-key race."""
        for attempt in range(2):
            db.query(StagedRegistration).filter(
                or_(
                    StagedRegistration.email == registration.email,
                    StagedRegistration.phone == registration.phone,
                )
            ).delete(synchronize_session=False)
            db.add(registration)
            try:
                db.flush()
                return registration
            except IntegrityError:
                db.rollback()
                if attempt:
                    raise
                logger.warning(f"[Registration] Concurrent staging for {mask_contact(registration.email)}, retrying")
                registration = StagedRegistration(
                    registration_id=generate_registration_id(),
                    first_name=registration.first_name,
                    last_name=registration.last_name,
                    email=registration.email,
                    phone=registration.phone,
                    password_hash=registration.password_hash,
                    channel=registration.channel,
                    created_at=registration.created_at,
                )
        return registration

    def _deliver(self, contact: str, code: str, channel: Channel) -> None:
        if not self.notifier.send(contact, code, channel, OtpPurpose.REGISTRATION):
            AuditService.log_otp_delivery_failed(contact, channel.value, OtpPurpose.REGISTRATION.value)
            raise OtpSendFailed()

    def stage(
        self,
        db: Session,
        profile: RegistrationProfile,
        channel: Channel,
        now: Optional[datetime] = None,
    ) -> StageResult:
        """
        Stage a registration and send its code to the chosen channel.

        Raises:
            AlreadyRegistered: an account already holds the email or phone
            RateLimitExceeded: the target contact used today's allowance
            OtpSendFailed: delivery failed; nothing was persisted
        """
        now = resolve_now(now)
        channel = Channel(channel)
        if not profile.password:
            raise InvalidRequest("Password is required")
        if not profile.first_name.strip() or not profile.last_name.strip():
            raise InvalidRequest("First and last name are required")

        email, phone = self._normalize(profile.email, profile.phone)
        field = self._find_collision(db, email, phone)
        if field:
            raise AlreadyRegistered(field)

        contact = email if channel == Channel.EMAIL else phone
        if self.ledger.has_reached_daily_limit(db, contact, now):
            AuditService.log_otp_rate_limited(contact, OtpPurpose.REGISTRATION.value)
            raise RateLimitExceeded(retry_at=next_day_start(now))

        registration = StagedRegistration(
            registration_id=generate_registration_id(),
            first_name=profile.first_name.strip(),
            last_name=profile.last_name.strip(),
            email=email,
            phone=phone,
            password_hash=hash_password(profile.password),
            channel=channel.value,
            otp_attempts=0,
            verified=False,
            created_at=now,
        )

        with atomic(db, "stage registration"):
            registration = self._replace_staged(db, registration)
            issue = self.ledger.issue(db, contact, channel, OtpPurpose.REGISTRATION, now=now)
            registration.otp_code_hash = issue.code_hash
            registration.otp_expires_at = issue.expires_at
            db.flush()
            self._deliver(contact, issue.code, channel)
            registration_id = registration.registration_id

        AuditService.log_otp_issued(contact, channel.value, OtpPurpose.REGISTRATION.value, issue.attempts_today)
        AuditService.log_registration_staged(contact, channel.value)
        return StageResult(
            registration_id=registration_id,
            channel=channel,
            masked_contact=mask_contact(contact),
            expires_at=issue.expires_at,
            attempts_today=issue.attempts_today,
            attempts_left=issue.attempts_left,
        )

    def _get_staged(self, db: Session, registration_id: str) -> Optional[StagedRegistration]:
        return (
            db.query(StagedRegistration)
            .filter(StagedRegistration.registration_id == registration_id)
            .populate_existing()
            .first()
        )

    def resend(self, db: Session, registration_id: str, now: Optional[datetime] = None) -> StageResult:
        """
        Re-issue the staged registration's code.

        Raises:
            NotFound, MaxAttemptsReached, Expired, RateLimitExceeded, OtpSendFailed
        """
        now = resolve_now(now)
        registration = self._get_staged(db, registration_id)
        if registration is None:
            raise NotFound("registration")
        if registration.otp_attempts >= self.config.registration_max_attempts:
            raise MaxAttemptsReached()
        if registration.otp_expires_at is None or now > registration.otp_expires_at:
            raise Expired("registration", message="Registration has expired. Please register again.")

        channel = Channel(registration.channel)
        contact = registration.contact
        if self.ledger.has_reached_daily_limit(db, contact, now):
            AuditService.log_otp_rate_limited(contact, OtpPurpose.REGISTRATION.value)
            raise RateLimitExceeded(retry_at=next_day_start(now))

        with atomic(db, "resend registration code"):
            issue = self.ledger.issue(db, contact, channel, OtpPurpose.REGISTRATION, now=now)
            registration.otp_code_hash = issue.code_hash
            registration.otp_expires_at = issue.expires_at
            db.flush()
            self._deliver(contact, issue.code, channel)

        AuditService.log_otp_issued(contact, channel.value, OtpPurpose.REGISTRATION.value, issue.attempts_today)
        return StageResult(
            registration_id=registration_id,
            channel=channel,
            masked_contact=mask_contact(contact),
            expires_at=issue.expires_at,
            attempts_today=issue.attempts_today,
            attempts_left=issue.attempts_left,
        )

    def _replayed_account(self, db: Session, registration_id: str, now: datetime) -> Optional[Account]:
        account = (
            db.query(Account)
            .filter(Account.origin_registration_id == registration_id)
            .populate_existing()
            .first()
        )
        if account is None or account.created_at < now - self.config.promotion_replay_window:
            return None
        return account

    def _replay(self, db: Session, registration_id: str, code: str, now: datetime) -> RegistrationResult:
        account = self._replayed_account(db, registration_id, now)
        if account is None:
            raise NotFound("registration")
        if not verify_password(code, account.origin_otp_hash):
            logger.info(f"[Registration] Invalid code on retried confirm for registration {registration_id[:6]}...")
            raise InvalidOtp()
        logger.info(f"[Registration] Returning account already created from registration {registration_id[:6]}...")
        AuditService.log_registration_confirmed(account.public_id, replayed=True)
        return RegistrationResult(account=account, token=self.credentials.issue(account, now), replayed=True)

    def confirm(
        self,
        db: Session,
        registration_id: str,
        code: str,
        now: Optional[datetime] = None,
    ) -> RegistrationResult:
        """
        Check the code against the staged copy and promote the registration.

        A retry with the same code after a successful promotion returns the
        account it created.

        Raises:
            NotFound, Expired, MaxAttemptsReached, InvalidOtp, AlreadyRegistered
        """
        now = resolve_now(now)
        registration = self._get_staged(db, registration_id)
        if registration is None:
            return self._replay(db, registration_id, code, now)

        if registration.otp_expires_at is None or now > registration.otp_expires_at:
            raise Expired("registration")
        if registration.otp_attempts >= self.config.registration_max_attempts:
            raise MaxAttemptsReached()

        if not verify_password(code, registration.otp_code_hash):
            with atomic(db, "record failed registration attempt"):
                db.execute(
                    update(StagedRegistration)
                    .where(StagedRegistration.registration_id == registration_id)
                    .values(otp_attempts=StagedRegistration.otp_attempts + 1)
                    .execution_options(synchronize_session=False)
                )
            logger.info(f"[Registration] Invalid code for registration {registration_id[:6]}...")
            raise InvalidOtp()

        channel = Channel(registration.channel)
        email, phone = registration.email, registration.phone
        account = Account(
            first_name=registration.first_name,
            last_name=registration.last_name,
            email=email,
            phone=phone,
            email_verified=channel == Channel.EMAIL,
            phone_verified=channel == Channel.PHONE,
            email_primary=channel == Channel.EMAIL,
            phone_primary=channel == Channel.PHONE,
            password_hash=registration.password_hash,
            password_history=[],
            active=True,
            logged_in=True,
            account_status=AccountStatus.ACTIVE.value,
            origin_registration_id=registration_id,
            origin_otp_hash=registration.otp_code_hash,
            created_at=now,
        )

        try:
            deleted = db.query(StagedRegistration).filter(
                StagedRegistration.registration_id == registration_id
            ).delete(synchronize_session=False)
            if deleted == 0:
                # Another confirm promoted it between our read and delete
                db.rollback()
                return self._replay(db, registration_id, code, now)
            db.add(account)
            db.flush()
            db.commit()
        except IntegrityError:
            db.rollback()
            if self._replayed_account(db, registration_id, now) is not None:
                return self._replay(db, registration_id, code, now)
            field = self._find_collision(db, email, phone) or "email"
            logger.warning(f"[Registration] {field} was registered while registration {registration_id[:6]}... was pending")
            raise AlreadyRegistered(field)
        except IdentityError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.exception(f"[Registration] Promotion failed: {e}")
            raise Internal() from e

        logger.info(f"[Registration] Promoted registration to account {account.public_id}")
        AuditService.log_registration_confirmed(account.public_id)
        return RegistrationResult(account=account, token=self.credentials.issue(account, now))

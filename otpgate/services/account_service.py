"""
Account state machine.

Stored `account_status` tracks the deletion lifecycle only
(ACTIVE -> PENDING_DELETION -> DELETED, with PENDING_DELETION -> ACTIVE on
cancel or successful login). Suspension is derived from `suspended_until`.
DELETED is terminal: every mutating operation refuses it.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.clock import as_naive_utc, next_day_start, resolve_now
from ..core.config import IdentityConfig
from ..core.errors import (
    AccountDeleted,
    AlreadyPending,
    AlreadySuspended,
    ContactAlreadyVerified,
    ContactNotVerified,
    Deactivated,
    DeliveryFailed,
    InvalidCredentials,
    InvalidPassword,
    InvalidRequest,
    NotFound,
    NotPending,
    NotSuspended,
    OtpMismatch,
    PasswordReused,
    RateLimitExceeded,
    SamePassword,
    Suspended,
)
from ..core.security import generate_verification_id, hash_password, verify_password
from ..db import atomic
from ..models import (
    PASSWORD_HISTORY_SIZE,
    Account,
    AccountStatus,
    Channel,
    DeletionMode,
    DeletionTicket,
    OtpPurpose,
    TicketStatus,
)
from ..utils.contact import detect_channel, mask_contact, normalize_contact
from .audit import AuditService
from .credential_issuer import CredentialIssuer
from .hooks import NoopResourceHook, ResourceHook, run_hook
from .notifier import Notifier
from .otp_ledger import OtpLedger

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500


@dataclass
class LoginResult:
    account: Account
    token: str
    deletion_cancelled: bool = False


@dataclass
class OtpChallenge:
    channel: Channel
    masked_contact: str
    expires_at: datetime
    attempts_left: int
    verification_id: Optional[str] = None


@dataclass
class SuspensionStatus:
    suspended: bool
    until: Optional[datetime] = None
    reason: Optional[str] = None


class AccountService:

    def __init__(
        self,
        config: IdentityConfig,
        ledger: OtpLedger,
        notifier: Notifier,
        credentials: CredentialIssuer,
        hook: Optional[ResourceHook] = None,
    ):
        self.config = config
        self.ledger = ledger
        self.notifier = notifier
        self.credentials = credentials
        self.hook = hook or NoopResourceHook()

    # Lookup

    def _normalize(self, contact: str, channel: Channel) -> str:
        try:
            return normalize_contact(contact, channel, self.config.default_phone_region)
        except ValueError as e:
            raise InvalidRequest(str(e))

    def _find_by_contact(self, db: Session, channel: Channel, contact: str) -> Optional[Account]:
        column = Account.email if channel == Channel.EMAIL else Account.phone
        return db.query(Account).filter(column == contact).populate_existing().first()

    def get_account(self, db: Session, public_id: str) -> Optional[Account]:
        return db.query(Account).filter(Account.public_id == public_id).first()

    def find_account(self, db: Session, channel: Channel, contact: str) -> Account:
        """
        Raises:
            NotFound: naming the contact field that is not registered
        """
        channel = Channel(channel)
        account = self._find_by_contact(db, channel, self._normalize(contact, channel))
        if account is None:
            raise NotFound("account", field=channel.value.lower())
        return account

    def resolve_identifier(self, db: Session, identifier: str) -> Tuple[Account, Channel]:
        """Resolve an email or phone identifier to its account and the channel it matched on."""
        channel = detect_channel(identifier)
        return self.find_account(db, channel, identifier), channel

    # Guards

    def _ensure_mutable(self, account: Account) -> None:
        if account.is_deleted:
            raise AccountDeleted()

    def _ensure_can_authenticate(self, account: Account, now: datetime) -> None:
        self._ensure_mutable(account)
        if not account.active:
            raise Deactivated()
        if account.is_suspended(now):
            raise Suspended(until=account.suspended_until, reason=account.suspension_reason)

    def _hide_unknown_contact(self, error: Exception, method: str):
        AuditService.log_login(None, method, "fail", error=getattr(error, "code", None))
        if self.config.uniform_auth_errors:
            return InvalidCredentials()
        return error

    # Deletion ticket transitions shared with login

    def _cancel_pending_ticket(self, db: Session, account: Account, now: datetime) -> bool:
        """Conditional cancel. False when no pending ticket remains (a sweep may have claimed it)."""
        result = db.execute(
            update(DeletionTicket)
            .where(
                DeletionTicket.account_id == account.id,
                DeletionTicket.status == TicketStatus.PENDING_DELETION.value,
            )
            .values(status=TicketStatus.CANCELLED.value, cancelled_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return False
        account.account_status = AccountStatus.ACTIVE.value
        return True

    def _resume_if_pending(self, db: Session, account: Account, now: datetime) -> bool:
        if not account.is_pending_deletion:
            return False
        if self._cancel_pending_ticket(db, account, now):
            logger.info(f"[Account] Login cancelled pending deletion for account {account.public_id}")
            AuditService.log_deletion(account.public_id, "cancelled_by_login")
            return True
        db.refresh(account)
        if account.is_deleted:
            raise AccountDeleted()
        # Status said pending but no ticket backs it
        account.account_status = AccountStatus.ACTIVE.value
        return False

    @contextmanager
    def _counting_code_failures(self, db: Session):
        """Charge a wrong code to its ledger row once the failed unit of work has rolled back."""
        try:
            yield
        except OtpMismatch as e:
            with atomic(db, "record failed code attempt"):
                self.ledger.record_failed_attempt(db, e.record_id, e.code_hash)
            raise

    def _complete_login(self, db: Session, account: Account, now: datetime, operation: str, before_commit=None) -> LoginResult:
        with atomic(db, operation):
            if before_commit is not None:
                before_commit()
            resumed = self._resume_if_pending(db, account, now)
            account.logged_in = True
        if resumed:
            run_hook(self.hook, "reactivate", account.id)
        return LoginResult(account=account, token=self.credentials.issue(account, now), deletion_cancelled=resumed)

    # OTP delivery

    def _issue_challenge(
        self,
        db: Session,
        contact: str,
        channel: Channel,
        purpose: OtpPurpose,
        now: datetime,
        verification_id: Optional[str] = None,
    ) -> OtpChallenge:
        if self.ledger.has_reached_daily_limit(db, contact, now):
            AuditService.log_otp_rate_limited(contact, purpose.value)
            raise RateLimitExceeded(retry_at=next_day_start(now))

        with atomic(db, f"issue {purpose.value.lower()} code"):
            issue = self.ledger.issue(db, contact, channel, purpose, verification_id=verification_id, now=now)
            if not self.notifier.send(contact, issue.code, channel, purpose):
                AuditService.log_otp_delivery_failed(contact, channel.value, purpose.value)
                raise DeliveryFailed()

        AuditService.log_otp_issued(contact, channel.value, purpose.value, issue.attempts_today)
        return OtpChallenge(
            channel=channel,
            masked_contact=mask_contact(contact),
            expires_at=issue.expires_at,
            attempts_left=issue.attempts_left,
            verification_id=verification_id,
        )

    # Login

    def authenticate_by_password(
        self,
        db: Session,
        identifier: str,
        password: str,
        now: Optional[datetime] = None,
    ) -> LoginResult:
        """
        Password login by email or phone.

        Checks run in order: registered, not deleted, active, not suspended,
        password, then the lookup channel is verified. A pending deletion is
        cancelled only once all of them pass.
        """
        now = resolve_now(now)
        try:
            account, channel = self.resolve_identifier(db, identifier)
        except NotFound as e:
            raise self._hide_unknown_contact(e, "password") from e
        self._ensure_can_authenticate(account, now)
        if not verify_password(password, account.password_hash):
            raise self._hide_unknown_contact(InvalidPassword(), "password")
        if not account.is_verified(channel):
            raise ContactNotVerified(channel.value)

        result = self._complete_login(db, account, now, "password login")
        AuditService.log_login(account.public_id, "password", "success")
        return result

    def start_otp_login(
        self,
        db: Session,
        channel: Channel,
        contact: str,
        now: Optional[datetime] = None,
    ) -> OtpChallenge:
        now = resolve_now(now)
        channel = Channel(channel)
        try:
            account = self.find_account(db, channel, contact)
        except NotFound as e:
            raise self._hide_unknown_contact(e, "otp") from e
        self._ensure_can_authenticate(account, now)
        return self._issue_challenge(db, account.contact_for(channel), channel, OtpPurpose.LOGIN, now)

    def complete_otp_login(
        self,
        db: Session,
        channel: Channel,
        contact: str,
        code: str,
        now: Optional[datetime] = None,
    ) -> LoginResult:
        """Consume a LOGIN code. A successful OTP login also verifies that channel."""
        now = resolve_now(now)
        channel = Channel(channel)
        try:
            account = self.find_account(db, channel, contact)
        except NotFound as e:
            raise self._hide_unknown_contact(e, "otp") from e
        self._ensure_can_authenticate(account, now)

        def consume():
            self.ledger.verify(db, account.contact_for(channel), code, OtpPurpose.LOGIN, now)
            account.mark_verified(channel)

        with self._counting_code_failures(db):
            result = self._complete_login(db, account, now, "otp login", before_commit=consume)
        AuditService.log_login(account.public_id, "otp", "success")
        return result

    # Passwords

    def _apply_password_change(self, account: Account, new_password: str) -> None:
        if not new_password:
            raise InvalidRequest("Password is required")
        if verify_password(new_password, account.password_hash):
            raise SamePassword()
        history = list(account.password_history or [])
        if any(verify_password(new_password, previous) for previous in history):
            raise PasswordReused()
        if account.password_hash:
            history.insert(0, account.password_hash)
        account.password_history = history[:PASSWORD_HISTORY_SIZE]
        account.password_hash = hash_password(new_password)

    def change_password(self, db: Session, account: Account, new_password: str) -> Account:
        """
        Raises:
            SamePassword: matches the current password
            PasswordReused: matches one of the last 4 passwords
        """
        self._ensure_mutable(account)
        with atomic(db, "change password"):
            self._apply_password_change(account, new_password)
        logger.info(f"[Account] Password changed for account {account.public_id}")
        AuditService.log_password_changed(account.public_id)
        return account

    def request_password_reset(
        self,
        db: Session,
        channel: Channel,
        contact: str,
        now: Optional[datetime] = None,
    ) -> OtpChallenge:
        """Send a reset code. The channel must already be verified."""
        now = resolve_now(now)
        channel = Channel(channel)
        account = self.find_account(db, channel, contact)
        self._ensure_can_authenticate(account, now)
        if not account.is_verified(channel):
            raise ContactNotVerified(channel.value)
        return self._issue_challenge(db, account.contact_for(channel), channel, OtpPurpose.PASSWORD_RESET, now)

    def complete_password_reset(
        self,
        db: Session,
        channel: Channel,
        contact: str,
        code: str,
        new_password: str,
        now: Optional[datetime] = None,
    ) -> LoginResult:
        """
        Consume a PASSWORD_RESET code and set the new password.

        If the new password is rejected the code stays unused.
        """
        now = resolve_now(now)
        channel = Channel(channel)
        account = self.find_account(db, channel, contact)
        self._ensure_can_authenticate(account, now)

        def reset():
            self.ledger.verify(db, account.contact_for(channel), code, OtpPurpose.PASSWORD_RESET, now)
            self._apply_password_change(account, new_password)

        with self._counting_code_failures(db):
            result = self._complete_login(db, account, now, "password reset", before_commit=reset)
        AuditService.log_password_changed(account.public_id)
        return result

    # Contact verification

    def request_contact_verification(
        self,
        db: Session,
        account: Account,
        channel: Channel,
        now: Optional[datetime] = None,
    ) -> OtpChallenge:
        """Send a verification code for one of the account's contacts, bound to a fresh verification id."""
        now = resolve_now(now)
        channel = Channel(channel)
        self._ensure_mutable(account)
        if not account.active:
            raise Deactivated()
        if account.is_verified(channel):
            raise ContactAlreadyVerified(channel.value)
        return self._issue_challenge(
            db,
            account.contact_for(channel),
            channel,
            OtpPurpose.CONTACT_VERIFICATION,
            now,
            verification_id=generate_verification_id(),
        )

    def confirm_contact_verification(
        self,
        db: Session,
        verification_id: str,
        code: str,
        now: Optional[datetime] = None,
    ) -> Account:
        now = resolve_now(now)
        with self._counting_code_failures(db), atomic(db, "confirm contact verification"):
            verified = self.ledger.verify_by_correlation_id(db, verification_id, code, now)
            account = self._find_by_contact(db, verified.channel, verified.contact)
            if account is None:
                raise NotFound("account")
            self._ensure_mutable(account)
            account.mark_verified(verified.channel)
        AuditService.log_contact_verified(account.public_id, verified.channel.value)
        return account

    def set_primary_contact(self, db: Session, account: Account, channel: Channel) -> Account:
        channel = Channel(channel)
        self._ensure_mutable(account)
        if not account.is_verified(channel):
            raise ContactNotVerified(channel.value)
        with atomic(db, "set primary contact"):
            account.set_primary(channel)
        return account

    # Suspension

    def suspend(
        self,
        db: Session,
        identifier: str,
        until: datetime,
        reason: str,
        now: Optional[datetime] = None,
    ) -> Account:
        """
        Raises:
            InvalidRequest: `until` not in the future or empty reason
            AlreadySuspended: an active suspension exists; it is never overwritten
        """
        now = resolve_now(now)
        until = as_naive_utc(until)
        if until <= now:
            raise InvalidRequest("Suspension end must be in the future")
        reason = (reason or "").strip()
        if not reason or len(reason) > MAX_REASON_LENGTH:
            raise InvalidRequest(f"Suspension reason must be 1-{MAX_REASON_LENGTH} characters")

        account, _ = self.resolve_identifier(db, identifier)
        self._ensure_mutable(account)
        if account.is_suspended(now):
            raise AlreadySuspended(until=account.suspended_until, reason=account.suspension_reason)

        with atomic(db, "suspend account"):
            account.suspended_until = until
            account.suspension_reason = reason
            account.logged_in = False
        logger.info(f"[Account] Suspended account {account.public_id} until {until.isoformat()}")
        AuditService.log_suspension(account.public_id, "suspend", until=until, reason=reason)
        return account

    def remove_suspension(self, db: Session, identifier: str) -> Account:
        account, _ = self.resolve_identifier(db, identifier)
        self._ensure_mutable(account)
        if account.suspended_until is None:
            raise NotSuspended()
        with atomic(db, "remove suspension"):
            account.suspended_until = None
            account.suspension_reason = None
        logger.info(f"[Account] Removed suspension for account {account.public_id}")
        AuditService.log_suspension(account.public_id, "remove")
        return account

    def suspension_status(self, db: Session, identifier: str, now: Optional[datetime] = None) -> SuspensionStatus:
        now = resolve_now(now)
        account, _ = self.resolve_identifier(db, identifier)
        if not account.is_suspended(now):
            return SuspensionStatus(suspended=False)
        return SuspensionStatus(suspended=True, until=account.suspended_until, reason=account.suspension_reason)

    # Deletion

    def schedule_deletion(
        self,
        db: Session,
        account: Account,
        mode: DeletionMode,
        days: int,
        reason: str,
        now: Optional[datetime] = None,
    ) -> DeletionTicket:
        """
        Open a deletion ticket due `days` from now (0 means due immediately).

        The sweep performs the deletion; nothing is removed here.

        Raises:
            InvalidRequest: bad mode, days outside 0..30, or bad reason
            AccountDeleted, AlreadyPending
        """
        now = resolve_now(now)
        try:
            mode = DeletionMode(mode)
        except ValueError:
            raise InvalidRequest(f"Unknown deletion mode: {mode}")
        if isinstance(days, bool) or not isinstance(days, int) or not 0 <= days <= self.config.deletion_max_days:
            raise InvalidRequest(f"Deletion delay must be between 0 and {self.config.deletion_max_days} days")
        reason = (reason or "").strip()
        if not reason or len(reason) > MAX_REASON_LENGTH:
            raise InvalidRequest(f"Deletion reason must be 1-{MAX_REASON_LENGTH} characters")

        self._ensure_mutable(account)
        if account.is_pending_deletion:
            raise AlreadyPending()

        ticket = DeletionTicket(
            account_id=account.id,
            mode=mode.value,
            reason=reason,
            scheduled_for=now + timedelta(days=days),
            status=TicketStatus.PENDING_DELETION.value,
            created_at=now,
        )
        with atomic(db, "schedule deletion"):
            db.add(ticket)
            account.account_status = AccountStatus.PENDING_DELETION.value
            try:
                db.flush()
            except IntegrityError:
                raise AlreadyPending()

        run_hook(self.hook, "deactivate", account.id)
        logger.info(f"[Account] Deletion ({mode.value}) scheduled for account {account.public_id} at {ticket.scheduled_for.isoformat()}")
        AuditService.log_deletion(account.public_id, "scheduled", mode=mode.value, scheduled_for=ticket.scheduled_for)
        return ticket

    def cancel_deletion(self, db: Session, account: Account, now: Optional[datetime] = None) -> Account:
        """
        Raises:
            NotPending: no pending ticket, including one already claimed by a sweep
        """
        now = resolve_now(now)
        self._ensure_mutable(account)
        with atomic(db, "cancel deletion"):
            if not self._cancel_pending_ticket(db, account, now):
                raise NotPending()

        run_hook(self.hook, "reactivate", account.id)
        logger.info(f"[Account] Deletion cancelled for account {account.public_id}")
        AuditService.log_deletion(account.public_id, "cancelled")
        return account

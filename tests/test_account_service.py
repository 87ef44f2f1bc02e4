"""
Account state machine: login, passwords, contact verification, suspension
and the account side of the deletion lifecycle.
"""
from datetime import timedelta

import pytest

from otpgate.core.config import IdentityConfig
from otpgate.core.errors import (
    AccountDeleted,
    AlreadyPending,
    AlreadySuspended,
    ContactAlreadyVerified,
    ContactNotVerified,
    Deactivated,
    DeliveryFailed,
    Expired,
    InvalidCredentials,
    InvalidOtp,
    InvalidPassword,
    InvalidRequest,
    MaxAttemptsReached,
    NotFound,
    NotPending,
    NotSuspended,
    PasswordReused,
    RateLimitExceeded,
    SamePassword,
    Suspended,
)
from otpgate.core.security import verify_password
from otpgate.models import AccountStatus, Channel, DeletionMode, DeletionTicket, OtpRecord, TicketStatus
from otpgate.services import build_services
from tests.helpers.identity_helpers import NOW, PASSWORD, FailingNotifier, RecordingHook, wrong_code


# Password login

def test_password_login_by_email(db, services, make_account):
    account = make_account(email="ada@example.com")

    result = services.accounts.authenticate_by_password(db, "ada@example.com", PASSWORD, now=NOW)

    assert result.account.id == account.id
    assert result.account.logged_in is True
    assert result.deletion_cancelled is False
    claims = services.credentials.decode(result.token, now=NOW)
    assert claims["sub"] == account.public_id


def test_password_login_normalizes_identifier(db, services, make_account):
    make_account(email="ada@example.com", phone="+12015550100", phone_verified=True)

    assert services.accounts.authenticate_by_password(db, " ADA@example.com", PASSWORD, now=NOW)
    assert services.accounts.authenticate_by_password(db, "(201) 555-0100", PASSWORD, now=NOW)


def test_unknown_contact_names_the_field(db, services):
    with pytest.raises(NotFound) as exc_info:
        services.accounts.authenticate_by_password(db, "nobody@example.com", PASSWORD, now=NOW)
    assert exc_info.value.field == "email"

    with pytest.raises(NotFound) as exc_info:
        services.accounts.authenticate_by_password(db, "+12015550199", PASSWORD, now=NOW)
    assert exc_info.value.field == "phone"


def test_wrong_password(db, services, make_account):
    make_account(email="ada@example.com")

    with pytest.raises(InvalidPassword):
        services.accounts.authenticate_by_password(db, "ada@example.com", "wrong-password", now=NOW)


def test_uniform_errors_hide_registration(db, notifier, make_account):
    services = build_services(config=IdentityConfig(uniform_auth_errors=True), notifier=notifier)
    make_account(email="ada@example.com")

    with pytest.raises(InvalidCredentials):
        services.accounts.authenticate_by_password(db, "nobody@example.com", PASSWORD, now=NOW)
    with pytest.raises(InvalidCredentials):
        services.accounts.authenticate_by_password(db, "ada@example.com", "wrong-password", now=NOW)
    with pytest.raises(InvalidCredentials):
        services.accounts.start_otp_login(db, Channel.EMAIL, "nobody@example.com", now=NOW)


def test_login_requires_verified_lookup_channel(db, services, make_account):
    make_account(email="ada@example.com", phone="+12015550100", phone_verified=False)

    with pytest.raises(ContactNotVerified) as exc_info:
        services.accounts.authenticate_by_password(db, "+12015550100", PASSWORD, now=NOW)
    assert exc_info.value.channel == "PHONE"


def test_deactivated_account_cannot_login(db, services, make_account):
    make_account(email="ada@example.com", active=False)

    with pytest.raises(Deactivated):
        services.accounts.authenticate_by_password(db, "ada@example.com", PASSWORD, now=NOW)


def test_suspended_account_reports_until_and_reason(db, services, make_account):
    until = NOW + timedelta(days=2)
    make_account(email="ada@example.com", suspended_until=until, suspension_reason="chargebacks")

    with pytest.raises(Suspended) as exc_info:
        services.accounts.authenticate_by_password(db, "ada@example.com", PASSWORD, now=NOW)
    assert exc_info.value.until == until
    assert exc_info.value.reason == "chargebacks"

    # Suspension lapses on its own
    result = services.accounts.authenticate_by_password(db, "ada@example.com", PASSWORD, now=until)
    assert result.account.logged_in is True


def test_deleted_account_cannot_login(db, services, make_account):
    make_account(email="ada@example.com", account_status=AccountStatus.DELETED.value)

    with pytest.raises(AccountDeleted):
        services.accounts.authenticate_by_password(db, "ada@example.com", PASSWORD, now=NOW)


def test_login_cancels_pending_deletion(db, services, hook, make_account):
    account = make_account(email="ada@example.com")
    services.accounts.schedule_deletion(db, account, DeletionMode.ALL, 7, "moving on", now=NOW)

    result = services.accounts.authenticate_by_password(db, "ada@example.com", PASSWORD, now=NOW + timedelta(days=1))

    assert result.deletion_cancelled is True
    assert result.account.account_status == AccountStatus.ACTIVE.value
    ticket = db.query(DeletionTicket).one()
    assert ticket.status == TicketStatus.CANCELLED.value
    assert ticket.cancelled_at == NOW + timedelta(days=1)
    assert hook.calls == [("deactivate", account.id), ("reactivate", account.id)]


def test_failed_login_keeps_pending_deletion(db, services, make_account):
    account = make_account(email="ada@example.com")
    services.accounts.schedule_deletion(db, account, DeletionMode.ALL, 7, "moving on", now=NOW)

    with pytest.raises(InvalidPassword):
        services.accounts.authenticate_by_password(db, "ada@example.com", "wrong-password", now=NOW)

    db.refresh(account)
    assert account.account_status == AccountStatus.PENDING_DELETION.value
    assert db.query(DeletionTicket).one().status == TicketStatus.PENDING_DELETION.value


def test_suspended_login_keeps_pending_deletion(db, services, make_account):
    account = make_account(email="ada@example.com")
    services.accounts.schedule_deletion(db, account, DeletionMode.ALL, 7, "moving on", now=NOW)
    services.accounts.suspend(db, "ada@example.com", NOW + timedelta(days=1), "review", now=NOW)

    with pytest.raises(Suspended):
        services.accounts.authenticate_by_password(db, "ada@example.com", PASSWORD, now=NOW)

    assert db.query(DeletionTicket).one().status == TicketStatus.PENDING_DELETION.value


def test_status_without_ticket_is_repaired_on_login(db, services, make_account):
    make_account(email="ada@example.com", account_status=AccountStatus.PENDING_DELETION.value)

    result = services.accounts.authenticate_by_password(db, "ada@example.com", PASSWORD, now=NOW)

    assert result.deletion_cancelled is False
    assert result.account.account_status == AccountStatus.ACTIVE.value


# OTP login

def test_otp_login_verifies_channel(db, services, notifier, make_account):
    account = make_account(phone="+12015550100", phone_verified=False)

    challenge = services.accounts.start_otp_login(db, Channel.PHONE, "+12015550100", now=NOW)
    assert challenge.masked_contact == "***0100"
    assert challenge.attempts_left == 2
    assert notifier.sent[-1]["purpose"].value == "LOGIN"

    result = services.accounts.complete_otp_login(db, Channel.PHONE, "+12015550100", notifier.last_code, now=NOW)

    assert result.account.id == account.id
    assert result.account.phone_verified is True
    assert result.account.logged_in is True


def test_otp_login_rejects_wrong_and_reused_codes(db, services, notifier, make_account):
    make_account(email="ada@example.com")
    services.accounts.start_otp_login(db, Channel.EMAIL, "ada@example.com", now=NOW)
    code = notifier.last_code

    with pytest.raises(InvalidOtp):
        services.accounts.complete_otp_login(db, Channel.EMAIL, "ada@example.com", wrong_code(code), now=NOW)

    services.accounts.complete_otp_login(db, Channel.EMAIL, "ada@example.com", code, now=NOW)
    with pytest.raises(InvalidOtp):
        services.accounts.complete_otp_login(db, Channel.EMAIL, "ada@example.com", code, now=NOW)


def test_otp_login_locks_code_after_repeated_wrong_guesses(db, services, notifier, make_account):
    make_account(email="ada@example.com")
    services.accounts.start_otp_login(db, Channel.EMAIL, "ada@example.com", now=NOW)
    code = notifier.last_code

    for _ in range(5):
        with pytest.raises(InvalidOtp):
            services.accounts.complete_otp_login(db, Channel.EMAIL, "ada@example.com", wrong_code(code), now=NOW)
    assert db.query(OtpRecord).one().verify_attempts == 5

    with pytest.raises(MaxAttemptsReached):
        services.accounts.complete_otp_login(db, Channel.EMAIL, "ada@example.com", code, now=NOW)

    # A fresh code starts a fresh count
    services.accounts.start_otp_login(db, Channel.EMAIL, "ada@example.com", now=NOW + timedelta(minutes=1))
    result = services.accounts.complete_otp_login(
        db, Channel.EMAIL, "ada@example.com", notifier.last_code, now=NOW + timedelta(minutes=1),
    )
    assert result.account.logged_in is True


def test_otp_login_code_expires(db, services, notifier, make_account):
    make_account(email="ada@example.com")
    services.accounts.start_otp_login(db, Channel.EMAIL, "ada@example.com", now=NOW)

    with pytest.raises(Expired):
        services.accounts.complete_otp_login(
            db, Channel.EMAIL, "ada@example.com", notifier.last_code, now=NOW + timedelta(minutes=11),
        )


def test_otp_login_daily_limit(db, services, make_account):
    make_account(email="ada@example.com")
    for minute in range(3):
        services.accounts.start_otp_login(db, Channel.EMAIL, "ada@example.com", now=NOW + timedelta(minutes=minute))

    with pytest.raises(RateLimitExceeded) as exc_info:
        services.accounts.start_otp_login(db, Channel.EMAIL, "ada@example.com", now=NOW + timedelta(minutes=5))
    assert exc_info.value.retry_at == NOW.replace(hour=0) + timedelta(days=1)


def test_otp_delivery_failure_rolls_back(db, config, make_account):
    services = build_services(config=config, notifier=FailingNotifier())
    make_account(email="ada@example.com")

    with pytest.raises(DeliveryFailed):
        services.accounts.start_otp_login(db, Channel.EMAIL, "ada@example.com", now=NOW)
    assert db.query(OtpRecord).count() == 0


def test_otp_login_cancels_pending_deletion(db, services, notifier, make_account):
    account = make_account(email="ada@example.com")
    services.accounts.schedule_deletion(db, account, DeletionMode.STATUS_ONLY, 3, "taking a break", now=NOW)

    services.accounts.start_otp_login(db, Channel.EMAIL, "ada@example.com", now=NOW)
    result = services.accounts.complete_otp_login(db, Channel.EMAIL, "ada@example.com", notifier.last_code, now=NOW)

    assert result.deletion_cancelled is True
    assert db.query(DeletionTicket).one().status == TicketStatus.CANCELLED.value


# Passwords

def test_change_password_rejects_current(db, services, make_account):
    account = make_account()

    with pytest.raises(SamePassword):
        services.accounts.change_password(db, account, PASSWORD)


def test_password_history_holds_last_four(db, services, make_account):
    account = make_account()
    accounts = services.accounts

    for n in range(1, 5):
        accounts.change_password(db, account, f"password-{n}")
    assert len(account.password_history) == 4

    # The original password is the oldest of the last four
    with pytest.raises(PasswordReused):
        accounts.change_password(db, account, PASSWORD)

    accounts.change_password(db, account, "password-5")
    with pytest.raises(PasswordReused):
        accounts.change_password(db, account, "password-1")

    # Now fifth generation back, no longer remembered
    accounts.change_password(db, account, PASSWORD)
    assert verify_password(PASSWORD, account.password_hash)
    assert len(account.password_history) == 4
    assert verify_password("password-5", account.password_history[0])


def test_change_password_on_deleted_account(db, services, make_account):
    account = make_account(account_status=AccountStatus.DELETED.value)

    with pytest.raises(AccountDeleted):
        services.accounts.change_password(db, account, "password-new")


def test_password_reset_flow(db, services, notifier, make_account):
    make_account(email="ada@example.com")
    services.accounts.request_password_reset(db, Channel.EMAIL, "ada@example.com", now=NOW)
    code = notifier.last_code

    # A rejected password leaves the code usable
    with pytest.raises(SamePassword):
        services.accounts.complete_password_reset(db, Channel.EMAIL, "ada@example.com", code, PASSWORD, now=NOW)

    result = services.accounts.complete_password_reset(
        db, Channel.EMAIL, "ada@example.com", code, "brand-new-password", now=NOW,
    )
    assert verify_password("brand-new-password", result.account.password_hash)
    assert result.token

    with pytest.raises(InvalidOtp):
        services.accounts.complete_password_reset(db, Channel.EMAIL, "ada@example.com", code, "another-one", now=NOW)


def test_password_reset_requires_verified_channel(db, services, make_account):
    make_account(phone="+12015550100", phone_verified=False)

    with pytest.raises(ContactNotVerified):
        services.accounts.request_password_reset(db, Channel.PHONE, "+12015550100", now=NOW)


def test_login_code_cannot_reset_password(db, services, notifier, make_account):
    make_account(email="ada@example.com")
    services.accounts.start_otp_login(db, Channel.EMAIL, "ada@example.com", now=NOW)

    with pytest.raises(InvalidOtp):
        services.accounts.complete_password_reset(
            db, Channel.EMAIL, "ada@example.com", notifier.last_code, "brand-new-password", now=NOW,
        )


# Contact verification and primary contact

def test_contact_verification(db, services, notifier, make_account):
    account = make_account(phone="+12015550100", phone_verified=False)

    challenge = services.accounts.request_contact_verification(db, account, Channel.PHONE, now=NOW)
    assert challenge.verification_id
    assert notifier.sent[-1]["contact"] == "+12015550100"

    verified = services.accounts.confirm_contact_verification(db, challenge.verification_id, notifier.last_code, now=NOW)
    assert verified.id == account.id
    assert verified.phone_verified is True
    assert verified.email_verified is True

    with pytest.raises(ContactAlreadyVerified):
        services.accounts.request_contact_verification(db, account, Channel.PHONE, now=NOW)


def test_contact_verification_counts_wrong_codes(db, notifier, make_account):
    services = build_services(config=IdentityConfig(otp_max_verify_attempts=2), notifier=notifier)
    account = make_account(phone="+12015550100", phone_verified=False)
    challenge = services.accounts.request_contact_verification(db, account, Channel.PHONE, now=NOW)
    code = notifier.last_code

    for _ in range(2):
        with pytest.raises(InvalidOtp):
            services.accounts.confirm_contact_verification(db, challenge.verification_id, wrong_code(code), now=NOW)
    with pytest.raises(MaxAttemptsReached):
        services.accounts.confirm_contact_verification(db, challenge.verification_id, code, now=NOW)

    db.refresh(account)
    assert account.phone_verified is False


def test_contact_verification_unknown_id(db, services, make_account):
    make_account()

    with pytest.raises(NotFound):
        services.accounts.confirm_contact_verification(db, "unknown", "000000", now=NOW)


def test_set_primary_contact(db, services, notifier, make_account):
    account = make_account(phone="+12015550100", phone_verified=False)
    assert account.email_primary is True

    with pytest.raises(ContactNotVerified):
        services.accounts.set_primary_contact(db, account, Channel.PHONE)

    challenge = services.accounts.request_contact_verification(db, account, Channel.PHONE, now=NOW)
    services.accounts.confirm_contact_verification(db, challenge.verification_id, notifier.last_code, now=NOW)
    services.accounts.set_primary_contact(db, account, Channel.PHONE)

    assert account.phone_primary is True
    assert account.email_primary is False


# Suspension

def test_suspend_and_remove(db, services, make_account):
    account = make_account(email="ada@example.com")
    until = NOW + timedelta(days=3)

    services.accounts.suspend(db, "ada@example.com", until, "abuse report", now=NOW)
    status = services.accounts.suspension_status(db, "ada@example.com", now=NOW)
    assert status.suspended is True
    assert status.until == until
    assert status.reason == "abuse report"
    assert account.effective_status(NOW) == AccountStatus.SUSPENDED
    assert account.logged_in is False

    with pytest.raises(AlreadySuspended) as exc_info:
        services.accounts.suspend(db, "ada@example.com", NOW + timedelta(days=9), "again", now=NOW)
    assert exc_info.value.until == until

    services.accounts.remove_suspension(db, "ada@example.com")
    assert services.accounts.suspension_status(db, "ada@example.com", now=NOW).suspended is False

    with pytest.raises(NotSuspended):
        services.accounts.remove_suspension(db, "ada@example.com")


def test_suspend_validates_input(db, services, make_account):
    make_account(email="ada@example.com")

    with pytest.raises(InvalidRequest):
        services.accounts.suspend(db, "ada@example.com", NOW, "abuse", now=NOW)
    with pytest.raises(InvalidRequest):
        services.accounts.suspend(db, "ada@example.com", NOW + timedelta(days=1), "  ", now=NOW)
    with pytest.raises(InvalidRequest):
        services.accounts.suspend(db, "ada@example.com", NOW + timedelta(days=1), "x" * 501, now=NOW)


def test_lapsed_suspension(db, services, make_account):
    make_account(email="ada@example.com", suspended_until=NOW - timedelta(hours=1), suspension_reason="old")

    assert services.accounts.suspension_status(db, "ada@example.com", now=NOW).suspended is False
    # A lapsed suspension can be replaced
    services.accounts.suspend(db, "ada@example.com", NOW + timedelta(days=1), "new report", now=NOW)
    # and a lapsed one still counts as present for removal
    services.accounts.remove_suspension(db, "ada@example.com")


def test_effective_status_prefers_deletion_lifecycle(db, services, make_account):
    account = make_account(email="ada@example.com", suspended_until=NOW + timedelta(days=1), suspension_reason="x")
    services.accounts.schedule_deletion(db, account, DeletionMode.ALL, 5, "bye", now=NOW)

    assert account.effective_status(NOW) == AccountStatus.PENDING_DELETION


# Deletion scheduling

def test_schedule_and_cancel_deletion(db, services, hook, make_account):
    account = make_account()

    ticket = services.accounts.schedule_deletion(db, account, DeletionMode.ALL, 14, "closing shop", now=NOW)
    assert ticket.scheduled_for == NOW + timedelta(days=14)
    assert ticket.mode == "ALL"
    assert account.account_status == AccountStatus.PENDING_DELETION.value

    with pytest.raises(AlreadyPending):
        services.accounts.schedule_deletion(db, account, DeletionMode.ALL, 1, "again", now=NOW)

    services.accounts.cancel_deletion(db, account, now=NOW + timedelta(days=1))
    assert account.account_status == AccountStatus.ACTIVE.value
    assert hook.calls == [("deactivate", account.id), ("reactivate", account.id)]

    with pytest.raises(NotPending):
        services.accounts.cancel_deletion(db, account, now=NOW + timedelta(days=1))

    # A new ticket can be opened after cancelling
    services.accounts.schedule_deletion(db, account, DeletionMode.STATUS_ONLY, 0, "for real", now=NOW)
    assert db.query(DeletionTicket).count() == 2


def test_schedule_deletion_validates_input(db, services, make_account):
    account = make_account()

    for days in (-1, 31, "7", True):
        with pytest.raises(InvalidRequest):
            services.accounts.schedule_deletion(db, account, DeletionMode.ALL, days, "reason", now=NOW)
    with pytest.raises(InvalidRequest):
        services.accounts.schedule_deletion(db, account, "EVERYTHING", 1, "reason", now=NOW)
    with pytest.raises(InvalidRequest):
        services.accounts.schedule_deletion(db, account, DeletionMode.ALL, 1, "", now=NOW)

    assert db.query(DeletionTicket).count() == 0


def test_schedule_deletion_accepts_bounds(db, services, make_account):
    first = make_account()
    second = make_account()

    assert services.accounts.schedule_deletion(db, first, DeletionMode.ALL, 0, "now", now=NOW).scheduled_for == NOW
    ticket = services.accounts.schedule_deletion(db, second, "STATUS_ONLY", 30, "later", now=NOW)
    assert ticket.scheduled_for == NOW + timedelta(days=30)


def test_failing_hook_does_not_block_deletion(db, config, notifier, make_account):
    hook = RecordingHook(fail=True)
    services = build_services(config=config, notifier=notifier, hook=hook)
    account = make_account()

    services.accounts.schedule_deletion(db, account, DeletionMode.ALL, 3, "bye", now=NOW)
    services.accounts.cancel_deletion(db, account, now=NOW)

    assert hook.calls == [("deactivate", account.id), ("reactivate", account.id)]
    assert account.account_status == AccountStatus.ACTIVE.value


def test_deleted_account_is_terminal(db, services, make_account):
    account = make_account(account_status=AccountStatus.DELETED.value)

    with pytest.raises(AccountDeleted):
        services.accounts.schedule_deletion(db, account, DeletionMode.ALL, 1, "again", now=NOW)
    with pytest.raises(AccountDeleted):
        services.accounts.cancel_deletion(db, account, now=NOW)
    with pytest.raises(AccountDeleted):
        services.accounts.set_primary_contact(db, account, Channel.EMAIL)
    with pytest.raises(AccountDeleted):
        services.accounts.suspend(db, account.email, NOW + timedelta(days=1), "x", now=NOW)

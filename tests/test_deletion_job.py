"""
Scheduled job entry points: sweep, purge, housekeeping and stats.
"""
from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from otpgate.jobs import deletion_sweep
from otpgate.models import AccountStatus, Channel, DeletionTicket, OtpRecord, StagedRegistration, TicketStatus
from otpgate.services.registration_service import RegistrationProfile
from tests.helpers.identity_helpers import NOW, PASSWORD


@pytest.fixture
def job_sessions(engine, monkeypatch):
    """Point the job's SessionLocal at the test database."""
    monkeypatch.setattr(deletion_sweep, "SessionLocal", sessionmaker(autocommit=False, autoflush=False, bind=engine))


def _stage(services, db, email, phone, now):
    profile = RegistrationProfile(first_name="Ada", last_name="Lovelace", email=email, phone=phone, password=PASSWORD)
    return services.registrations.stage(db, profile, Channel.EMAIL, now=now)


def test_housekeeping_drops_stale_rows(db, services):
    _stage(services, db, "old@example.com", "+12015550101", NOW - timedelta(days=10))
    fresh = _stage(services, db, "new@example.com", "+12015550102", NOW)

    counts = deletion_sweep.run_housekeeping(db, now=NOW)

    assert counts == {"otp_records": 1, "staged_registrations": 1}
    assert [r.contact for r in db.query(OtpRecord).all()] == ["new@example.com"]
    assert [r.registration_id for r in db.query(StagedRegistration).all()] == [fresh.registration_id]


def test_run_deletion_sweep(db, services, make_account):
    account = make_account()
    services.accounts.schedule_deletion(db, account, "ALL", 1, "bye", now=NOW)

    summary = deletion_sweep.run_deletion_sweep(db, as_of=NOW + timedelta(days=1))

    assert summary.processed == 1
    db.refresh(account)
    assert account.account_status == AccountStatus.DELETED.value


def test_run_ticket_purge(db, services, make_account):
    account = make_account()
    services.accounts.schedule_deletion(db, account, "ALL", 0, "bye", now=NOW)
    deletion_sweep.run_deletion_sweep(db, as_of=NOW)

    assert deletion_sweep.run_ticket_purge(db, retention_days=30, now=NOW + timedelta(days=29)) == 0
    assert deletion_sweep.run_ticket_purge(db, retention_days=30, now=NOW + timedelta(days=31)) == 1


def test_main_sweep_command(db, services, make_account, job_sessions):
    account = make_account()
    services.accounts.schedule_deletion(db, account, "STATUS_ONLY", 0, "bye")

    assert deletion_sweep.main(["sweep"]) == 0

    db.expire_all()
    assert db.query(DeletionTicket).one().status == TicketStatus.COMPLETED.value


@pytest.mark.parametrize("argv", [["stats"], ["housekeeping"], ["purge", "--retention-days", "5"]])
def test_main_other_commands(job_sessions, argv):
    assert deletion_sweep.main(argv) == 0


def test_main_rejects_unknown_command(job_sessions):
    with pytest.raises(SystemExit):
        deletion_sweep.main(["explode"])

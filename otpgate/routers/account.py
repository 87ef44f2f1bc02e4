"""
Account management router: profile, password, contact verification,
deletion scheduling and administrative suspension.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..dependencies.auth import get_current_account, require_admin_key
from ..dependencies.services import get_services
from ..models import Account
from ..schemas.identity import (
    AccountResponse,
    ContactVerificationRequest,
    DeletionScheduleRequest,
    DeletionStatsResponse,
    DeletionTicketResponse,
    OtpChallengeResponse,
    PasswordChangeRequest,
    PrimaryContactRequest,
    SuspendRequest,
    SuspensionIdentifierRequest,
    SuspensionStatusResponse,
)
from ..services import IdentityServices

router = APIRouter(prefix="/v1/account", tags=["account"])
admin_router = APIRouter(prefix="/v1/admin", tags=["admin"], dependencies=[Depends(require_admin_key)])

logger = logging.getLogger(__name__)


@router.get("/me", response_model=AccountResponse)
def get_me(account: Account = Depends(get_current_account)):
    return AccountResponse.model_validate(account)


@router.post("/password", response_model=AccountResponse)
def change_password(
    req: PasswordChangeRequest,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    return AccountResponse.model_validate(services.accounts.change_password(db, account, req.new_password))


@router.post("/verify", response_model=OtpChallengeResponse)
def request_contact_verification(
    req: ContactVerificationRequest,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    challenge = services.accounts.request_contact_verification(db, account, req.channel)
    return OtpChallengeResponse(
        channel=challenge.channel,
        sent_to=challenge.masked_contact,
        expires_at=challenge.expires_at,
        attempts_left=challenge.attempts_left,
        verification_id=challenge.verification_id,
    )


@router.post("/primary", response_model=AccountResponse)
def set_primary_contact(
    req: PrimaryContactRequest,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    return AccountResponse.model_validate(services.accounts.set_primary_contact(db, account, req.channel))


@router.post("/deletion", response_model=DeletionTicketResponse, status_code=201)
def schedule_deletion(
    req: DeletionScheduleRequest,
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    ticket = services.accounts.schedule_deletion(db, account, req.mode, req.days, req.reason)
    return DeletionTicketResponse.model_validate(ticket)


@router.delete("/deletion", response_model=AccountResponse)
def cancel_deletion(
    account: Account = Depends(get_current_account),
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    return AccountResponse.model_validate(services.accounts.cancel_deletion(db, account))


@admin_router.post("/suspensions", response_model=AccountResponse)
def suspend_account(
    req: SuspendRequest,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    account = services.accounts.suspend(db, req.identifier, req.until, req.reason)
    logger.info(f"[Admin] Suspended account {account.public_id}")
    return AccountResponse.model_validate(account)


@admin_router.post("/suspensions/remove", response_model=AccountResponse)
def remove_suspension(
    req: SuspensionIdentifierRequest,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    return AccountResponse.model_validate(services.accounts.remove_suspension(db, req.identifier))


@admin_router.post("/suspensions/status", response_model=SuspensionStatusResponse)
def suspension_status(
    req: SuspensionIdentifierRequest,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    status = services.accounts.suspension_status(db, req.identifier)
    return SuspensionStatusResponse(suspended=status.suspended, until=status.until, reason=status.reason)


@admin_router.get("/deletions/stats", response_model=DeletionStatsResponse)
def deletion_stats(
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    stats = services.deletions.deletion_stats(db)
    return DeletionStatsResponse(
        pending=stats.pending,
        cancelled=stats.cancelled,
        completed=stats.completed,
        due_now=stats.due_now,
        total=stats.total,
    )

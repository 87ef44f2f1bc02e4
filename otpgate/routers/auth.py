"""
Registration and authentication router
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..dependencies.services import get_services
from ..schemas.identity import (
    AccountResponse,
    AuthResponse,
    ContactVerificationConfirmRequest,
    OtpChallengeResponse,
    OtpStartRequest,
    OtpVerifyRequest,
    PasswordLoginRequest,
    PasswordResetConfirmRequest,
    RegistrationCheckRequest,
    RegistrationConfirmRequest,
    RegistrationResendRequest,
    RegistrationStageRequest,
    StageResponse,
)
from ..services import IdentityServices
from ..services.registration_service import RegistrationProfile

router = APIRouter(prefix="/v1/auth", tags=["auth"])

logger = logging.getLogger(__name__)


def _stage_response(result) -> StageResponse:
    return StageResponse(
        registration_id=result.registration_id,
        channel=result.channel,
        sent_to=result.masked_contact,
        expires_at=result.expires_at,
        attempts_left=result.attempts_left,
    )


def _challenge_response(challenge) -> OtpChallengeResponse:
    return OtpChallengeResponse(
        channel=challenge.channel,
        sent_to=challenge.masked_contact,
        expires_at=challenge.expires_at,
        attempts_left=challenge.attempts_left,
        verification_id=challenge.verification_id,
    )


def _auth_response(account, token: str, deletion_cancelled: bool = False) -> AuthResponse:
    return AuthResponse(
        access_token=token,
        account=AccountResponse.model_validate(account),
        deletion_cancelled=deletion_cancelled,
    )


@router.post("/register/check")
def check_registration(
    req: RegistrationCheckRequest,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    services.registrations.check_availability(db, req.email, req.phone)
    return {"available": True}


@router.post("/register", response_model=StageResponse, status_code=201)
def stage_registration(
    req: RegistrationStageRequest,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    profile = RegistrationProfile(
        first_name=req.first_name,
        last_name=req.last_name,
        email=req.email,
        phone=req.phone,
        password=req.password,
    )
    return _stage_response(services.registrations.stage(db, profile, req.channel))


@router.post("/register/resend", response_model=StageResponse)
def resend_registration_code(
    req: RegistrationResendRequest,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    return _stage_response(services.registrations.resend(db, req.registration_id))


@router.post("/register/confirm", response_model=AuthResponse)
def confirm_registration(
    req: RegistrationConfirmRequest,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    result = services.registrations.confirm(db, req.registration_id, req.code)
    return _auth_response(result.account, result.token)


@router.post("/login", response_model=AuthResponse)
def login_with_password(
    req: PasswordLoginRequest,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    result = services.accounts.authenticate_by_password(db, req.identifier, req.password)
    return _auth_response(result.account, result.token, result.deletion_cancelled)


@router.post("/otp/start", response_model=OtpChallengeResponse)
def start_otp_login(
    req: OtpStartRequest,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    return _challenge_response(services.accounts.start_otp_login(db, req.channel, req.contact))


@router.post("/otp/verify", response_model=AuthResponse)
def verify_otp_login(
    req: OtpVerifyRequest,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    result = services.accounts.complete_otp_login(db, req.channel, req.contact, req.code)
    return _auth_response(result.account, result.token, result.deletion_cancelled)


@router.post("/password/reset", response_model=OtpChallengeResponse)
def request_password_reset(
    req: OtpStartRequest,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    return _challenge_response(services.accounts.request_password_reset(db, req.channel, req.contact))


@router.post("/password/reset/confirm", response_model=AuthResponse)
def confirm_password_reset(
    req: PasswordResetConfirmRequest,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    result = services.accounts.complete_password_reset(db, req.channel, req.contact, req.code, req.new_password)
    return _auth_response(result.account, result.token, result.deletion_cancelled)


@router.post("/verify/confirm", response_model=AccountResponse)
def confirm_contact_verification(
    req: ContactVerificationConfirmRequest,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
):
    account = services.accounts.confirm_contact_verification(db, req.verification_id, req.code)
    return AccountResponse.model_validate(account)

"""
Request and response schemas for the identity API
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from ..models.enums import Channel, DeletionMode


class RegistrationCheckRequest(BaseModel):
    email: EmailStr
    phone: str


class RegistrationStageRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str
    password: str = Field(..., min_length=8, max_length=128)
    channel: Channel = Channel.EMAIL


class RegistrationResendRequest(BaseModel):
    registration_id: str


class RegistrationConfirmRequest(BaseModel):
    registration_id: str
    code: str = Field(..., min_length=4, max_length=10)


class StageResponse(BaseModel):
    registration_id: str
    channel: Channel
    sent_to: str  # masked contact
    expires_at: datetime
    attempts_left: int


class PasswordLoginRequest(BaseModel):
    identifier: str  # email or phone
    password: str


class OtpStartRequest(BaseModel):
    channel: Channel
    contact: str


class OtpVerifyRequest(BaseModel):
    channel: Channel
    contact: str
    code: str = Field(..., min_length=4, max_length=10)


class PasswordResetConfirmRequest(OtpVerifyRequest):
    new_password: str = Field(..., min_length=8, max_length=128)


class PasswordChangeRequest(BaseModel):
    new_password: str = Field(..., min_length=8, max_length=128)


class ContactVerificationRequest(BaseModel):
    channel: Channel


class ContactVerificationConfirmRequest(BaseModel):
    verification_id: str
    code: str = Field(..., min_length=4, max_length=10)


class PrimaryContactRequest(BaseModel):
    channel: Channel


class OtpChallengeResponse(BaseModel):
    channel: Channel
    sent_to: str
    expires_at: datetime
    attempts_left: int
    verification_id: Optional[str] = None


class AccountResponse(BaseModel):
    public_id: str
    first_name: str
    last_name: str
    email: str
    phone: str
    email_verified: bool
    phone_verified: bool
    email_primary: bool
    phone_primary: bool
    account_status: str
    suspended_until: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    account: AccountResponse
    deletion_cancelled: bool = False


class DeletionScheduleRequest(BaseModel):
    mode: DeletionMode = DeletionMode.ALL
    days: int = Field(..., ge=0, le=30)
    reason: str = Field(..., min_length=1, max_length=500)


class DeletionTicketResponse(BaseModel):
    id: str
    mode: DeletionMode
    reason: str
    scheduled_for: datetime
    status: str

    class Config:
        from_attributes = True


class SuspendRequest(BaseModel):
    identifier: str
    until: datetime
    reason: str = Field(..., min_length=1, max_length=500)


class SuspensionIdentifierRequest(BaseModel):
    identifier: str


class SuspensionStatusResponse(BaseModel):
    suspended: bool
    until: Optional[datetime] = None
    reason: Optional[str] = None


class DeletionStatsResponse(BaseModel):
    pending: int
    cancelled: int
    completed: int
    due_now: int
    total: int

"""
Typed errors raised by the identity services.

Every public service operation either returns a result or raises one of these.
exception_handlers.py renders them as JSON using `http_status` and `to_response()`.
"""
from datetime import datetime
from typing import Any, Dict, Optional


class IdentityError(Exception):
    """Base class for all identity lifecycle failures."""

    code = "IDENTITY_ERROR"
    http_status = 400
    default_message = "Request could not be completed"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = {k: v for k, v in details.items() if v is not None}
        super().__init__(self.message)

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        for key, value in self.details.items():
            body[key] = value.isoformat() if isinstance(value, datetime) else value
        return {"error": body}


class RateLimitExceeded(IdentityError):
    code = "RATE_LIMIT_EXCEEDED"
    http_status = 429
    default_message = "Daily OTP limit reached. Try again tomorrow."

    def __init__(self, retry_at: Optional[datetime] = None, message: Optional[str] = None):
        super().__init__(message, retry_at=retry_at)
        self.retry_at = retry_at


class NotFound(IdentityError):
    code = "NOT_FOUND"
    http_status = 404
    default_message = "Not found"

    def __init__(self, resource: str, field: Optional[str] = None, message: Optional[str] = None):
        if message is None:
            message = f"{field} is not registered" if field else f"{resource} not found"
        super().__init__(message, resource=resource, field=field)
        self.resource = resource
        self.field = field


class Expired(IdentityError):
    code = "EXPIRED"
    http_status = 400
    default_message = "Code has expired. Request a new one."

    def __init__(self, resource: str = "otp", message: Optional[str] = None):
        super().__init__(message, resource=resource)
        self.resource = resource


class InvalidOtp(IdentityError):
    code = "INVALID_OTP"
    http_status = 400
    default_message = "Invalid code"


class OtpMismatch(InvalidOtp):
    """
    Wrong code for an issued record.

    Names the record so the caller can count the failure after its own
    transaction has rolled back. Neither attribute is rendered.
    """

    def __init__(self, record_id: str, code_hash: str):
        super().__init__()
        self.record_id = record_id
        self.code_hash = code_hash


class InvalidPassword(IdentityError):
    code = "INVALID_PASSWORD"
    http_status = 401
    default_message = "Incorrect password"


class InvalidCredentials(IdentityError):
    """Uniform login failure used when field-specific errors are disabled."""

    code = "INVALID_CREDENTIALS"
    http_status = 401
    default_message = "Invalid login credentials"


class InvalidCredential(IdentityError):
    """Bearer token could not be decoded or has expired."""

    code = "INVALID_CREDENTIAL"
    http_status = 401
    default_message = "Invalid token"


class AlreadyRegistered(IdentityError):
    code = "ALREADY_REGISTERED"
    http_status = 409

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"{field} is already registered", field=field)
        self.field = field


class AlreadySuspended(IdentityError):
    code = "ALREADY_SUSPENDED"
    http_status = 409
    default_message = "Account is already suspended"

    def __init__(self, until: Optional[datetime] = None, reason: Optional[str] = None):
        super().__init__(None, until=until, reason=reason)
        self.until = until
        self.reason = reason


class NotSuspended(IdentityError):
    code = "NOT_SUSPENDED"
    http_status = 409
    default_message = "Account is not suspended"


class AlreadyPending(IdentityError):
    code = "ALREADY_PENDING"
    http_status = 409
    default_message = "Account deletion is already scheduled"


class NotPending(IdentityError):
    code = "NOT_PENDING"
    http_status = 409
    default_message = "No pending deletion for this account"


class Deactivated(IdentityError):
    code = "DEACTIVATED"
    http_status = 403
    default_message = "Account is deactivated"


class Suspended(IdentityError):
    code = "SUSPENDED"
    http_status = 403
    default_message = "Account is suspended"

    def __init__(self, until: Optional[datetime] = None, reason: Optional[str] = None):
        super().__init__(None, until=until, reason=reason)
        self.until = until
        self.reason = reason


class AccountDeleted(IdentityError):
    code = "ACCOUNT_DELETED"
    http_status = 403
    default_message = "Account has been deleted"


class SamePassword(IdentityError):
    code = "SAME_PASSWORD"
    http_status = 400
    default_message = "New password must be different from the current password"


class PasswordReused(IdentityError):
    code = "PASSWORD_REUSED"
    http_status = 400
    default_message = "New password must not match any of the last 4 passwords"


class ContactNotVerified(IdentityError):
    code = "CONTACT_NOT_VERIFIED"
    http_status = 403

    def __init__(self, channel: str, message: Optional[str] = None):
        super().__init__(message or f"{channel.lower()} is not verified", channel=channel)
        self.channel = channel


class ContactAlreadyVerified(IdentityError):
    code = "CONTACT_ALREADY_VERIFIED"
    http_status = 409

    def __init__(self, channel: str, message: Optional[str] = None):
        super().__init__(message or f"{channel.lower()} is already verified", channel=channel)
        self.channel = channel


class MaxAttemptsReached(IdentityError):
    code = "MAX_ATTEMPTS_REACHED"
    http_status = 429
    default_message = "Maximum verification attempts reached. Please register again."


class DeliveryFailed(IdentityError):
    code = "DELIVERY_FAILED"
    http_status = 502
    default_message = "Failed to send code. Please try again."


class OtpSendFailed(DeliveryFailed):
    code = "OTP_SEND_FAILED"


class InvalidRequest(IdentityError):
    code = "INVALID_REQUEST"
    http_status = 400
    default_message = "Invalid request"


class Internal(IdentityError):
    """Unexpected datastore failure. Details stay in the logs."""

    code = "INTERNAL"
    http_status = 500
    default_message = "Internal error"

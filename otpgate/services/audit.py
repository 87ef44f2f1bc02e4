"""
Structured audit logging for identity lifecycle events.

Never logs codes, passwords or full contacts.
"""
import json
import logging
from typing import Optional

from ..core.clock import utcnow
from ..core.config import settings
from ..utils.contact import mask_contact

logger = logging.getLogger(__name__)


class AuditService:

    @staticmethod
    def _log_audit_event(
        event_type: str,
        outcome: str,
        contact: Optional[str] = None,
        account_id: Optional[str] = None,
        error: Optional[str] = None,
        **kwargs,
    ):
        audit_data = {
            "event_type": event_type,
            "timestamp": utcnow().isoformat() + "Z",
            "outcome": outcome,
            "env": settings.ENV,
        }
        if contact:
            audit_data["contact"] = mask_contact(contact)
        if account_id:
            audit_data["account_id"] = account_id
        if error:
            audit_data["error"] = error
        audit_data.update({k: v for k, v in kwargs.items() if v is not None})

        logger.info(f"[Identity][Audit] {json.dumps(audit_data, default=str)}")

    @staticmethod
    def log_otp_issued(contact: str, channel: str, purpose: str, attempts_today: int):
        AuditService._log_audit_event(
            "otp_issued", "success", contact=contact,
            channel=channel, purpose=purpose, attempts_today=attempts_today,
        )

    @staticmethod
    def log_otp_rate_limited(contact: str, purpose: str):
        AuditService._log_audit_event("otp_issued", "rate_limited", contact=contact, purpose=purpose)

    @staticmethod
    def log_otp_delivery_failed(contact: str, channel: str, purpose: str):
        AuditService._log_audit_event(
            "otp_delivery", "fail", contact=contact, channel=channel, purpose=purpose,
        )

    @staticmethod
    def log_registration_staged(contact: str, channel: str):
        AuditService._log_audit_event("registration_staged", "success", contact=contact, channel=channel)

    @staticmethod
    def log_registration_confirmed(account_id: str, replayed: bool = False):
        AuditService._log_audit_event(
            "registration_confirmed", "success", account_id=account_id, replayed=replayed or None,
        )

    @staticmethod
    def log_login(account_id: Optional[str], method: str, outcome: str, error: Optional[str] = None):
        AuditService._log_audit_event("login", outcome, account_id=account_id, method=method, error=error)

    @staticmethod
    def log_password_changed(account_id: str):
        AuditService._log_audit_event("password_changed", "success", account_id=account_id)

    @staticmethod
    def log_contact_verified(account_id: str, channel: str):
        AuditService._log_audit_event("contact_verified", "success", account_id=account_id, channel=channel)

    @staticmethod
    def log_suspension(account_id: str, action: str, until=None, reason: Optional[str] = None):
        AuditService._log_audit_event(
            "suspension", "success", account_id=account_id, action=action, until=until, reason=reason,
        )

    @staticmethod
    def log_deletion(account_id: str, action: str, mode: Optional[str] = None, scheduled_for=None):
        AuditService._log_audit_event(
            "deletion", "success", account_id=account_id, action=action,
            mode=mode, scheduled_for=scheduled_for,
        )

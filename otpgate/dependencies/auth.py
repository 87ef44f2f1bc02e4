"""
Authentication dependencies.

The bearer token only proves who the caller was at issuance. Every request
re-resolves the account and re-checks its deletion, active and suspension
state, which is the only revocation mechanism.
"""
import hmac
import logging

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from ..core.clock import utcnow
from ..core.config import settings
from ..core.errors import InvalidCredential
from ..db import get_db
from ..models import Account
from ..services import IdentityServices
from .services import get_services

logger = logging.getLogger(__name__)


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
        )
    return auth_header[7:]


def get_current_account(
    request: Request,
    db: Session = Depends(get_db),
    services: IdentityServices = Depends(get_services),
) -> Account:
    """
    Resolve the account behind the bearer token.

    Raises:
        HTTPException 401: missing, invalid or expired token, or unknown account
        HTTPException 403: deleted, deactivated or suspended account
    """
    token = _bearer_token(request)
    try:
        payload = services.credentials.decode(token)
    except InvalidCredential as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=e.message)

    account = services.accounts.get_account(db, payload["sub"])
    if account is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account not found")
    if account.is_deleted:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account has been deleted")
    if not account.active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    if account.is_suspended(utcnow()):
        logger.info(f"[Auth] Rejected request from suspended account {account.public_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "SUSPENDED",
                "until": account.suspended_until.isoformat(),
                "reason": account.suspension_reason,
            },
        )
    return account


def require_admin_key(x_admin_key: str = Header(default="")) -> None:
    """Guard for administrative endpoints (suspension management)."""
    if not settings.ADMIN_API_KEY or not hmac.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")

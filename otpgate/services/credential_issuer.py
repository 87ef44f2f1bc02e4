"""
Bearer credentials for authenticated accounts.

Tokens embed the account's public_id plus the contacts it held at issuance.
The contact claims go stale when they change; consumers must re-resolve the
account by `sub` on every request (see dependencies/auth.py).
"""
import calendar
from datetime import datetime
from typing import Any, Dict, Optional

from jose import jwt, JWTError
from jose.exceptions import ExpiredSignatureError

from ..core.clock import resolve_now
from ..core.config import IdentityConfig, settings
from ..core.errors import InvalidCredential
from ..models import Account


class CredentialIssuer:

    def __init__(
        self,
        config: IdentityConfig,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        issuer: Optional[str] = None,
        audience: Optional[str] = None,
    ):
        self.config = config
        self.secret = secret or settings.JWT_SECRET
        self.algorithm = algorithm or settings.ALGORITHM
        self.issuer = issuer or settings.JWT_ISSUER
        self.audience = audience or settings.JWT_AUDIENCE

    def issue(self, account: Account, now: Optional[datetime] = None) -> str:
        now = resolve_now(now)
        payload = {
            "sub": account.public_id,
            "email": account.email,
            "phone": account.phone,
            "iat": now,
            "exp": now + self.config.credential_expiry,
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def decode(self, token: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Validate signature, issuer, audience and expiry.

        When `now` is given, expiry is checked against it instead of the wall clock.

        Raises:
            InvalidCredential: if the token is malformed, forged or expired
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_exp": now is None},
            )
        except ExpiredSignatureError:
            raise InvalidCredential("Token has expired")
        except JWTError:
            raise InvalidCredential()

        if now is not None:
            exp = payload.get("exp")
            if exp is None or calendar.timegm(resolve_now(now).utctimetuple()) >= exp:
                raise InvalidCredential("Token has expired")

        if not payload.get("sub"):
            raise InvalidCredential("Token is missing subject")
        return payload

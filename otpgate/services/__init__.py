from dataclasses import dataclass
from typing import Optional

from ..core.config import IdentityConfig, settings
from .account_service import AccountService
from .credential_issuer import CredentialIssuer
from .deletion_service import DeletionService
from .hooks import ResourceHook
from .notifier import Notifier, get_notifier
from .otp_ledger import OtpLedger
from .registration_service import RegistrationService


@dataclass
class IdentityServices:
    config: IdentityConfig
    ledger: OtpLedger
    credentials: CredentialIssuer
    registrations: RegistrationService
    accounts: AccountService
    deletions: DeletionService


def build_services(
    config: Optional[IdentityConfig] = None,
    notifier: Optional[Notifier] = None,
    hook: Optional[ResourceHook] = None,
    credentials: Optional[CredentialIssuer] = None,
) -> IdentityServices:
    """Wire the identity services around one config, notifier and hook."""
    config = config or IdentityConfig.from_settings(settings)
    notifier = notifier or get_notifier()
    ledger = OtpLedger(config)
    credentials = credentials or CredentialIssuer(config)
    return IdentityServices(
        config=config,
        ledger=ledger,
        credentials=credentials,
        registrations=RegistrationService(config, ledger, notifier, credentials),
        accounts=AccountService(config, ledger, notifier, credentials, hook=hook),
        deletions=DeletionService(config),
    )


__all__ = ["IdentityServices", "build_services"]

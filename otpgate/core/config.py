from pydantic import BaseModel
import os
import logging
from datetime import timedelta

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "dev-secret-change-me"


class Settings(BaseModel):
    ENV: str = os.getenv("ENV", "dev")  # dev, staging, prod
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./otpgate.db")

    # Credentials
    JWT_SECRET: str = os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)
    ALGORITHM: str = "HS256"
    JWT_ISSUER: str = os.getenv("JWT_ISSUER", "otpgate")
    JWT_AUDIENCE: str = os.getenv("JWT_AUDIENCE", "otpgate-api")
    CREDENTIAL_EXPIRE_DAYS: int = int(os.getenv("CREDENTIAL_EXPIRE_DAYS", "7"))

    # OTP
    OTP_LENGTH: int = int(os.getenv("OTP_LENGTH", "6"))
    OTP_EXPIRE_MINUTES: int = int(os.getenv("OTP_EXPIRE_MINUTES", "10"))
    OTP_DAILY_LIMIT: int = int(os.getenv("OTP_DAILY_LIMIT", "3"))  # per contact, per UTC day
    REGISTRATION_MAX_ATTEMPTS: int = int(os.getenv("REGISTRATION_MAX_ATTEMPTS", "3"))
    OTP_MAX_VERIFY_ATTEMPTS: int = int(os.getenv("OTP_MAX_VERIFY_ATTEMPTS", "5"))  # wrong guesses per issued code
    OTP_RETENTION_DAYS: int = int(os.getenv("OTP_RETENTION_DAYS", "7"))

    # Deletion lifecycle
    DELETION_MAX_DAYS: int = int(os.getenv("DELETION_MAX_DAYS", "30"))
    DELETION_RETENTION_DAYS: int = int(os.getenv("DELETION_RETENTION_DAYS", "30"))

    # Collapse "not registered" and "wrong password" into one error on login
    UNIFORM_AUTH_ERRORS: bool = os.getenv("UNIFORM_AUTH_ERRORS", "false").lower() == "true"

    # Notifier
    NOTIFIER_PROVIDER: str = os.getenv("NOTIFIER_PROVIDER", "console")  # console, twilio, sendgrid, routing
    NOTIFIER_TIMEOUT_SECONDS: float = float(os.getenv("NOTIFIER_TIMEOUT_SECONDS", "10"))
    TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
    TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
    OTP_FROM_NUMBER: str = os.getenv("OTP_FROM_NUMBER", "")
    SENDGRID_API_KEY: str = os.getenv("SENDGRID_API_KEY", "")
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "no-reply@otpgate.local")
    EMAIL_FROM_NAME: str = os.getenv("EMAIL_FROM_NAME", "otpgate")

    DEFAULT_PHONE_REGION: str = os.getenv("DEFAULT_PHONE_REGION", "US")
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")


settings = Settings()

LOCAL_ENVS = {"local", "dev", "test"}


def is_local_env() -> bool:
    """Environments where the console notifier may print codes."""
    return settings.ENV.lower() in LOCAL_ENVS


class IdentityConfig(BaseModel):
    """Limits and windows handed to the identity services at construction."""

    otp_length: int = 6
    otp_expiry: timedelta = timedelta(minutes=10)
    otp_daily_limit: int = 3
    registration_max_attempts: int = 3
    otp_max_verify_attempts: int = 5
    credential_expiry: timedelta = timedelta(days=7)
    deletion_max_days: int = 30
    deletion_retention_days: int = 30
    otp_retention_days: int = 7
    uniform_auth_errors: bool = False
    # Window in which a retried confirm may return the account it already created
    promotion_replay_window: timedelta = timedelta(minutes=10)
    default_phone_region: str = "US"

    @classmethod
    def from_settings(cls, s: Settings) -> "IdentityConfig":
        return cls(
            otp_length=s.OTP_LENGTH,
            otp_expiry=timedelta(minutes=s.OTP_EXPIRE_MINUTES),
            otp_daily_limit=s.OTP_DAILY_LIMIT,
            registration_max_attempts=s.REGISTRATION_MAX_ATTEMPTS,
            otp_max_verify_attempts=s.OTP_MAX_VERIFY_ATTEMPTS,
            credential_expiry=timedelta(days=s.CREDENTIAL_EXPIRE_DAYS),
            deletion_max_days=s.DELETION_MAX_DAYS,
            deletion_retention_days=s.DELETION_RETENTION_DAYS,
            otp_retention_days=s.OTP_RETENTION_DAYS,
            uniform_auth_errors=s.UNIFORM_AUTH_ERRORS,
            promotion_replay_window=timedelta(minutes=s.OTP_EXPIRE_MINUTES),
            default_phone_region=s.DEFAULT_PHONE_REGION,
        )


def validate_config():
    """Validate configuration at startup. Raises ValueError if invalid."""
    if not 4 <= settings.OTP_LENGTH <= 10:
        error_msg = f"OTP_LENGTH must be between 4 and 10, got {settings.OTP_LENGTH}"
        logger.error(error_msg)
        raise ValueError(error_msg)

    if settings.OTP_DAILY_LIMIT < 1:
        error_msg = "OTP_DAILY_LIMIT must be at least 1"
        logger.error(error_msg)
        raise ValueError(error_msg)

    if settings.OTP_MAX_VERIFY_ATTEMPTS < 1:
        error_msg = "OTP_MAX_VERIFY_ATTEMPTS must be at least 1"
        logger.error(error_msg)
        raise ValueError(error_msg)

    if settings.ENV == "prod":
        if settings.JWT_SECRET == DEFAULT_JWT_SECRET:
            error_msg = "JWT_SECRET must be set to a secure random value in production"
            logger.error(error_msg)
            raise ValueError(error_msg)

        if settings.NOTIFIER_PROVIDER == "console":
            error_msg = "NOTIFIER_PROVIDER=console is not allowed in production"
            logger.error(error_msg)
            raise ValueError(error_msg)

        missing = []
        if settings.NOTIFIER_PROVIDER in ["twilio", "routing"]:
            if not settings.TWILIO_ACCOUNT_SID:
                missing.append("TWILIO_ACCOUNT_SID")
            if not settings.TWILIO_AUTH_TOKEN:
                missing.append("TWILIO_AUTH_TOKEN")
            if not settings.OTP_FROM_NUMBER:
                missing.append("OTP_FROM_NUMBER")
        if settings.NOTIFIER_PROVIDER in ["sendgrid", "routing"]:
            if not settings.SENDGRID_API_KEY:
                missing.append("SENDGRID_API_KEY")
        if missing:
            error_msg = f"Notifier provider {settings.NOTIFIER_PROVIDER} missing required configuration: {', '.join(missing)}"
            logger.error(error_msg)
            raise ValueError(error_msg)

    logger.info(f"Configuration validated (env: {settings.ENV}, notifier: {settings.NOTIFIER_PROVIDER})")

import secrets
from typing import Optional

from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    # Scrubbed accounts carry no hash
    if not hashed:
        return False
    return pwd_context.verify(plain, hashed)


def generate_otp_code(length: int = 6) -> str:
    """Generate a random numeric code of the given length"""
    return str(secrets.randbelow(10**length)).zfill(length)


def generate_registration_id() -> str:
    return secrets.token_urlsafe(24)


def generate_verification_id() -> str:
    return secrets.token_urlsafe(16)

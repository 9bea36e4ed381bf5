# src/UAA/utils.py
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

import structlog
from cryptography.fernet import Fernet, InvalidToken
from email_validator import EmailNotValidError, validate_email
from jose import JWTError, jwt
from passlib.context import CryptContext

from .config import BCRYPT_ROUNDS, TOTP_ENCRYPTION_KEY, AuthSettings
from .errors import ValidationError

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]

if not TOTP_ENCRYPTION_KEY:
    # dev fallback (not for production)
    logger.warning("totp_encryption_key_missing_using_ephemeral_key")
    TOTP_ENCRYPTION_KEY = Fernet.generate_key().decode()

fernet = Fernet(TOTP_ENCRYPTION_KEY.encode())

PASSWORD_POLICY_MESSAGE = (
    "Password must be at least 8 characters long and contain uppercase, "
    "lowercase, number, and special character"
)


def utcnow() -> datetime:
    """Timezone-aware UTC timestamp; the tables store and return UTC."""
    return datetime.now(timezone.utc)


def generate_token_value(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)


# --- Password utilities ---
@lru_cache(maxsize=8)
def get_pwd_context(rounds: int = BCRYPT_ROUNDS) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    return get_pwd_context(rounds).hash(password)


def verify_password(plain: str, hashed: str, rounds: int = BCRYPT_ROUNDS) -> bool:
    try:
        return get_pwd_context(rounds).verify(plain, hashed)
    except (ValueError, TypeError) as e:
        logger.warning("password_verify_failed", error=str(e))
        return False


# Precomputed so unknown accounts cost the same bcrypt round as known ones.
_DUMMY_HASHES: Dict[int, str] = {}


def burn_password_check(plain: str, rounds: int = BCRYPT_ROUNDS) -> None:
    if rounds not in _DUMMY_HASHES:
        _DUMMY_HASHES[rounds] = hash_password(secrets.token_hex(16), rounds)
    verify_password(plain, _DUMMY_HASHES[rounds], rounds)


def assert_password_policy(password: str) -> None:
    if (
        len(password) < 8
        or not any(c.isupper() for c in password)
        or not any(c.islower() for c in password)
        or not any(c.isdigit() for c in password)
        or not re.search(r"\W", password)
    ):
        raise ValidationError(PASSWORD_POLICY_MESSAGE)


def assert_valid_email(email: str) -> str:
    """Validate with the same rules as the ``EmailStr`` response field; returns the normalized address."""
    try:
        result = validate_email(email or "", check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Please provide a valid email address: {e}")
    return result.normalized


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


# --- JWT helpers ---
def create_access_token(
    settings: AuthSettings,
    *,
    user_id: str,
    username: str,
    role: str,
    session_id: str,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    jti = str(uuid.uuid4())
    issued = now or utcnow()
    expire = issued + timedelta(seconds=settings.access_token_ttl)
    payload = {
        "sub": user_id,
        "username": username,
        "role": role,
        "sid": session_id,
        "jti": jti,
        "type": "access",
        "iat": int(issued.timestamp()),
        "exp": int(expire.timestamp()),
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    logger.debug("create_access_token", sub=user_id, jti=jti, exp=payload["exp"])
    return {"token": token, "jti": jti, "exp": payload["exp"]}


def decode_access_token(token: str, settings: AuthSettings) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.warning("token_decode_failed", error=str(e))
        raise
    if payload.get("type") != "access":
        raise JWTError("invalid token type")
    return payload


# --- Secret encryption at rest ---
def encrypt_secret(plaintext: str) -> str:
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_secret(ciphertext: str) -> Optional[str]:
    try:
        return fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        logger.error("secret_decrypt_failed")
        return None

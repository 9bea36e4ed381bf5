# src/UAA/config.py
import os
from dataclasses import dataclass, field

# Config (env)
SECRET_KEY = os.getenv("SECRET_KEY", "change_me_now")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(24 * 60)))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

EMAIL_VERIFICATION_TTL_SECONDS = int(os.getenv("EMAIL_VERIFICATION_TTL_SECONDS", str(24 * 3600)))
PASSWORD_RESET_TTL_SECONDS = int(os.getenv("PASSWORD_RESET_TTL_SECONDS", "3600"))
TWO_FACTOR_CHALLENGE_TTL_SECONDS = int(os.getenv("TWO_FACTOR_CHALLENGE_TTL_SECONDS", "300"))
TOKEN_RETENTION_SECONDS = int(os.getenv("TOKEN_RETENTION_SECONDS", str(24 * 3600)))

# brute-force constants
MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", "5"))
LOGIN_ATTEMPT_WINDOW_SECONDS = int(os.getenv("LOGIN_ATTEMPT_WINDOW_SECONDS", "900"))
RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "memory").lower()

SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", str(24 * 3600)))
REQUIRE_EMAIL_VERIFICATION = os.getenv("REQUIRE_EMAIL_VERIFICATION", "true").lower() == "true"
REQUIRE_TWO_FACTOR = os.getenv("REQUIRE_TWO_FACTOR", "false").lower() == "true"

TOTP_ISSUER = os.getenv("TOTP_ISSUER", "NeuroCore AI")
TOTP_WINDOW_STEPS = int(os.getenv("TOTP_WINDOW_STEPS", "2"))
BACKUP_CODE_COUNT = int(os.getenv("BACKUP_CODE_COUNT", "8"))
TOTP_ENCRYPTION_KEY = os.getenv("TOTP_ENCRYPTION_KEY")  # must be a base64 key for Fernet, set in prod

APP_URL = os.getenv("APP_URL", "http://localhost:5000")


@dataclass
class AuthSettings:
    jwt_secret: str = SECRET_KEY
    jwt_algorithm: str = ALGORITHM
    access_token_ttl: int = ACCESS_TOKEN_EXPIRE_MINUTES * 60
    bcrypt_rounds: int = BCRYPT_ROUNDS

    email_verification_ttl: int = EMAIL_VERIFICATION_TTL_SECONDS
    password_reset_ttl: int = PASSWORD_RESET_TTL_SECONDS
    two_factor_challenge_ttl: int = TWO_FACTOR_CHALLENGE_TTL_SECONDS
    token_retention: int = TOKEN_RETENTION_SECONDS

    rate_limit_attempts: int = MAX_LOGIN_ATTEMPTS
    rate_limit_window: int = LOGIN_ATTEMPT_WINDOW_SECONDS

    session_ttl: int = SESSION_TTL_SECONDS
    require_email_verification: bool = REQUIRE_EMAIL_VERIFICATION
    require_two_factor: bool = REQUIRE_TWO_FACTOR

    totp_issuer: str = TOTP_ISSUER
    totp_window_steps: int = TOTP_WINDOW_STEPS
    backup_code_count: int = BACKUP_CODE_COUNT

    app_url: str = APP_URL
    default_preferences: dict = field(default_factory=lambda: {
        "theme": "light",
        "language": "auto",
        "enableNotifications": True,
        "showTimestamps": False,
    })


settings = AuthSettings()

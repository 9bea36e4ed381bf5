# src/UAA/services.py
import asyncio
import functools
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

import structlog
from jose import JWTError
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from src.services.mail_queue import MailQueue

from . import totp, utils
from .config import AuthSettings, settings as default_settings
from .errors import (
    AccountNotActivatedError,
    AlreadyEnabledError,
    AuthenticationError,
    ConflictError,
    InternalError,
    InvalidCredentialsError,
    InvalidOrExpiredTokenError,
    InvalidTwoFactorError,
    RateLimitedError,
    SetupNotFoundError,
    ValidationError,
)
from .models import TokenKind, TwoFactorCredential, User
from .rate_limiter import RateLimiter
from .repository import EMAIL_TAKEN, USERNAME_TAKEN, TwoFactorRepository, UserRepository
from .sessions import SessionManager
from .tokens import TokenLedger

logger = structlog.get_logger(__name__)

PASSWORD_RESET_REQUESTED = "If an account with this email exists, you will receive password reset instructions."


@dataclass
class RegisterResult:
    user: User
    message: str
    access_token: Optional[str] = None
    session_id: Optional[str] = None


@dataclass
class LoginResult:
    user: User
    access_token: str
    session_id: str
    expires_at: int
    message: str = "Login successful"
    two_factor_required_by_policy: bool = False


@dataclass
class RequiresTwoFactor:
    challenge_token: str
    message: str = "Two-factor authentication required"


@dataclass
class TwoFactorSetup:
    secret: str
    provisioning_uri: str
    backup_codes: List[str] = field(default_factory=list)
    message: str = "Two-factor authentication setup initiated. Please verify with your authenticator app."


def _describe_ttl(seconds: int) -> str:
    if seconds % 3600 == 0:
        hours = seconds // 3600
        return "1 hour" if hours == 1 else f"{hours} hours"
    minutes = max(1, seconds // 60)
    return "1 minute" if minutes == 1 else f"{minutes} minutes"


def _store_guard(fn):
    """Surface store failures as an opaque InternalError, after logging them."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.exception("auth_store_failure", operation=fn.__name__, error=str(e))
            await self.session.rollback()
            raise InternalError() from e

    return wrapper


class AuthService:
    """
    Registration, login and token-backed account flows.

    Collaborators (limiter, mail queue, clock) are injected so a process can
    share one limiter across requests and tests can drive time explicitly.
    """

    def __init__(
        self,
        session: AsyncSession,
        rate_limiter: RateLimiter,
        settings: Optional[AuthSettings] = None,
        mail_queue: Optional[MailQueue] = None,
        clock: utils.Clock = utils.utcnow,
    ):
        self.session = session
        self.settings = settings or default_settings
        self.rate_limiter = rate_limiter
        self.clock = clock
        self.users = UserRepository(session)
        self.two_factor = TwoFactorRepository(session)
        self.ledger = TokenLedger(session, clock)
        self.sessions = SessionManager(session, clock)
        self.mail = mail_queue or MailQueue(session, clock=clock)

    # --- helpers ---
    async def _hash(self, password: str) -> str:
        return await asyncio.to_thread(utils.hash_password, password, self.settings.bcrypt_rounds)

    async def _check_password(self, password: str, hashed: Optional[str]) -> bool:
        if hashed is None:
            await asyncio.to_thread(utils.burn_password_check, password, self.settings.bcrypt_rounds)
            return False
        return await asyncio.to_thread(utils.verify_password, password, hashed, self.settings.bcrypt_rounds)

    async def _open_session(self, user: User) -> tuple:
        session_id = await self.sessions.create(user.id, self.settings.session_ttl)
        access = utils.create_access_token(
            self.settings,
            user_id=str(user.id),
            username=user.username,
            role=user.role,
            session_id=session_id,
            now=self.clock(),
        )
        await self.sessions.attach_token(session_id, access["jti"])
        return access, session_id

    def _link(self, path: str, token: Optional[str] = None) -> str:
        base = self.settings.app_url.rstrip("/")
        return f"{base}{path}?token={token}" if token else f"{base}{path}"

    async def _send_welcome(self, user: User) -> None:
        await self.mail.enqueue_template("welcome", user.email, {
            "name": user.display_name or user.username,
            "dashboardUrl": self._link("/dashboard"),
            "supportEmail": self.mail.from_address,
        })

    # --- registration ---
    @_store_guard
    async def register(self, username: str, email: str, password: str, display_name: Optional[str] = None) -> RegisterResult:
        email = utils.normalize_email(email)
        username = (username or "").strip()
        utils.assert_password_policy(password)
        email = utils.assert_valid_email(email)
        if not username:
            raise ValidationError("Please choose a username")

        if await self.users.get_by_email(email):
            logger.debug("register_email_exists", email=email)
            raise ConflictError(EMAIL_TAKEN)
        if await self.users.get_by_username(username):
            logger.debug("register_username_exists", username=username)
            raise ConflictError(USERNAME_TAKEN)

        hashed = await self._hash(password)
        require_verification = self.settings.require_email_verification
        user = User(
            email=email,
            username=username,
            hashed_password=hashed,
            display_name=display_name or username,
            is_active=not require_verification,
            preferences=dict(self.settings.default_preferences),
            created_at=self.clock(),
        )
        user = await self.users.create(user)
        logger.info("user_registered", user_id=str(user.id), email=user.email, verification_required=require_verification)

        if require_verification:
            token = await self.ledger.issue(user.id, TokenKind.EMAIL_VERIFICATION, self.settings.email_verification_ttl)
            await self.mail.enqueue_template("email_verification", user.email, {
                "name": user.display_name,
                "verificationUrl": self._link("/auth/verify", token),
                "expiresIn": _describe_ttl(self.settings.email_verification_ttl),
            })
            return RegisterResult(
                user=user,
                message="Account created successfully. Please check your email to verify your account.",
            )

        await self._send_welcome(user)
        access, session_id = await self._open_session(user)
        return RegisterResult(
            user=user,
            message="Account created successfully. Welcome to NeuroCore AI!",
            access_token=access["token"],
            session_id=session_id,
        )

    # --- login ---
    @_store_guard
    async def login(
        self,
        email: str,
        password: str,
        challenge_token: Optional[str] = None,
        code: Optional[str] = None,
        backup_code: Optional[str] = None,
    ):
        """
        Returns a LoginResult, or RequiresTwoFactor when the account has 2FA
        enabled and no second factor was supplied. Raises on every failure.
        """
        identifier = utils.normalize_email(email)

        # RATE_CHECK
        if not await self.rate_limiter.allow(identifier):
            logger.warning("login_rate_limited", identifier=identifier)
            raise RateLimitedError(retry_after=self.settings.rate_limit_window)

        # CREDENTIAL_CHECK
        user = await self.users.get_by_email(identifier)
        if not await self._check_password(password, user.hashed_password if user else None):
            attempts = await self.rate_limiter.record_failure(identifier)
            logger.info("auth_failed_invalid_credentials", identifier=identifier, attempts=attempts)
            raise InvalidCredentialsError()

        # ACTIVE_CHECK
        if not user.is_active:
            logger.info("auth_failed_not_activated", user_id=str(user.id))
            raise AccountNotActivatedError()

        # TWO_FACTOR_CHECK
        credential = await self.two_factor.get_enabled(user.id)
        if credential is not None:
            if not code and not backup_code:
                challenge = await self.ledger.issue(user.id, TokenKind.TWO_FACTOR_CHALLENGE, self.settings.two_factor_challenge_ttl)
                logger.info("two_factor_challenge_issued", user_id=str(user.id))
                return RequiresTwoFactor(challenge_token=challenge)
            await self._check_second_factor(user, credential, identifier, challenge_token, code, backup_code)

        # SESSION_CREATED
        access, session_id = await self._open_session(user)
        await self.rate_limiter.clear(identifier)
        await self.users.update_last_login(user, self.clock())
        logger.info("auth_success", user_id=str(user.id), email=user.email)
        return LoginResult(
            user=user,
            access_token=access["token"],
            session_id=session_id,
            expires_at=access["exp"],
            two_factor_required_by_policy=self.settings.require_two_factor and credential is None,
        )

    async def _check_second_factor(
        self,
        user: User,
        credential: TwoFactorCredential,
        identifier: str,
        challenge_token: Optional[str],
        code: Optional[str],
        backup_code: Optional[str],
    ) -> None:
        record = await self.ledger.verify(challenge_token, TokenKind.TWO_FACTOR_CHALLENGE) if challenge_token else None
        ok = record is not None and record.user_id == user.id

        if ok and code:
            secret = utils.decrypt_secret(credential.secret_enc)
            ok = secret is not None and totp.verify_code(secret, code, self.settings.totp_window_steps, when=self.clock())
            ok = ok and await self.ledger.consume(challenge_token)
        elif ok:
            ok = await self.ledger.consume(challenge_token)
            ok = ok and await self.two_factor.consume_backup_code(credential.id, backup_code, self.clock())
            if ok:
                logger.info("backup_code_used", user_id=str(user.id))

        if not ok:
            attempts = await self.rate_limiter.record_failure(identifier)
            logger.info("auth_failed_two_factor", user_id=str(user.id), attempts=attempts)
            raise InvalidTwoFactorError()

        await self.two_factor.touch_last_used(credential.id, self.clock())

    @_store_guard
    async def logout(self, session_id: str) -> bool:
        removed = await self.sessions.invalidate(session_id)
        logger.info("logout", session_removed=removed)
        return removed

    @_store_guard
    async def authenticate_bearer(self, token: str) -> User:
        """Resolve a bearer token to its user, requiring the bound session to be alive."""
        try:
            payload = utils.decode_access_token(token, self.settings)
            user_id = uuid.UUID(payload["sub"])
        except (JWTError, KeyError, ValueError):
            raise AuthenticationError("invalid token")
        session = await self.sessions.get(payload.get("sid", ""))
        if session is None or session.user_id != user_id:
            raise AuthenticationError("session expired or revoked")
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise AuthenticationError("user not found")
        return user

    # --- email verification ---
    @_store_guard
    async def verify_email(self, token: str) -> str:
        record = await self.ledger.verify(token, TokenKind.EMAIL_VERIFICATION)
        if record is None or not await self.ledger.consume(token):
            raise InvalidOrExpiredTokenError("Invalid or expired verification token")
        await self.users.activate(record.user_id)
        user = await self.users.get_by_id(record.user_id)
        logger.info("email_verified", user_id=str(record.user_id))
        if user is not None:
            await self._send_welcome(user)
        return "Email verified successfully. Your account is now active."

    # --- password reset ---
    @_store_guard
    async def request_password_reset(self, email: str) -> str:
        user = await self.users.get_by_email(utils.normalize_email(email))
        if user is None:
            logger.debug("password_reset_unknown_email")
            return PASSWORD_RESET_REQUESTED

        token = await self.ledger.issue(user.id, TokenKind.PASSWORD_RESET, self.settings.password_reset_ttl)
        await self.mail.enqueue_template("password_reset", user.email, {
            "name": user.display_name or user.username,
            "resetUrl": self._link("/auth/reset", token),
            "expiresIn": _describe_ttl(self.settings.password_reset_ttl),
        })
        logger.info("password_reset_requested", user_id=str(user.id))
        return PASSWORD_RESET_REQUESTED

    @_store_guard
    async def reset_password(self, token: str, new_password: str) -> str:
        utils.assert_password_policy(new_password)
        record = await self.ledger.verify(token, TokenKind.PASSWORD_RESET)
        if record is None or not await self.ledger.consume(token):
            raise InvalidOrExpiredTokenError("Invalid or expired reset token")

        hashed = await self._hash(new_password)
        await self.users.update_password(record.user_id, hashed)
        # sessions go last: a crash before this leaves old sessions alive, never the old password
        await self.sessions.invalidate_all(record.user_id)
        logger.info("password_reset_completed", user_id=str(record.user_id))
        return "Password reset successfully. Please log in with your new password."

    # --- two-factor enrollment ---
    @_store_guard
    async def setup_two_factor(self, user_id: uuid.UUID) -> TwoFactorSetup:
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise AuthenticationError("user not found")
        if await self.two_factor.get_enabled(user_id):
            raise AlreadyEnabledError()

        generated = totp.generate_secret(user.email, self.settings.totp_issuer)
        backup_codes = totp.generate_backup_codes(self.settings.backup_code_count)
        await self.two_factor.create_pending(user_id, utils.encrypt_secret(generated.base32_secret), backup_codes)
        logger.info("two_factor_setup_started", user_id=str(user_id))
        return TwoFactorSetup(
            secret=generated.base32_secret,
            provisioning_uri=generated.provisioning_uri,
            backup_codes=backup_codes,
        )

    @_store_guard
    async def enable_two_factor(self, user_id: uuid.UUID, code: str) -> str:
        if await self.two_factor.get_enabled(user_id):
            raise AlreadyEnabledError()
        pending = await self.two_factor.get_pending(user_id)
        if pending is None:
            raise SetupNotFoundError()

        secret = utils.decrypt_secret(pending.secret_enc)
        if secret is None or not totp.verify_code(secret, code, self.settings.totp_window_steps, when=self.clock()):
            logger.info("two_factor_enable_bad_code", user_id=str(user_id))
            raise InvalidTwoFactorError("Invalid verification code. Please try again.")

        if not await self.two_factor.enable(pending.id):
            raise SetupNotFoundError()
        logger.info("two_factor_enabled", user_id=str(user_id))
        return "Two-factor authentication enabled successfully"


async def sweep_expired(session: AsyncSession, retention_seconds: int, clock: utils.Clock = utils.utcnow) -> dict:
    """Drop used/expired tokens and expired sessions."""
    tokens = await TokenLedger(session, clock).sweep(retention_seconds)
    sessions = await SessionManager(session, clock).purge_expired()
    return {"tokens": tokens, "sessions": sessions}

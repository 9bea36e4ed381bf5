# src/UAA/errors.py
# Generic messages never reveal whether an account or token exists.

from typing import Optional


class AuthError(Exception):
    """Base exception for the identity core"""

    default_message = "authentication error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError, ValueError):
    """Bad input shape (password policy, email syntax)"""

    default_message = "invalid input"


class ConflictError(AuthError):
    """Username or email already registered"""

    default_message = "account already exists"


class AuthenticationError(AuthError):
    pass


class InvalidCredentialsError(AuthenticationError):
    default_message = "Invalid email or password"


class InvalidOrExpiredTokenError(AuthenticationError):
    default_message = "Invalid or expired token"


class InvalidTwoFactorError(AuthenticationError):
    default_message = "Invalid two-factor authentication code"


class RateLimitedError(AuthenticationError):
    """Too many failed attempts for this identifier"""

    default_message = "Too many login attempts. Please try again later."

    def __init__(self, message: Optional[str] = None, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(message)


class AccountNotActivatedError(AuthError):
    default_message = "Account is not activated. Please check your email for verification instructions."


class AlreadyEnabledError(AuthError):
    default_message = "Two-factor authentication is already enabled for this account"


class SetupNotFoundError(AuthError):
    default_message = "Two-factor authentication setup not found. Please start setup again."


class InternalError(AuthError):
    """Infrastructure failure; details are logged, never returned"""

    default_message = "An internal error occurred. Please try again."

# src/UAA/models.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional
from datetime import datetime
from enum import Enum
import uuid
from sqlalchemy import String, JSON

from .utils import utcnow


class TokenKind(str, Enum):
    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"
    TWO_FACTOR_CHALLENGE = "two_factor_challenge"


class User(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    email: str = Field(sa_column=Column(String, unique=True, index=True, nullable=False))
    username: str = Field(sa_column=Column(String, unique=True, index=True, nullable=False))
    hashed_password: str
    display_name: Optional[str] = None
    role: str = Field(default="user")
    is_active: bool = Field(default=False)
    preferences: dict = Field(default_factory=dict, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
    last_login: Optional[datetime] = None


class AuthToken(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    token_value: str = Field(sa_column=Column(String, unique=True, index=True, nullable=False))
    kind: str = Field(index=True)
    expires_at: datetime
    is_used: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow)


class TwoFactorCredential(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    secret_enc: str  # fernet(base32 seed)
    is_enabled: bool = Field(default=False, index=True)
    last_used_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class BackupCode(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    credential_id: uuid.UUID = Field(foreign_key="twofactorcredential.id", index=True)
    code_hash: str = Field(index=True)  # sha256 hex
    used_at: Optional[datetime] = None


class UserSession(SQLModel, table=True):
    id: str = Field(primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    expires_at: datetime
    attached_token: Optional[str] = None  # jti of the bearer token
    created_at: datetime = Field(default_factory=utcnow)

# src/UAA/schemas.py
from pydantic import BaseModel, EmailStr
from typing import List, Optional
import uuid
from datetime import datetime


class UserCreate(BaseModel):
    email: str  # syntax is checked by the service so errors share one message format
    username: str
    password: str
    display_name: Optional[str] = None


class UserLogin(BaseModel):
    email: str
    password: str
    challenge_token: Optional[str] = None
    code: Optional[str] = None
    backup_code: Optional[str] = None


class UserRead(BaseModel):
    id: uuid.UUID
    email: EmailStr
    username: str
    display_name: Optional[str] = None
    role: str
    is_active: bool
    preferences: dict = {}
    created_at: datetime


class RegisterResponse(BaseModel):
    user: UserRead
    message: str
    access_token: Optional[str] = None
    token_type: Optional[str] = None


class LoginResponse(BaseModel):
    message: str
    requires_two_factor: bool = False
    challenge_token: Optional[str] = None
    access_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[int] = None
    expires_at: Optional[int] = None
    two_factor_required: bool = False
    user: Optional[UserRead] = None


class TokenIn(BaseModel):
    token: str


class PasswordResetRequest(BaseModel):
    email: str


class PasswordResetConfirm(BaseModel):
    token: str
    new_password: str


class TwoFactorSetupResponse(BaseModel):
    secret: str
    provisioning_uri: str
    backup_codes: List[str]
    message: str


class TwoFactorEnable(BaseModel):
    code: str


class MessageResponse(BaseModel):
    message: str

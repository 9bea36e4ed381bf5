# src/UAA/repository.py
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlmodel import select
from sqlalchemy import update, delete
from sqlalchemy.exc import IntegrityError
from typing import List, Optional
import hashlib
import uuid
from datetime import datetime
import structlog

from .errors import ConflictError
from .models import User, TwoFactorCredential, BackupCode

logger = structlog.get_logger(__name__)

EMAIL_TAKEN = "An account with this email already exists"
USERNAME_TAKEN = "This username is already taken"


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_email(self, email: str) -> Optional[User]:
        q = select(User).where(User.email == email)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def get_by_username(self, username: str) -> Optional[User]:
        q = select(User).where(User.username == username)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def get_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        q = select(User).where(User.id == user_id)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def create(self, user: User) -> User:
        """Insert a user; unique index violations surface as ConflictError."""
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            logger.info("register_unique_violation", email=user.email, username=user.username)
            if await self.get_by_email(user.email):
                raise ConflictError(EMAIL_TAKEN)
            raise ConflictError(USERNAME_TAKEN)
        await self.session.refresh(user)
        return user

    async def activate(self, user_id: uuid.UUID) -> bool:
        q = update(User).where(User.id == user_id).values(is_active=True)
        res = await self.session.execute(q)
        await self.session.commit()
        return res.rowcount == 1

    async def update_password(self, user_id: uuid.UUID, hashed_password: str) -> bool:
        q = update(User).where(User.id == user_id).values(hashed_password=hashed_password)
        res = await self.session.execute(q)
        await self.session.commit()
        return res.rowcount == 1

    async def update_last_login(self, user: User, when: datetime) -> User:
        user.last_login = when
        self.session.add(user)
        await self.session.commit()
        await self.session.refresh(user)
        return user


def hash_backup_code(code: str) -> str:
    return hashlib.sha256(code.strip().upper().encode()).hexdigest()


class TwoFactorRepository:
    """Storage for TOTP credentials and their single-use backup codes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_enabled(self, user_id: uuid.UUID) -> Optional[TwoFactorCredential]:
        q = select(TwoFactorCredential).where(
            TwoFactorCredential.user_id == user_id,
            TwoFactorCredential.is_enabled == True,  # noqa: E712
        )
        res = await self.session.execute(q)
        return res.scalars().first()

    async def get_pending(self, user_id: uuid.UUID) -> Optional[TwoFactorCredential]:
        q = (
            select(TwoFactorCredential)
            .where(
                TwoFactorCredential.user_id == user_id,
                TwoFactorCredential.is_enabled == False,  # noqa: E712
            )
            .order_by(TwoFactorCredential.created_at.desc())
        )
        res = await self.session.execute(q)
        return res.scalars().first()

    async def _pending_ids(self, user_id: uuid.UUID) -> List[uuid.UUID]:
        q = select(TwoFactorCredential.id).where(
            TwoFactorCredential.user_id == user_id,
            TwoFactorCredential.is_enabled == False,  # noqa: E712
        )
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def create_pending(
        self, user_id: uuid.UUID, secret_enc: str, backup_codes: List[str]
    ) -> TwoFactorCredential:
        """Replace any earlier pending setup with a fresh disabled credential."""
        stale = await self._pending_ids(user_id)
        if stale:
            await self.session.execute(delete(BackupCode).where(BackupCode.credential_id.in_(stale)))
            await self.session.execute(delete(TwoFactorCredential).where(TwoFactorCredential.id.in_(stale)))
            logger.debug("two_factor_pending_replaced", user_id=str(user_id), replaced=len(stale))

        cred = TwoFactorCredential(user_id=user_id, secret_enc=secret_enc, is_enabled=False)
        self.session.add(cred)
        await self.session.flush()
        for code in backup_codes:
            self.session.add(BackupCode(credential_id=cred.id, code_hash=hash_backup_code(code)))
        await self.session.commit()
        await self.session.refresh(cred)
        return cred

    async def enable(self, credential_id: uuid.UUID) -> bool:
        q = (
            update(TwoFactorCredential)
            .where(
                TwoFactorCredential.id == credential_id,
                TwoFactorCredential.is_enabled == False,  # noqa: E712
            )
            .values(is_enabled=True)
        )
        res = await self.session.execute(q)
        await self.session.commit()
        return res.rowcount == 1

    async def touch_last_used(self, credential_id: uuid.UUID, when: datetime) -> None:
        q = update(TwoFactorCredential).where(TwoFactorCredential.id == credential_id).values(last_used_at=when)
        await self.session.execute(q)
        await self.session.commit()

    async def consume_backup_code(self, credential_id: uuid.UUID, code: str, when: datetime) -> bool:
        q = select(BackupCode.id).where(
            BackupCode.credential_id == credential_id,
            BackupCode.code_hash == hash_backup_code(code),
            BackupCode.used_at.is_(None),
        )
        res = await self.session.execute(q)
        code_id = res.scalars().first()
        if code_id is None:
            return False
        q = (
            update(BackupCode)
            .where(BackupCode.id == code_id, BackupCode.used_at.is_(None))
            .values(used_at=when)
        )
        res = await self.session.execute(q)
        await self.session.commit()
        return res.rowcount == 1

    async def remaining_backup_codes(self, credential_id: uuid.UUID) -> int:
        q = select(BackupCode.id).where(
            BackupCode.credential_id == credential_id,
            BackupCode.used_at.is_(None),
        )
        res = await self.session.execute(q)
        return len(res.scalars().all())

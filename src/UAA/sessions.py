# src/UAA/sessions.py
from datetime import timedelta
from typing import Optional
import secrets
import uuid

import structlog
from sqlalchemy import delete
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from .models import UserSession
from .utils import Clock, utcnow

logger = structlog.get_logger(__name__)


class SessionManager:
    """Server-side session rows. Expiry is checked on read; nothing refreshes a session."""

    def __init__(self, session: AsyncSession, clock: Clock = utcnow):
        self.session = session
        self.clock = clock

    async def create(self, user_id: uuid.UUID, ttl_seconds: int, attached_token: Optional[str] = None) -> str:
        session_id = secrets.token_hex(32)
        now = self.clock()
        row = UserSession(
            id=session_id,
            user_id=user_id,
            expires_at=now + timedelta(seconds=ttl_seconds),
            attached_token=attached_token,
            created_at=now,
        )
        self.session.add(row)
        await self.session.commit()
        logger.info("session_created", user_id=str(user_id), ttl=ttl_seconds)
        return session_id

    async def get(self, session_id: str) -> Optional[UserSession]:
        q = select(UserSession).where(UserSession.id == session_id, UserSession.expires_at > self.clock())
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def attach_token(self, session_id: str, jti: str) -> None:
        row = await self.session.get(UserSession, session_id)
        if row is None:
            return
        row.attached_token = jti
        self.session.add(row)
        await self.session.commit()

    async def invalidate(self, session_id: str) -> bool:
        res = await self.session.execute(delete(UserSession).where(UserSession.id == session_id))
        await self.session.commit()
        return res.rowcount == 1

    async def invalidate_all(self, user_id: uuid.UUID) -> int:
        res = await self.session.execute(delete(UserSession).where(UserSession.user_id == user_id))
        await self.session.commit()
        logger.info("sessions_invalidated", user_id=str(user_id), count=res.rowcount)
        return res.rowcount

    async def purge_expired(self) -> int:
        res = await self.session.execute(delete(UserSession).where(UserSession.expires_at <= self.clock()))
        await self.session.commit()
        if res.rowcount:
            logger.info("expired_sessions_purged", removed=res.rowcount)
        return res.rowcount

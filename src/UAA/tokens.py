# src/UAA/tokens.py
from datetime import datetime, timedelta
from typing import Optional
import uuid

import structlog
from sqlalchemy import delete, or_, update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from .models import AuthToken, TokenKind
from .utils import Clock, generate_token_value, utcnow

logger = structlog.get_logger(__name__)


class TokenLedger:
    """
    Typed, expiring, single-use tokens.

    A token is valid only while it is unused, unexpired and of the kind the
    caller asks for. Consumption is a single conditional UPDATE so two
    concurrent consumers of the same value cannot both succeed.
    """

    def __init__(self, session: AsyncSession, clock: Clock = utcnow):
        self.session = session
        self.clock = clock

    async def issue(self, user_id: uuid.UUID, kind: TokenKind, ttl_seconds: int) -> str:
        value = generate_token_value()
        now = self.clock()
        row = AuthToken(
            user_id=user_id,
            token_value=value,
            kind=TokenKind(kind).value,
            expires_at=now + timedelta(seconds=ttl_seconds),
            is_used=False,
            created_at=now,
        )
        token_id = str(row.id)
        self.session.add(row)
        await self.session.commit()
        logger.info("auth_token_issued", token_id=token_id, user_id=str(user_id), kind=TokenKind(kind).value, ttl=ttl_seconds)
        return value

    async def verify(self, token_value: str, kind: TokenKind) -> Optional[AuthToken]:
        if not token_value:
            return None
        q = select(AuthToken).where(
            AuthToken.token_value == token_value,
            AuthToken.kind == TokenKind(kind).value,
            AuthToken.is_used == False,  # noqa: E712
            AuthToken.expires_at > self.clock(),
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def consume(self, token_value: str) -> bool:
        """Mark the token used. Returns False if it was already used or has expired."""
        q = (
            update(AuthToken)
            .where(
                AuthToken.token_value == token_value,
                AuthToken.is_used == False,  # noqa: E712
                AuthToken.expires_at > self.clock(),
            )
            .values(is_used=True)
        )
        res = await self.session.execute(q)
        await self.session.commit()
        consumed = res.rowcount == 1
        if not consumed:
            logger.info("auth_token_consume_rejected")
        return consumed

    async def sweep(self, retention_seconds: int, now: Optional[datetime] = None) -> int:
        """Delete used tokens and tokens expired for longer than the retention period."""
        cutoff = (now or self.clock()) - timedelta(seconds=retention_seconds)
        q = delete(AuthToken).where(
            or_(AuthToken.is_used == True, AuthToken.expires_at < cutoff)  # noqa: E712
        )
        res = await self.session.execute(q)
        await self.session.commit()
        if res.rowcount:
            logger.info("auth_tokens_swept", removed=res.rowcount)
        return res.rowcount

# src/services/mail_queue.py
import html
from datetime import timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from src.infrastructure.email import (
    MAIL_MAX_ATTEMPTS,
    MAIL_QUEUE_BATCH_SIZE,
    MAIL_RETRY_DELAY_SECONDS,
    MAIL_SENDING_LEASE_SECONDS,
    SMTP_FROM,
    MailTransport,
)
from src.models.queued_email import EmailStatus, QueuedEmail
from src.services.email_templates import get_template, render_template
from src.UAA.utils import Clock, utcnow

logger = structlog.get_logger(__name__)


class MailQueue:
    """
    Durable outbound mail.

    Rows move pending -> sending -> sent, or sending -> failed. Failed rows
    with attempts left are retried once the backoff delay has passed; rows
    that run out of attempts stay failed for an operator to inspect. The
    move into ``sending`` is a conditional UPDATE, so only one processor
    ever holds a given row.
    """

    def __init__(
        self,
        session: AsyncSession,
        transport: Optional[MailTransport] = None,
        clock: Clock = utcnow,
        from_address: str = SMTP_FROM,
        batch_size: int = MAIL_QUEUE_BATCH_SIZE,
        max_attempts: int = MAIL_MAX_ATTEMPTS,
        retry_delay_seconds: int = MAIL_RETRY_DELAY_SECONDS,
        lease_seconds: int = MAIL_SENDING_LEASE_SECONDS,
    ):
        self.session = session
        self.transport = transport
        self.clock = clock
        self.from_address = from_address
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.retry_delay = timedelta(seconds=retry_delay_seconds)
        self.lease = timedelta(seconds=lease_seconds)

    # --- producer side ---
    async def enqueue(
        self,
        to: str,
        subject: str,
        html_body: Optional[str] = None,
        text_body: Optional[str] = None,
        template_id: Optional[str] = None,
        template_data: Optional[Dict[str, Any]] = None,
    ) -> QueuedEmail:
        now = self.clock()
        row = QueuedEmail(
            to=to,
            from_address=self.from_address,
            subject=subject,
            html_body=html_body,
            text_body=text_body,
            template_id=template_id,
            template_data=template_data or {},
            status=EmailStatus.PENDING.value,
            attempts=0,
            scheduled_at=now,
            created_at=now,
        )
        email_id = str(row.id)
        self.session.add(row)
        await self.session.commit()
        logger.info("email_queued", email_id=email_id, to=to, template=template_id)
        return row

    async def enqueue_template(self, template_name: str, to: str, data: Dict[str, Any]) -> QueuedEmail:
        template = get_template(template_name)
        escaped = {k: html.escape(str(v)) for k, v in data.items() if v is not None}
        return await self.enqueue(
            to=to,
            subject=render_template(template.subject, data),
            html_body=render_template(template.html, escaped),
            text_body=render_template(template.text, data),
            template_id=template.name,
            template_data=data,
        )

    # --- processor side ---
    async def _claim(self, email: QueuedEmail, expected_status: EmailStatus) -> bool:
        q = (
            update(QueuedEmail)
            .where(
                QueuedEmail.id == email.id,
                QueuedEmail.status == expected_status.value,
                QueuedEmail.attempts == email.attempts,
            )
            .values(
                status=EmailStatus.SENDING.value,
                attempts=email.attempts + 1,
                last_attempt_at=self.clock(),
            )
        )
        res = await self.session.execute(q)
        await self.session.commit()
        return res.rowcount == 1

    async def deliver(self, email: QueuedEmail, expected_status: EmailStatus = EmailStatus.PENDING) -> bool:
        email_id = email.id
        attempt = email.attempts + 1
        to, from_address, subject = email.to, email.from_address, email.subject
        html_body, text_body = email.html_body, email.text_body

        if not await self._claim(email, expected_status):
            logger.debug("email_claim_lost", email_id=str(email_id))
            return False

        try:
            await self.transport.send(to, from_address, subject, html_body, text_body)
        except Exception as e:
            logger.warning("email_delivery_failed", email_id=str(email_id), to=to, attempt=attempt, error=str(e))
            q = (
                update(QueuedEmail)
                .where(QueuedEmail.id == email_id, QueuedEmail.status == EmailStatus.SENDING.value)
                .values(status=EmailStatus.FAILED.value, error=str(e) or e.__class__.__name__)
            )
            await self.session.execute(q)
            await self.session.commit()
            if attempt >= self.max_attempts:
                logger.error("email_delivery_exhausted", email_id=str(email_id), to=to, attempts=attempt)
            return False

        q = (
            update(QueuedEmail)
            .where(QueuedEmail.id == email_id, QueuedEmail.status == EmailStatus.SENDING.value)
            .values(status=EmailStatus.SENT.value, sent_at=self.clock(), error=None)
        )
        await self.session.execute(q)
        await self.session.commit()
        logger.info("email_delivered", email_id=str(email_id), to=to, attempt=attempt)
        return True

    async def _fetch(self, *criteria) -> List[QueuedEmail]:
        q = (
            select(QueuedEmail)
            .where(*criteria)
            .order_by(QueuedEmail.scheduled_at)
            .limit(self.batch_size)
            .execution_options(populate_existing=True)
        )
        res = await self.session.execute(q)
        return list(res.scalars().all())

    async def process_pending(self) -> int:
        emails = await self._fetch(
            QueuedEmail.status == EmailStatus.PENDING.value,
            QueuedEmail.scheduled_at <= self.clock(),
        )
        sent = 0
        for email in emails:
            if await self.deliver(email, EmailStatus.PENDING):
                sent += 1
        return sent

    async def retry_failed(self) -> int:
        cutoff = self.clock() - self.retry_delay
        emails = await self._fetch(
            QueuedEmail.status == EmailStatus.FAILED.value,
            QueuedEmail.attempts < self.max_attempts,
            QueuedEmail.last_attempt_at <= cutoff,
        )
        sent = 0
        for email in emails:
            if await self.deliver(email, EmailStatus.FAILED):
                sent += 1
        return sent

    async def recover_stale(self) -> int:
        """Fail rows whose sending lease lapsed, e.g. after a processor crash."""
        cutoff = self.clock() - self.lease
        q = (
            update(QueuedEmail)
            .where(
                QueuedEmail.status == EmailStatus.SENDING.value,
                QueuedEmail.last_attempt_at <= cutoff,
            )
            .values(status=EmailStatus.FAILED.value, error="delivery lease expired")
        )
        res = await self.session.execute(q)
        await self.session.commit()
        if res.rowcount:
            logger.warning("email_sending_lease_expired", count=res.rowcount)
        return res.rowcount

    async def process_once(self) -> Dict[str, int]:
        if self.transport is None:
            raise RuntimeError("mail queue has no transport configured")
        recovered = await self.recover_stale()
        sent = await self.process_pending()
        retried = await self.retry_failed()
        if sent or retried or recovered:
            logger.info("email_queue_processed", sent=sent, retried=retried, recovered=recovered)
        return {"sent": sent, "retried": retried, "recovered": recovered}

    async def stats(self) -> Dict[str, int]:
        q = select(QueuedEmail.status, func.count()).group_by(QueuedEmail.status)
        res = await self.session.execute(q)
        counts = {status.value: 0 for status in EmailStatus}
        for status, count in res.all():
            counts[status] = count
        return counts

# src/infrastructure/email.py
import os
from abc import ABC, abstractmethod
from typing import Optional
import aiosmtplib
import httpx
from email.message import EmailMessage
import structlog

logger = structlog.get_logger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST", "")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM = os.getenv("SMTP_FROM", "NeuroCore AI <noreply@neurocore.ai>")
MAIL_TRANSPORT = os.getenv("MAIL_TRANSPORT", "smtp").lower()
MAIL_API_URL = os.getenv("MAIL_API_URL", "")
MAIL_API_KEY = os.getenv("MAIL_API_KEY", "")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()

# queue processing
MAIL_QUEUE_INTERVAL_SECONDS = int(os.getenv("MAIL_QUEUE_INTERVAL_SECONDS", "30"))
MAIL_QUEUE_BATCH_SIZE = int(os.getenv("MAIL_QUEUE_BATCH_SIZE", "10"))
MAIL_MAX_ATTEMPTS = int(os.getenv("MAIL_MAX_ATTEMPTS", "3"))
MAIL_RETRY_DELAY_SECONDS = int(os.getenv("MAIL_RETRY_DELAY_SECONDS", "300"))
MAIL_SENDING_LEASE_SECONDS = int(os.getenv("MAIL_SENDING_LEASE_SECONDS", "600"))


class MailDeliveryError(Exception):
    pass


class MailTransport(ABC):
    """Sends one message. No retries here; the mail queue owns those."""

    @abstractmethod
    async def send(self, to: str, from_address: str, subject: str, html: Optional[str], text: Optional[str]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def check(self) -> bool:
        """Reachability probe used at startup; failures are logged, never raised."""
        raise NotImplementedError


class SmtpMailTransport(MailTransport):
    def __init__(
        self,
        host: str = SMTP_HOST,
        port: int = SMTP_PORT,
        username: str = SMTP_USER,
        password: str = SMTP_PASSWORD,
        timeout: int = 30,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.timeout = timeout

    async def send(self, to: str, from_address: str, subject: str, html: Optional[str], text: Optional[str]) -> None:
        if ENVIRONMENT == "development" and (not self.host or not self.username):
            # SMTP not configured in dev: log and report success
            logger.info("email_send_stub_dev", to=to, subject=subject)
            return

        msg = EmailMessage()
        msg["From"] = from_address
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text or "")
        if html:
            msg.add_alternative(html, subtype="html")

        try:
            await aiosmtplib.send(
                msg,
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                start_tls=True if self.port in (587, 25) else False,
                timeout=self.timeout,
            )
        except aiosmtplib.SMTPException as e:
            logger.warning("email_send_failed", to=to, subject=subject, error=str(e))
            raise MailDeliveryError(str(e)) from e
        logger.info("email_sent", to=to, subject=subject)

    async def check(self) -> bool:
        if ENVIRONMENT == "development" and (not self.host or not self.username):
            return True

        smtp = aiosmtplib.SMTP(
            hostname=self.host,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            start_tls=True if self.port in (587, 25) else False,
            timeout=self.timeout,
        )
        try:
            await smtp.connect()
            await smtp.noop()
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.warning("email_transport_check_failed", transport="smtp", host=self.host, error=str(e))
            return False
        finally:
            if smtp.is_connected:
                smtp.close()
        logger.info("email_transport_ready", transport="smtp", host=self.host)
        return True


class HttpMailTransport(MailTransport):
    """Transactional mail over a JSON HTTP API (bearer-key auth)."""

    def __init__(self, api_url: Optional[str] = None, api_key: Optional[str] = None, timeout: int = 30):
        self.api_url = api_url or MAIL_API_URL
        self.api_key = api_key or MAIL_API_KEY
        self.timeout = timeout

        if not self.api_url:
            raise MailDeliveryError("MAIL_API_URL is not configured")

    async def send(self, to: str, from_address: str, subject: str, html: Optional[str], text: Optional[str]) -> None:
        payload = {"from": from_address, "to": [to], "subject": subject, "html": html, "text": text}
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise MailDeliveryError(f"mail API unreachable: {e}") from e

        if response.status_code >= 400:
            raise MailDeliveryError(f"mail API error ({response.status_code}): {response.text}")
        logger.info("email_sent", to=to, subject=subject, transport="http")

    async def check(self) -> bool:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.head(self.api_url, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("email_transport_check_failed", transport="http", url=self.api_url, error=str(e))
            return False

        # 405: endpoint exists but only takes POST
        if response.status_code >= 400 and response.status_code != 405:
            logger.warning("email_transport_check_failed", transport="http", url=self.api_url, status=response.status_code)
            return False
        logger.info("email_transport_ready", transport="http", url=self.api_url)
        return True


def build_transport() -> MailTransport:
    if MAIL_TRANSPORT == "http":
        return HttpMailTransport()
    return SmtpMailTransport()

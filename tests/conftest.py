"""Pytest configuration and shared fixtures."""

from datetime import timedelta
from typing import List, Optional

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from src.infrastructure.email import MailDeliveryError, MailTransport
from src.models.queued_email import QueuedEmail  # noqa: F401 (registers the table)
from src.services.mail_queue import MailQueue
from src.UAA import totp
from src.UAA.config import AuthSettings
from src.UAA.models import AuthToken, TokenKind
from src.UAA.rate_limiter import InMemoryRateLimiter
from src.UAA.services import AuthService
from src.UAA.utils import utcnow

STRONG_PASSWORD = "Str0ng!Pass"


class FrozenClock:
    """Clock that only moves when a test says so."""

    def __init__(self, start=None):
        self.now = start or utcnow().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, seconds: float = 0, **kwargs):
        self.now += timedelta(seconds=seconds, **kwargs)


class RecordingTransport(MailTransport):
    def __init__(self):
        self.sent: List[dict] = []
        self.calls = 0
        self.fail_with: Optional[Exception] = None

    async def send(self, to, from_address, subject, html, text):
        self.calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append({"to": to, "from": from_address, "subject": subject, "html": html, "text": text})

    async def check(self):
        return self.fail_with is None


@pytest.fixture
async def engine(tmp_path):
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'auth.db'}")
    async with db_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def settings():
    return AuthSettings(jwt_secret="test-secret", bcrypt_rounds=4, app_url="https://app.test")


@pytest.fixture
def limiter(settings, clock):
    return InMemoryRateLimiter(settings.rate_limit_attempts, settings.rate_limit_window, clock=clock)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def mail_queue(session, transport, clock):
    return MailQueue(session, transport, clock=clock, from_address="NeuroCore AI <noreply@neurocore.ai>")


@pytest.fixture
def auth_service(session, limiter, settings, mail_queue, clock):
    return AuthService(session, limiter, settings, mail_queue=mail_queue, clock=clock)


@pytest.fixture
async def make_service(session_factory, limiter, settings, transport, clock):
    """Build an AuthService on its own session, for concurrency tests."""
    opened = []

    def _make():
        s = session_factory()
        opened.append(s)
        return AuthService(s, limiter, settings, mail_queue=MailQueue(s, transport, clock=clock), clock=clock)

    yield _make
    for s in opened:
        await s.close()


async def latest_token(session: AsyncSession, user_id, kind: TokenKind) -> str:
    q = (
        select(AuthToken.token_value)
        .where(AuthToken.user_id == user_id, AuthToken.kind == kind.value)
        .order_by(AuthToken.created_at.desc())
    )
    res = await session.execute(q)
    return res.scalars().first()


@pytest.fixture
def register_active(auth_service, session):
    """Register an account and complete email verification."""

    async def _register(username="alice", email="alice@neurocore.io", password=STRONG_PASSWORD):
        result = await auth_service.register(username, email, password)
        token = await latest_token(session, result.user.id, TokenKind.EMAIL_VERIFICATION)
        await auth_service.verify_email(token)
        return result.user

    return _register


@pytest.fixture
def enroll_two_factor(auth_service, clock):
    """Set up and enable TOTP for a user; returns the setup (secret, backup codes)."""

    async def _enroll(user):
        setup = await auth_service.setup_two_factor(user.id)
        await auth_service.enable_two_factor(user.id, totp.current_code(setup.secret, clock()))
        return setup

    return _enroll


@pytest.fixture
def failing_transport():
    t = RecordingTransport()
    t.fail_with = MailDeliveryError("connection refused")
    return t

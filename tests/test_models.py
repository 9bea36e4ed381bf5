"""Round-trip every table through the ORM models and the real SQLite schema."""

import uuid
from datetime import timedelta

import pytest
from sqlmodel import UTCDateTime, select

from src.models.queued_email import QueuedEmail
from src.UAA.models import AuthToken, BackupCode, TokenKind, TwoFactorCredential, User, UserSession


@pytest.fixture
async def stored_rows(session, clock):
    now = clock()
    user = User(email="alice@neurocore.io", username="alice", hashed_password="x", created_at=now, last_login=now)
    session.add(user)
    await session.flush()

    credential = TwoFactorCredential(user_id=user.id, secret_enc="enc", is_enabled=True, last_used_at=now, created_at=now)
    session.add(credential)
    await session.flush()

    session.add_all([
        AuthToken(
            user_id=user.id,
            token_value=uuid.uuid4().hex,
            kind=TokenKind.PASSWORD_RESET.value,
            expires_at=now + timedelta(hours=1),
            created_at=now,
        ),
        BackupCode(credential_id=credential.id, code_hash="h" * 64, used_at=now),
        UserSession(id="sess-1", user_id=user.id, expires_at=now + timedelta(days=1), created_at=now),
        QueuedEmail(
            to="alice@neurocore.io",
            from_address="noreply@neurocore.ai",
            subject="Hi",
            last_attempt_at=now,
            scheduled_at=now,
            sent_at=now,
            created_at=now,
        ),
    ])
    await session.commit()
    return user


async def reload(session, model):
    res = await session.exec(select(model).execution_options(populate_existing=True))
    return res.one()


class TestTimestampColumns:
    @pytest.mark.parametrize(
        "model, fields",
        [
            (User, ["created_at", "last_login"]),
            (AuthToken, ["created_at"]),
            (TwoFactorCredential, ["created_at", "last_used_at"]),
            (BackupCode, ["used_at"]),
            (UserSession, ["created_at"]),
            (QueuedEmail, ["created_at", "scheduled_at", "last_attempt_at", "sent_at"]),
        ],
    )
    async def test_timestamps_come_back_as_utc(self, session, clock, stored_rows, model, fields):
        row = await reload(session, model)
        for name in fields:
            value = getattr(row, name)
            assert value.tzinfo is not None, name
            assert value == clock(), name

    async def test_expiry_survives_round_trip(self, session, clock, stored_rows):
        token = await reload(session, AuthToken)
        assert token.expires_at - clock() == timedelta(hours=1)
        user_session = await reload(session, UserSession)
        assert user_session.expires_at - clock() == timedelta(days=1)

    async def test_default_timestamps_are_aware(self, session):
        user = User(email="bob@neurocore.io", username="bob", hashed_password="x")
        session.add(user)
        await session.commit()
        assert (await reload(session, User)).created_at.tzinfo is not None

    def test_datetime_columns_use_utc_type(self):
        assert isinstance(AuthToken.__table__.c.expires_at.type, UTCDateTime)
        assert isinstance(QueuedEmail.__table__.c.scheduled_at.type, UTCDateTime)

# src/models/queued_email.py
from sqlmodel import SQLModel, Field, Column
from typing import Optional
import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import JSON, Text

from src.UAA.utils import utcnow


class EmailStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class QueuedEmail(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    to: str = Field(index=True)
    from_address: str
    subject: str
    html_body: Optional[str] = Field(default=None, sa_column=Column(Text))
    text_body: Optional[str] = Field(default=None, sa_column=Column(Text))
    template_id: Optional[str] = Field(default=None, index=True)
    template_data: dict = Field(default_factory=dict, sa_column=Column(JSON))
    status: str = Field(default=EmailStatus.PENDING.value, index=True)  # pending, sending, sent, failed
    attempts: int = Field(default=0)
    last_attempt_at: Optional[datetime] = None
    scheduled_at: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = None
    error: Optional[str] = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)

"""
Daily outreach models - batches, items and the CRM record of sent emails.
A batch is one user's set of pre-generated emails for one calendar day.
"""
import uuid
from datetime import date, datetime
from typing import Optional, Dict, Any

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, Index, JSON, text

from daily_outreach.core.dates import utcnow


class BatchStatus:
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


class ItemStatus:
    PENDING = "pending"
    SENT = "sent"
    SKIPPED = "skipped"
    EDITED = "edited"  # legacy rows only, terminal


class OutreachBatch(SQLModel, table=True):
    """
    One day's outreach batch for a user.
    Reached through `secure_token` links without a login session.
    At most one live (non-superseded) batch exists per user and date.
    """
    __tablename__ = "outreach_batch"
    __table_args__ = (
        Index(
            "uq_outreach_batch_user_date_live",
            "user_id",
            "batch_date",
            unique=True,
            postgresql_where=text("superseded_at IS NULL"),
            sqlite_where=text("superseded_at IS NULL"),
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)

    batch_date: date = Field(index=True)  # local calendar day of the user
    secure_token: str = Field(unique=True, index=True)

    status: str = Field(default=BatchStatus.ACTIVE, index=True)  # active, completed, expired

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    superseded_at: Optional[datetime] = None  # set by regenerate


class OutreachItem(SQLModel, table=True):
    """
    One contact + generated email inside a batch.
    Moves pending -> sent | skipped exactly once.
    """
    __tablename__ = "outreach_item"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    batch_id: uuid.UUID = Field(foreign_key="outreach_batch.id", index=True)
    contact_id: uuid.UUID = Field(foreign_key="contact.id", index=True)
    company_id: uuid.UUID = Field(foreign_key="company.id", index=True)

    # Order inside the batch, fixed at creation
    position: int = Field(default=0)

    # Email content (may contain {{merge_fields}})
    email_subject: str
    email_body: str
    email_tone: str = Field(default="default")
    edited_content: Optional[str] = None  # JSON {"subject", "body"} of user edits

    # State
    status: str = Field(default=ItemStatus.PENDING, index=True)  # pending, sent, skipped, edited
    sent_at: Optional[datetime] = Field(default=None, index=True)

    # CRM link once sent
    communication_id: Optional[uuid.UUID] = Field(default=None, foreign_key="communication_history.id")

    created_at: datetime = Field(default_factory=utcnow)


class CommunicationHistory(SQLModel, table=True):
    """
    CRM record of an outbound email.
    Written when a daily outreach item is marked sent.
    """
    __tablename__ = "communication_history"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    contact_id: uuid.UUID = Field(foreign_key="contact.id", index=True)
    company_id: uuid.UUID = Field(foreign_key="company.id", index=True)
    batch_id: Optional[uuid.UUID] = Field(default=None, index=True)

    channel: str = Field(default="email")
    direction: str = Field(default="outbound")

    subject: Optional[str] = None
    content: str
    content_preview: Optional[str] = None  # first 200 chars

    status: str = Field(default="sent", index=True)
    sent_at: Optional[datetime] = Field(default=None, index=True)

    meta_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    # Example: {"source": "daily_outreach", "item_id": "...", "tone": "default"}

    created_at: datetime = Field(default_factory=utcnow)

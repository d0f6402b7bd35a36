"""
Campaign profile models - what is sold, who sends it, who it is for.
All three must be active on the preferences before batches are generated.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from daily_outreach.core.dates import utcnow


class StrategicProfile(SQLModel, table=True):
    """Product or service being pitched."""
    __tablename__ = "strategic_profile"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)

    title: str
    product_service: Optional[str] = None
    customer_feedback: Optional[str] = None
    website: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)


class SenderProfile(SQLModel, table=True):
    """Identity the emails are written as."""
    __tablename__ = "sender_profile"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)

    display_name: str
    email: Optional[str] = None
    title: Optional[str] = None
    company_name: Optional[str] = None
    company_website: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)


class CustomerProfile(SQLModel, table=True):
    """Ideal customer the outreach targets."""
    __tablename__ = "customer_profile"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)

    label: str
    target_description: Optional[str] = None
    industries: Optional[str] = None
    pain_points: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)

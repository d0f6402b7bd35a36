"""
User model.
Accounts are owned by the auth service; outreach only reads them.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from daily_outreach.core.dates import utcnow


class User(SQLModel, table=True):
    """
    User with the profile info needed for outreach nudges.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)

    email: str = Field(unique=True, index=True)
    full_name: Optional[str] = None

    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=utcnow)

"""
Company and contact models.
Populated by search, enrichment and import; outreach reads them to build
batches and updates the CRM counters on contacts when an email goes out.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from daily_outreach.core.dates import utcnow


class Company(SQLModel, table=True):
    """
    Company owned by a user.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)

    name: str = Field(index=True)
    website: Optional[str] = None
    description: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)


class Contact(SQLModel, table=True):
    """
    Person at a company.
    `probability` is the email confidence score used to rank candidates.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    company_id: Optional[uuid.UUID] = Field(default=None, foreign_key="company.id", index=True)

    # Basic info
    name: str
    role: Optional[str] = None
    email: Optional[str] = Field(default=None, index=True)
    probability: Optional[int] = Field(default=None, index=True)  # 0-100

    # CRM tracking
    contact_status: str = Field(default="uncontacted", index=True)  # uncontacted, contacted, replied
    last_contacted_at: Optional[datetime] = None
    total_communications: int = Field(default=0)

    created_at: datetime = Field(default_factory=utcnow)

    @property
    def first_name(self) -> str:
        return self.name.split()[0] if self.name else ""

    @property
    def last_name(self) -> str:
        parts = self.name.split() if self.name else []
        return parts[-1] if len(parts) > 1 else ""

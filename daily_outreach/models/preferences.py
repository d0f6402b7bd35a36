"""
Outreach preferences - per-user schedule and campaign activation.
"""
import uuid
from datetime import date, datetime
from typing import Optional, List

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON

from daily_outreach.config import settings
from daily_outreach.core.dates import utcnow


def _default_schedule_days() -> List[str]:
    return list(settings.OUTREACH_DEFAULT_SCHEDULE_DAYS)


class OutreachPreferences(SQLModel, table=True):
    """
    Daily outreach settings for one user.
    A campaign is only live when enabled AND product, sender and customer
    profiles are all set.
    """
    __tablename__ = "outreach_preferences"

    user_id: uuid.UUID = Field(foreign_key="user.id", primary_key=True)

    enabled: bool = Field(default=False, index=True)

    # Schedule
    schedule_days: List[str] = Field(default_factory=_default_schedule_days, sa_column=Column(JSON))
    schedule_time: str = Field(default=settings.OUTREACH_DEFAULT_SCHEDULE_TIME)  # HH:MM local
    timezone: str = Field(default=settings.OUTREACH_DEFAULT_TIMEZONE)
    min_contacts_required: int = Field(default=settings.OUTREACH_DEFAULT_BATCH_SIZE)

    # Active campaign components
    active_product_id: Optional[uuid.UUID] = Field(default=None, foreign_key="strategic_profile.id")
    active_sender_profile_id: Optional[uuid.UUID] = Field(default=None, foreign_key="sender_profile.id")
    active_customer_profile_id: Optional[uuid.UUID] = Field(default=None, foreign_key="customer_profile.id")

    # Vacation window (inclusive, local calendar dates)
    vacation_mode: bool = Field(default=False)
    vacation_start_date: Optional[date] = None
    vacation_end_date: Optional[date] = None

    # Nudge tracking
    last_nudge_sent: Optional[datetime] = None
    nudge_streak_started_at: Optional[datetime] = None
    auto_disabled_at: Optional[datetime] = None

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def has_active_campaign(self) -> bool:
        return bool(
            self.active_product_id
            and self.active_sender_profile_id
            and self.active_customer_profile_id
        )

    def is_on_vacation(self, day: date) -> bool:
        if not (self.vacation_mode and self.vacation_start_date and self.vacation_end_date):
            return False
        return self.vacation_start_date <= day <= self.vacation_end_date

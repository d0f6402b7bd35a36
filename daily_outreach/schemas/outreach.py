"""
Daily outreach schemas.
"""
import uuid
from typing import Optional, List
from datetime import date, datetime

from daily_outreach.schemas.common import CamelModel


# Batch schemas
class ContactSummary(CamelModel):
    id: uuid.UUID
    name: str
    role: Optional[str] = None
    email: Optional[str] = None


class CompanySummary(CamelModel):
    id: uuid.UUID
    name: str
    website: Optional[str] = None


class OutreachItemResponse(CamelModel):
    """
    One item of a batch.
    `subject` and `body` are the text that will be sent: user edits when
    present, merge fields resolved.
    """
    id: uuid.UUID
    batch_id: uuid.UUID
    contact_id: uuid.UUID
    company_id: uuid.UUID
    position: int
    email_subject: str
    email_body: str
    email_tone: str
    edited_content: Optional[str] = None
    status: str
    sent_at: Optional[datetime] = None
    communication_id: Optional[uuid.UUID] = None
    created_at: datetime

    subject: Optional[str] = None
    body: Optional[str] = None
    contact: Optional[ContactSummary] = None
    company: Optional[CompanySummary] = None


class BatchResponse(CamelModel):
    id: uuid.UUID
    user_id: uuid.UUID
    batch_date: date
    secure_token: str
    status: str
    created_at: datetime
    expires_at: datetime


class BatchDetailResponse(CamelModel):
    """Batch with its items in walk-through order."""
    batch: BatchResponse
    items: List[OutreachItemResponse]
    next_pending_index: Optional[int] = None


class ItemUpdate(CamelModel):
    """Edit the email of a pending item. Omitted fields are kept."""
    email_subject: Optional[str] = None
    email_body: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "emailSubject": "Quick question for {{contact_company_name}}",
                "emailBody": "Hi {{first_name}}, ..."
            }
        }


# Generation schemas
class TriggerRequest(CamelModel):
    """Manual generation of today's batch."""
    regenerate: bool = False  # supersede today's batch first
    notify: bool = False  # email the link like the scheduled run does


class TriggerResponse(CamelModel):
    success: bool
    outcome: str  # created, existing, suppressed, no_candidates
    message: Optional[str] = None
    batch_id: Optional[uuid.UUID] = None
    secure_token: Optional[str] = None
    item_count: int = 0


class SendTestEmailResponse(CamelModel):
    success: bool
    message: str


# Statistics schemas
class TodaysBatchResponse(CamelModel):
    id: uuid.UUID
    token: str
    status: str
    created_at: datetime
    item_count: int
    pending_count: int


class StreakStatsResponse(CamelModel):
    current_streak: int
    longest_streak: int
    weekly_goal: int
    weekly_progress: int
    emails_sent_today: int
    emails_sent_this_week: int
    emails_sent_this_month: int
    emails_sent_all_time: int
    companies_contacted_this_week: int
    companies_contacted_this_month: int
    companies_contacted_all_time: int
    available_contacts: int
    available_companies: int
    todays_batch: Optional[TodaysBatchResponse] = None


# Preferences schemas
class PreferencesResponse(CamelModel):
    enabled: bool
    schedule_days: List[str]
    schedule_time: str
    timezone: str
    min_contacts_required: int
    active_product_id: Optional[uuid.UUID] = None
    active_sender_profile_id: Optional[uuid.UUID] = None
    active_customer_profile_id: Optional[uuid.UUID] = None
    has_active_campaign: bool
    vacation_mode: bool
    vacation_start_date: Optional[date] = None
    vacation_end_date: Optional[date] = None
    last_nudge_sent: Optional[datetime] = None
    auto_disabled_at: Optional[datetime] = None


class PreferencesUpdate(CamelModel):
    """Partial update of outreach preferences."""
    enabled: Optional[bool] = None
    schedule_days: Optional[List[str]] = None
    schedule_time: Optional[str] = None
    timezone: Optional[str] = None
    min_contacts_required: Optional[int] = None
    active_product_id: Optional[uuid.UUID] = None
    active_sender_profile_id: Optional[uuid.UUID] = None
    active_customer_profile_id: Optional[uuid.UUID] = None

    class Config:
        json_schema_extra = {
            "example": {
                "enabled": True,
                "scheduleDays": ["mon", "wed", "fri"],
                "scheduleTime": "09:00",
                "timezone": "Europe/Berlin",
                "minContactsRequired": 5
            }
        }


class VacationUpdate(CamelModel):
    vacation_mode: bool
    vacation_start_date: Optional[date] = None
    vacation_end_date: Optional[date] = None


# Job schemas
class JobRunResponse(CamelModel):
    executed_at: datetime
    status: str
    batch_id: Optional[uuid.UUID] = None
    contacts_processed: int = 0
    error_message: Optional[str] = None


class JobStatusResponse(CamelModel):
    exists: bool
    status: Optional[str] = None
    next_run_at: Optional[datetime] = None
    next_run_in_minutes: Optional[int] = None
    last_run_at: Optional[datetime] = None
    last_message: Optional[str] = None
    retry_count: int = 0
    recent_runs: List[JobRunResponse] = []

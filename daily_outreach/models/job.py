"""
Outreach job models - persisted schedule per user plus an execution audit log.
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field

from daily_outreach.core.dates import utcnow


class JobStatus:
    SCHEDULED = "scheduled"
    RUNNING = "running"
    FAILED = "failed"
    DISABLED = "disabled"


class JobLogStatus:
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    FAILED_PERMANENT = "failed_permanent"


class OutreachJob(SQLModel, table=True):
    """
    Next scheduled batch generation for one user.
    Advanced by the cron-driven job runner.
    """
    __tablename__ = "outreach_job"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", unique=True, index=True)

    next_run_at: datetime = Field(index=True)
    last_run_at: Optional[datetime] = None
    status: str = Field(default=JobStatus.SCHEDULED, index=True)

    # Also carries the human-readable outcome of the last run
    last_error: Optional[str] = None
    retry_count: int = Field(default=0)
    next_retry_at: Optional[datetime] = None

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class OutreachJobLog(SQLModel, table=True):
    """Audit trail of job executions."""
    __tablename__ = "outreach_job_log"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    job_id: uuid.UUID = Field(foreign_key="outreach_job.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)

    executed_at: datetime = Field(index=True)
    status: str  # success, skipped, failed, failed_permanent
    batch_id: Optional[uuid.UUID] = None
    processing_time_ms: Optional[int] = None
    contacts_processed: int = Field(default=0)
    error_message: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)

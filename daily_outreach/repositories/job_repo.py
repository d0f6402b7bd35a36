"""
Outreach job repository - persisted schedule and execution log.
"""
import uuid
from datetime import datetime
from typing import Optional, List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import and_, case, or_

from daily_outreach.models.job import OutreachJob, OutreachJobLog, JobStatus
from daily_outreach.repositories.base import BaseRepository


class OutreachJobRepository(BaseRepository[OutreachJob]):
    """Repository for OutreachJob operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(OutreachJob, session)

    async def get_by_user(self, user_id: uuid.UUID) -> Optional[OutreachJob]:
        return await self.get_by_field("user_id", user_id)

    async def get_stuck(self, threshold: datetime) -> List[OutreachJob]:
        """Jobs left in `running` since before the threshold."""
        query = select(OutreachJob).where(
            OutreachJob.status == JobStatus.RUNNING,
            OutreachJob.updated_at <= threshold
        )
        result = await self.session.exec(query)
        return result.all()

    async def get_due(self, now: datetime, max_retries: int, limit: int) -> List[OutreachJob]:
        """
        Jobs that should run now: scheduled and due, or failed with retries left.
        Retries are served first, then the oldest due runs.
        """
        retryable = and_(
            OutreachJob.status == JobStatus.FAILED,
            OutreachJob.retry_count < max_retries,
            or_(OutreachJob.next_retry_at.is_(None), OutreachJob.next_retry_at <= now)
        )
        due = and_(
            OutreachJob.status == JobStatus.SCHEDULED,
            OutreachJob.next_run_at <= now
        )
        query = select(OutreachJob).where(
            or_(due, retryable)
        ).order_by(
            case((OutreachJob.status == JobStatus.FAILED, 0), else_=1),
            OutreachJob.next_run_at
        ).limit(limit)
        result = await self.session.exec(query)
        return result.all()


class OutreachJobLogRepository(BaseRepository[OutreachJobLog]):
    """Repository for OutreachJobLog operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(OutreachJobLog, session)

    async def get_by_job(self, job_id: uuid.UUID, limit: int = 20) -> List[OutreachJobLog]:
        """Latest executions of a job."""
        query = select(OutreachJobLog).where(
            OutreachJobLog.job_id == job_id
        ).order_by(OutreachJobLog.executed_at.desc()).limit(limit)
        result = await self.session.exec(query)
        return result.all()

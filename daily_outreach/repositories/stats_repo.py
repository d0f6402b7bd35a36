"""
Read-only aggregate queries over outreach history.
"""
import uuid
from datetime import datetime
from typing import Optional, List, Tuple

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import func

from daily_outreach.models.outreach import OutreachBatch, OutreachItem, ItemStatus


class OutreachStatsRepository:
    """Aggregates for the streak dashboard. Never writes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def sent_counts(
        self,
        user_id: uuid.UUID,
        since: Optional[datetime] = None
    ) -> Tuple[int, int]:
        """(emails sent, distinct companies contacted) since a UTC instant."""
        query = select(
            func.count(OutreachItem.id),
            func.count(func.distinct(OutreachItem.company_id))
        ).join(
            OutreachBatch, OutreachItem.batch_id == OutreachBatch.id
        ).where(
            OutreachBatch.user_id == user_id,
            OutreachItem.status == ItemStatus.SENT,
            OutreachItem.sent_at.is_not(None)
        )
        if since is not None:
            query = query.where(OutreachItem.sent_at >= since)

        result = await self.session.exec(query)
        emails, companies = result.one()
        return emails or 0, companies or 0

    async def sent_day_bounds(self, user_id: uuid.UUID) -> List[Tuple[datetime, datetime]]:
        """
        First and last send time of each UTC calendar day with sends, oldest first.

        One row per day rather than per email. A UTC day overlaps at most two
        local days and local dates never go backwards, so the local dates of
        the first and last send cover every local day sent on.
        """
        utc_day = func.date(OutreachItem.sent_at)
        query = select(
            func.min(OutreachItem.sent_at),
            func.max(OutreachItem.sent_at)
        ).join(
            OutreachBatch, OutreachItem.batch_id == OutreachBatch.id
        ).where(
            OutreachBatch.user_id == user_id,
            OutreachItem.status == ItemStatus.SENT,
            OutreachItem.sent_at.is_not(None)
        ).group_by(utc_day).order_by(utc_day)

        result = await self.session.exec(query)
        return [(first, last) for first, last in result.all()]

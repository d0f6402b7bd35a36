"""
Contact repository - candidate selection for daily batches.
"""
import uuid
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import and_, func, or_, update

from daily_outreach.models.contact import Contact, Company
from daily_outreach.models.outreach import OutreachBatch, OutreachItem, BatchStatus, ItemStatus
from daily_outreach.repositories.base import BaseRepository


class ContactRepository(BaseRepository[Contact]):
    """Repository for Contact operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(Contact, session)

    def _recently_queued(
        self,
        user_id: uuid.UUID,
        since: date,
        now: datetime,
        replacing_batch_id: Optional[uuid.UUID] = None
    ):
        """
        Contact ids already taken by this user's outreach since `since`:
        anything in a live or completed batch, and anything already sent.
        Pending items of `replacing_batch_id` are free again.
        """
        live_batch = or_(
            OutreachBatch.status == BatchStatus.COMPLETED,
            and_(
                OutreachBatch.status == BatchStatus.ACTIVE,
                OutreachBatch.expires_at > now
            )
        )
        if replacing_batch_id:
            live_batch = and_(live_batch, OutreachBatch.id != replacing_batch_id)
        return select(OutreachItem.contact_id).join(
            OutreachBatch, OutreachItem.batch_id == OutreachBatch.id
        ).where(
            OutreachBatch.user_id == user_id,
            OutreachBatch.batch_date >= since,
            or_(live_batch, OutreachItem.status == ItemStatus.SENT)
        )

    def _eligible_conditions(
        self,
        user_id: uuid.UUID,
        since: date,
        now: datetime,
        replacing_batch_id: Optional[uuid.UUID] = None
    ) -> list:
        return [
            Contact.user_id == user_id,
            Contact.email.is_not(None),
            Contact.email != "",
            Contact.id.not_in(self._recently_queued(user_id, since, now, replacing_batch_id))
        ]

    async def find_eligible(
        self,
        user_id: uuid.UUID,
        since: date,
        now: datetime,
        limit: int,
        replacing_batch_id: Optional[uuid.UUID] = None
    ) -> List[Tuple[Contact, Company]]:
        """Best-ranked contacts with an email that are free to be queued."""
        query = select(Contact, Company).join(
            Company, Contact.company_id == Company.id
        ).where(
            *self._eligible_conditions(user_id, since, now, replacing_batch_id)
        ).order_by(
            Contact.probability.desc().nulls_last(),
            Contact.created_at,
            Contact.id
        ).limit(limit)
        result = await self.session.exec(query)
        return result.all()

    async def count_eligible(self, user_id: uuid.UUID, since: date, now: datetime) -> Tuple[int, int]:
        """Size of the eligible pool as (contacts, distinct companies)."""
        query = select(
            func.count(Contact.id),
            func.count(func.distinct(Contact.company_id))
        ).join(
            Company, Contact.company_id == Company.id
        ).where(
            *self._eligible_conditions(user_id, since, now)
        )
        result = await self.session.exec(query)
        contacts, companies = result.one()
        return contacts or 0, companies or 0

    async def get_many(self, contact_ids: List[uuid.UUID]) -> Dict[uuid.UUID, Contact]:
        if not contact_ids:
            return {}
        query = select(Contact).where(Contact.id.in_(contact_ids))
        result = await self.session.exec(query)
        return {contact.id: contact for contact in result.all()}

    async def get_company(self, company_id: uuid.UUID) -> Optional[Company]:
        return await self.session.get(Company, company_id)

    async def get_companies(self, company_ids: List[uuid.UUID]) -> Dict[uuid.UUID, Company]:
        if not company_ids:
            return {}
        query = select(Company).where(Company.id.in_(company_ids))
        result = await self.session.exec(query)
        return {company.id: company for company in result.all()}

    async def record_contacted(self, contact_id: uuid.UUID, contacted_at: datetime) -> None:
        """Update CRM counters after an email goes out. Caller commits."""
        query = update(Contact).where(Contact.id == contact_id).values(
            contact_status="contacted",
            last_contacted_at=contacted_at,
            total_communications=func.coalesce(Contact.total_communications, 0) + 1
        )
        await self.session.exec(query)

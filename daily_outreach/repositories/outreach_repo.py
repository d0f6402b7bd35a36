"""
Outreach repositories for batches, items and communication history.
"""
import uuid
from datetime import date
from typing import Optional, List

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import update

from daily_outreach.models.outreach import (
    OutreachBatch, OutreachItem, CommunicationHistory, BatchStatus
)
from daily_outreach.repositories.base import BaseRepository


class OutreachBatchRepository(BaseRepository[OutreachBatch]):
    """Repository for OutreachBatch operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(OutreachBatch, session)

    async def get_by_token(self, token: str) -> Optional[OutreachBatch]:
        """Get a batch by its secure link token."""
        return await self.get_by_field("secure_token", token)

    async def get_latest_for_user(self, user_id: uuid.UUID) -> Optional[OutreachBatch]:
        """Most recently created batch of a user, superseded or not."""
        query = select(OutreachBatch).where(
            OutreachBatch.user_id == user_id
        ).order_by(OutreachBatch.created_at.desc()).limit(1)
        result = await self.session.exec(query)
        return result.first()

    async def get_live_for_date(self, user_id: uuid.UUID, batch_date: date) -> Optional[OutreachBatch]:
        """Get the non-superseded batch of a user for a calendar day."""
        query = select(OutreachBatch).where(
            OutreachBatch.user_id == user_id,
            OutreachBatch.batch_date == batch_date,
            OutreachBatch.superseded_at.is_(None)
        )
        result = await self.session.exec(query)
        return result.first()

    async def create_with_items(
        self,
        batch: OutreachBatch,
        items: List[OutreachItem],
        replacing: Optional[OutreachBatch] = None
    ) -> OutreachBatch:
        """
        Insert a batch and its items in one transaction, superseding
        `replacing` in the same commit.
        Raises IntegrityError when a live batch already exists for the day.
        """
        if replacing:
            replacing.status = BatchStatus.EXPIRED
            replacing.superseded_at = batch.created_at
            self.session.add(replacing)
            await self.session.flush()

        self.session.add(batch)
        await self.session.flush()

        for position, item in enumerate(items):
            item.batch_id = batch.id
            item.position = position
            self.session.add(item)

        await self.session.commit()
        await self.session.refresh(batch)
        return batch

    async def mark_expired(self, batch: OutreachBatch) -> OutreachBatch:
        """Persist the expired status on an active batch past its TTL."""
        query = update(OutreachBatch).where(
            OutreachBatch.id == batch.id,
            OutreachBatch.status == BatchStatus.ACTIVE
        ).values(status=BatchStatus.EXPIRED)
        await self.session.exec(query)
        await self.session.commit()
        await self.session.refresh(batch)
        return batch

    async def mark_completed(self, batch_id: uuid.UUID) -> bool:
        """Move an active batch to completed. Returns True if this call did it."""
        query = update(OutreachBatch).where(
            OutreachBatch.id == batch_id,
            OutreachBatch.status == BatchStatus.ACTIVE
        ).values(status=BatchStatus.COMPLETED)
        result = await self.session.exec(query)
        await self.session.commit()
        return result.rowcount > 0


class OutreachItemRepository(BaseRepository[OutreachItem]):
    """Repository for OutreachItem operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(OutreachItem, session)

    async def list_for_batch(self, batch_id: uuid.UUID) -> List[OutreachItem]:
        """Items of a batch in their creation order, freshly read."""
        query = select(OutreachItem).where(
            OutreachItem.batch_id == batch_id
        ).order_by(OutreachItem.position).execution_options(populate_existing=True)
        result = await self.session.exec(query)
        return result.all()

    async def transition(
        self,
        item_id: uuid.UUID,
        batch_id: uuid.UUID,
        from_status: str,
        values: dict,
        commit: bool = True
    ) -> bool:
        """
        Conditional single-row change.
        Only applies while the item is still in `from_status`.
        """
        query = update(OutreachItem).where(
            OutreachItem.id == item_id,
            OutreachItem.batch_id == batch_id,
            OutreachItem.status == from_status
        ).values(**values)
        result = await self.session.exec(query)
        if commit:
            await self.session.commit()
        return result.rowcount > 0

    async def link_communication(self, item_id: uuid.UUID, communication_id: uuid.UUID) -> None:
        """Attach the CRM record to a sent item. Caller commits."""
        query = update(OutreachItem).where(
            OutreachItem.id == item_id
        ).values(communication_id=communication_id)
        await self.session.exec(query)

    async def reload(self, item: OutreachItem) -> OutreachItem:
        """Re-read an item from the database."""
        await self.session.refresh(item)
        return item


class CommunicationHistoryRepository(BaseRepository[CommunicationHistory]):
    """Repository for CommunicationHistory operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(CommunicationHistory, session)

    async def record(self, communication: CommunicationHistory) -> CommunicationHistory:
        """Stage a CRM record inside the current transaction. Caller commits."""
        self.session.add(communication)
        await self.session.flush()
        return communication

    async def get_by_contact(self, contact_id: uuid.UUID, limit: int = 50) -> List[CommunicationHistory]:
        """Get the communication trail for a contact, newest first."""
        query = select(CommunicationHistory).where(
            CommunicationHistory.contact_id == contact_id
        ).order_by(CommunicationHistory.sent_at.desc()).limit(limit)
        result = await self.session.exec(query)
        return result.all()

"""
Batch state machine - token-addressed item lifecycle.

Items move pending -> sent | skipped exactly once. A batch is completed when
no item is pending, and expired once past its TTL. Every read and mutation
goes through the batch's secure token.
"""
import json
import logging
import uuid
from datetime import datetime
from typing import Optional, List, Sequence, Tuple

from sqlmodel.ext.asyncio.session import AsyncSession

from daily_outreach.core.dates import utcnow
from daily_outreach.core.exceptions import NotFoundError, BatchExpiredError, InvalidStateError
from daily_outreach.models.outreach import (
    OutreachBatch, OutreachItem, CommunicationHistory, BatchStatus, ItemStatus
)
from daily_outreach.repositories.outreach_repo import (
    OutreachBatchRepository, OutreachItemRepository, CommunicationHistoryRepository
)
from daily_outreach.repositories.contact_repo import ContactRepository
from daily_outreach.repositories.preferences_repo import OutreachPreferencesRepository
from daily_outreach.repositories.user_repo import ProfileRepository
from daily_outreach.services.merge_fields import resolve_merge_fields

logger = logging.getLogger(__name__)


def is_complete(items: Sequence[OutreachItem]) -> bool:
    """A batch is complete when none of its items is pending."""
    return all(item.status != ItemStatus.PENDING for item in items)


def find_next_pending(items: Sequence[OutreachItem], after_index: int = -1) -> Optional[int]:
    """Index of the first pending item after `after_index`, or None."""
    for index in range(max(after_index + 1, 0), len(items)):
        if items[index].status == ItemStatus.PENDING:
            return index
    return None


def is_expired(batch: OutreachBatch, now: datetime) -> bool:
    return batch.status == BatchStatus.EXPIRED or now > batch.expires_at


def parse_edited_content(item: OutreachItem) -> dict:
    """User edits as {"subject", "body"}; empty when there are none."""
    if not item.edited_content:
        return {}
    try:
        edited = json.loads(item.edited_content)
    except ValueError:
        logger.warning(f"Unreadable edited content on item {item.id}")
        return {}
    return edited if isinstance(edited, dict) else {}


class BatchService:
    """Service for walking through a daily batch."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.batch_repo = OutreachBatchRepository(session)
        self.item_repo = OutreachItemRepository(session)
        self.history_repo = CommunicationHistoryRepository(session)
        self.contact_repo = ContactRepository(session)
        self.preferences_repo = OutreachPreferencesRepository(session)
        self.profile_repo = ProfileRepository(session)

    # Reads
    async def get_batch(
        self,
        token: str,
        now: Optional[datetime] = None
    ) -> Tuple[OutreachBatch, List[OutreachItem]]:
        """Batch and its items in position order. Reconciles completion."""
        now = now or utcnow()
        batch = await self._load_batch(token, now)
        items = await self.item_repo.list_for_batch(batch.id)
        await self._reconcile_completion(batch, items)
        return batch, items

    async def describe_items(self, batch: OutreachBatch, items: Sequence[OutreachItem]) -> List[dict]:
        """Items with their contact, company and the text as it will be sent."""
        contacts = await self.contact_repo.get_many([item.contact_id for item in items])
        companies = await self.contact_repo.get_companies([item.company_id for item in items])
        sender = await self._get_sender(batch.user_id)

        described = []
        for item in items:
            contact = contacts.get(item.contact_id)
            company = companies.get(item.company_id)
            subject, body = self._final_content(item, contact, company, sender)
            described.append({
                "item": item,
                "contact": contact,
                "company": company,
                "subject": subject,
                "body": body,
            })
        return described

    async def describe_item(self, item: OutreachItem) -> dict:
        batch = await self.batch_repo.get(item.batch_id)
        described = await self.describe_items(batch, [item])
        return described[0]

    # Mutations
    async def update_item(
        self,
        token: str,
        item_id: uuid.UUID,
        subject: Optional[str] = None,
        body: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> OutreachItem:
        """Edit subject and/or body of a pending item. Status stays pending."""
        now = now or utcnow()
        batch = await self._load_batch(token, now)
        item = await self._load_item(batch, item_id)

        if item.status != ItemStatus.PENDING:
            raise InvalidStateError("Only pending items can be edited", current=item.status)

        contact, company, sender = await self._merge_context(batch, item)

        generated_subject = resolve_merge_fields(item.email_subject, contact, company, sender)
        generated_body = resolve_merge_fields(item.email_body, contact, company, sender)
        current_subject, current_body = self._final_content(item, contact, company, sender)

        new_subject = subject if subject is not None else current_subject
        new_body = body if body is not None else current_body

        edited_content = None
        if new_subject != generated_subject or new_body != generated_body:
            edited_content = json.dumps({"subject": new_subject, "body": new_body})

        changed = await self.item_repo.transition(
            item.id, batch.id, ItemStatus.PENDING, {"edited_content": edited_content}
        )
        item = await self.item_repo.reload(item)
        if not changed:
            raise InvalidStateError("Only pending items can be edited", current=item.status)

        return item

    async def mark_sent(
        self,
        token: str,
        item_id: uuid.UUID,
        check_completion: bool = True,
        now: Optional[datetime] = None
    ) -> OutreachItem:
        """
        pending -> sent. Repeating it on a sent item is a no-op.
        Writes the CRM record and contact counters in the same transaction.
        """
        now = now or utcnow()
        batch = await self._load_batch(token, now)
        item = await self._load_item(batch, item_id)

        if item.status == ItemStatus.SENT:
            return item
        if item.status != ItemStatus.PENDING:
            raise InvalidStateError("Only pending items can be sent", current=item.status)

        changed = await self.item_repo.transition(
            item.id,
            batch.id,
            ItemStatus.PENDING,
            {"status": ItemStatus.SENT, "sent_at": now},
            commit=False
        )
        if not changed:
            # Lost a race with another request on the same item
            await self.session.rollback()
            item = await self.item_repo.reload(item)
            if item.status == ItemStatus.SENT:
                return item
            raise InvalidStateError("Only pending items can be sent", current=item.status)

        contact, company, sender = await self._merge_context(batch, item)
        subject, body = self._final_content(item, contact, company, sender)

        communication = await self.history_repo.record(CommunicationHistory(
            user_id=batch.user_id,
            contact_id=item.contact_id,
            company_id=item.company_id,
            batch_id=batch.id,
            subject=subject,
            content=body,
            content_preview=body[:200],
            sent_at=now,
            meta_data={
                "source": "daily_outreach",
                "batch_id": str(batch.id),
                "item_id": str(item.id),
                "tone": item.email_tone,
            }
        ))

        await self.item_repo.link_communication(item.id, communication.id)
        await self.contact_repo.record_contacted(item.contact_id, now)
        await self.preferences_repo.clear_nudge_streak(batch.user_id)
        await self.session.commit()

        item = await self.item_repo.reload(item)
        logger.info(f"Item {item.id} of batch {batch.id} marked sent")

        if check_completion:
            await self.check_completion(batch)
        return item

    async def mark_skipped(
        self,
        token: str,
        item_id: uuid.UUID,
        check_completion: bool = True,
        now: Optional[datetime] = None
    ) -> OutreachItem:
        """pending -> skipped. Any other starting state is rejected."""
        now = now or utcnow()
        batch = await self._load_batch(token, now)
        item = await self._load_item(batch, item_id)

        if item.status != ItemStatus.PENDING:
            raise InvalidStateError("Only pending items can be skipped", current=item.status)

        changed = await self.item_repo.transition(
            item.id, batch.id, ItemStatus.PENDING, {"status": ItemStatus.SKIPPED}
        )
        item = await self.item_repo.reload(item)
        if not changed:
            raise InvalidStateError("Only pending items can be skipped", current=item.status)

        if check_completion:
            await self.check_completion(batch)
        return item

    async def check_completion(self, batch: OutreachBatch) -> OutreachBatch:
        """Re-read item states and complete the batch if nothing is pending."""
        items = await self.item_repo.list_for_batch(batch.id)
        await self._reconcile_completion(batch, items)
        return batch

    # Helpers
    async def _load_batch(self, token: str, now: datetime) -> OutreachBatch:
        batch = await self.batch_repo.get_by_token(token)
        if not batch:
            raise NotFoundError("Batch")

        if is_expired(batch, now):
            if batch.status == BatchStatus.ACTIVE:
                await self.batch_repo.mark_expired(batch)
                logger.info(f"Batch {batch.id} expired at {batch.expires_at}")
            raise BatchExpiredError()

        return batch

    async def _load_item(self, batch: OutreachBatch, item_id: uuid.UUID) -> OutreachItem:
        item = await self.item_repo.get(item_id)
        if not item:
            raise NotFoundError("Item", str(item_id))
        if item.batch_id != batch.id:
            raise InvalidStateError("Item does not belong to this batch")
        return item

    async def _reconcile_completion(self, batch: OutreachBatch, items: Sequence[OutreachItem]) -> None:
        if batch.status != BatchStatus.ACTIVE or not is_complete(items):
            return
        if await self.batch_repo.mark_completed(batch.id):
            logger.info(f"Batch {batch.id} completed")
        await self.session.refresh(batch)

    async def _merge_context(self, batch: OutreachBatch, item: OutreachItem):
        contact = await self.contact_repo.get(item.contact_id)
        company = await self.contact_repo.get_company(item.company_id)
        sender = await self._get_sender(batch.user_id)
        return contact, company, sender

    async def _get_sender(self, user_id: uuid.UUID):
        preferences = await self.preferences_repo.get_for_user(user_id)
        if not preferences:
            return None
        return await self.profile_repo.get_sender(user_id, preferences.active_sender_profile_id)

    def _final_content(self, item: OutreachItem, contact, company, sender) -> Tuple[str, str]:
        """Edited text when present, else generated text; merge fields resolved."""
        edited = parse_edited_content(item)
        subject = edited.get("subject", item.email_subject)
        body = edited.get("body", item.email_body)
        return (
            resolve_merge_fields(subject, contact, company, sender),
            resolve_merge_fields(body, contact, company, sender),
        )

"""
Tests for the batch state machine: walk-through, idempotent sends,
rejected transitions, expiry and edits.
"""
import json
import uuid
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import update

from daily_outreach.core.exceptions import NotFoundError, BatchExpiredError, InvalidStateError
from daily_outreach.models.outreach import BatchStatus, ItemStatus, OutreachItem
from daily_outreach.repositories.outreach_repo import CommunicationHistoryRepository
from daily_outreach.services.batch_service import (
    BatchService, is_complete, find_next_pending, parse_edited_content
)
from tests.conftest import NOW, TODAY


def _items(*statuses):
    return [SimpleNamespace(id=uuid.uuid4(), status=status, edited_content=None) for status in statuses]


class TestPureHelpers:
    """State predicates that need no database."""

    def test_is_complete_when_nothing_pending(self):
        assert is_complete(_items(ItemStatus.SENT, ItemStatus.SKIPPED, ItemStatus.SENT))

    def test_is_not_complete_with_a_pending_item(self):
        assert not is_complete(_items(ItemStatus.SENT, ItemStatus.PENDING))

    def test_legacy_edited_items_count_as_done(self):
        assert is_complete(_items(ItemStatus.EDITED, ItemStatus.SENT))

    def test_find_next_pending_from_start(self):
        items = _items(ItemStatus.SENT, ItemStatus.PENDING, ItemStatus.PENDING)
        assert find_next_pending(items) == 1

    def test_find_next_pending_after_index(self):
        items = _items(ItemStatus.PENDING, ItemStatus.SKIPPED, ItemStatus.PENDING)
        assert find_next_pending(items, after_index=0) == 2

    def test_find_next_pending_none_left(self):
        items = _items(ItemStatus.PENDING, ItemStatus.SENT)
        assert find_next_pending(items, after_index=0) is None
        assert find_next_pending([]) is None

    def test_parse_edited_content(self):
        item = SimpleNamespace(id=uuid.uuid4(), edited_content=json.dumps({"subject": "S", "body": "B"}))
        assert parse_edited_content(item) == {"subject": "S", "body": "B"}

    def test_parse_edited_content_ignores_garbage(self):
        item = SimpleNamespace(id=uuid.uuid4(), edited_content="{not json")
        assert parse_edited_content(item) == {}


@pytest.mark.asyncio
class TestGetBatch:
    """Token lookup, expiry and completion reconciliation."""

    async def test_returns_items_in_position_order(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING] * 3)
        service = BatchService(session)

        loaded, items = await service.get_batch(batch.secure_token, now=NOW)

        assert loaded.id == batch.id
        assert [item.position for item in items] == [0, 1, 2]
        assert loaded.status == BatchStatus.ACTIVE

    async def test_unknown_token_is_not_found(self, session):
        service = BatchService(session)

        with pytest.raises(NotFoundError) as exc:
            await service.get_batch("no-such-token", now=NOW)
        assert exc.value.status_code == 404

    async def test_past_ttl_is_expired_and_persisted(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING])
        service = BatchService(session)

        with pytest.raises(BatchExpiredError) as exc:
            await service.get_batch(batch.secure_token, now=batch.expires_at + timedelta(seconds=1))
        assert exc.value.status_code == 410

        await session.refresh(batch)
        assert batch.status == BatchStatus.EXPIRED

    async def test_completed_batch_keeps_status_after_ttl(self, session, make_batch):
        batch = await make_batch([ItemStatus.SENT], status=BatchStatus.COMPLETED)
        service = BatchService(session)

        with pytest.raises(BatchExpiredError):
            await service.get_batch(batch.secure_token, now=batch.expires_at + timedelta(hours=1))

        await session.refresh(batch)
        assert batch.status == BatchStatus.COMPLETED

    async def test_superseded_batch_is_expired(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING], status=BatchStatus.EXPIRED)
        service = BatchService(session)

        with pytest.raises(BatchExpiredError):
            await service.get_batch(batch.secure_token, now=NOW)

    async def test_reconciles_completion_on_read(self, session, make_batch):
        batch = await make_batch([ItemStatus.SENT, ItemStatus.SKIPPED])
        service = BatchService(session)

        loaded, _ = await service.get_batch(batch.secure_token, now=NOW)

        assert loaded.status == BatchStatus.COMPLETED


@pytest.mark.asyncio
class TestMarkSent:
    """pending -> sent, and everything recorded alongside it."""

    async def test_marks_item_sent(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING, ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)

        item = await service.mark_sent(batch.secure_token, items[0].id, now=NOW)

        assert item.status == ItemStatus.SENT
        assert item.sent_at == NOW
        assert item.communication_id is not None

        loaded, _ = await service.get_batch(batch.secure_token, now=NOW)
        assert loaded.status == BatchStatus.ACTIVE

    async def test_repeated_send_is_a_no_op(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING, ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)

        first = await service.mark_sent(batch.secure_token, items[0].id, now=NOW)
        second = await service.mark_sent(batch.secure_token, items[0].id, now=NOW + timedelta(minutes=5))

        assert second.sent_at == first.sent_at == NOW
        history = await CommunicationHistoryRepository(session).get_by_contact(items[0].contact_id)
        assert len(history) == 1

    async def test_records_history_with_final_text(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)

        await service.mark_sent(batch.secure_token, items[0].id, now=NOW)

        history = await CommunicationHistoryRepository(session).get_by_contact(items[0].contact_id)
        assert len(history) == 1
        record = history[0]
        assert record.batch_id == batch.id
        assert record.subject == "Quick question for Batch0312 Co 0"
        assert record.content.startswith("Hi Alex0,")
        assert "{{" not in record.content
        assert record.meta_data["source"] == "daily_outreach"
        assert record.meta_data["item_id"] == str(items[0].id)

    async def test_updates_contact_counters(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)

        await service.mark_sent(batch.secure_token, items[0].id, now=NOW)

        contact = await service.contact_repo.get(items[0].contact_id)
        await session.refresh(contact)
        assert contact.contact_status == "contacted"
        assert contact.last_contacted_at == NOW
        assert contact.total_communications == 1

    async def test_clears_nudge_streak(self, session, campaign, make_batch):
        campaign.nudge_streak_started_at = NOW - timedelta(days=3)
        session.add(campaign)
        await session.commit()

        batch = await make_batch([ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)

        await service.mark_sent(batch.secure_token, items[0].id, now=NOW)

        await session.refresh(campaign)
        assert campaign.nudge_streak_started_at is None

    async def test_skipped_item_cannot_be_sent(self, session, make_batch):
        batch = await make_batch([ItemStatus.SKIPPED, ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)

        with pytest.raises(InvalidStateError) as exc:
            await service.mark_sent(batch.secure_token, items[0].id, now=NOW)
        assert exc.value.status_code == 409

    async def test_unknown_item_is_not_found(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING])
        service = BatchService(session)

        with pytest.raises(NotFoundError):
            await service.mark_sent(batch.secure_token, uuid.uuid4(), now=NOW)

    async def test_item_of_another_batch_is_rejected(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING])
        other = await make_batch([ItemStatus.PENDING], batch_date=TODAY - timedelta(days=1))
        service = BatchService(session)
        _, other_items = await service.get_batch(other.secure_token, now=NOW)

        with pytest.raises(InvalidStateError):
            await service.mark_sent(batch.secure_token, other_items[0].id, now=NOW)

        await session.refresh(other_items[0])
        assert other_items[0].status == ItemStatus.PENDING

    async def test_expired_batch_rejects_sends(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)

        with pytest.raises(BatchExpiredError):
            await service.mark_sent(batch.secure_token, items[0].id, now=batch.expires_at + timedelta(minutes=1))

    async def test_deferred_completion_check(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)

        await service.mark_sent(batch.secure_token, items[0].id, check_completion=False, now=NOW)
        await session.refresh(batch)
        assert batch.status == BatchStatus.ACTIVE

        await service.check_completion(batch)
        assert batch.status == BatchStatus.COMPLETED


@pytest.mark.asyncio
class TestMarkSkipped:
    """pending -> skipped only."""

    async def test_skips_pending_item(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING, ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)

        item = await service.mark_skipped(batch.secure_token, items[0].id, now=NOW)

        assert item.status == ItemStatus.SKIPPED
        assert item.sent_at is None

    async def test_skipping_twice_is_rejected(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING, ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)

        await service.mark_skipped(batch.secure_token, items[0].id, now=NOW)
        with pytest.raises(InvalidStateError):
            await service.mark_skipped(batch.secure_token, items[0].id, now=NOW)

    async def test_sent_item_cannot_be_skipped(self, session, make_batch):
        batch = await make_batch([ItemStatus.SENT, ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)

        with pytest.raises(InvalidStateError):
            await service.mark_skipped(batch.secure_token, items[0].id, now=NOW)

        await session.refresh(items[0])
        assert items[0].status == ItemStatus.SENT


@pytest.mark.asyncio
class TestUpdateItem:
    """Edits on pending items."""

    async def test_edit_is_stored_and_used_on_send(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)

        item = await service.update_item(
            batch.secure_token, items[0].id, subject="Coffee, {{first_name}}?", now=NOW
        )

        assert item.status == ItemStatus.PENDING
        edited = json.loads(item.edited_content)
        assert edited["subject"] == "Coffee, {{first_name}}?"
        assert edited["body"].startswith("Hi Alex0,")

        await service.mark_sent(batch.secure_token, item.id, now=NOW)
        history = await CommunicationHistoryRepository(session).get_by_contact(item.contact_id)
        assert history[0].subject == "Coffee, Alex0?"

    async def test_reverting_to_generated_text_clears_edits(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)
        described = await service.describe_item(items[0])

        await service.update_item(batch.secure_token, items[0].id, subject="Something else", now=NOW)
        item = await service.update_item(batch.secure_token, items[0].id, subject=described["subject"], now=NOW)

        assert item.edited_content is None

    async def test_cleared_subject_is_kept(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)

        item = await service.update_item(batch.secure_token, items[0].id, subject="", now=NOW)

        assert json.loads(item.edited_content)["subject"] == ""
        described = await service.describe_item(item)
        assert described["subject"] == ""
        assert described["body"].startswith("Hi Alex0,")

    async def test_sent_item_cannot_be_edited(self, session, make_batch):
        batch = await make_batch([ItemStatus.SENT])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW - timedelta(hours=1))

        with pytest.raises(InvalidStateError):
            await service.update_item(batch.secure_token, items[0].id, body="Too late", now=NOW)


@pytest.mark.asyncio
class TestWalkThrough:
    """A user working through a three-item batch."""

    async def test_send_skip_send_completes_batch(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING] * 3)
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)
        first, second, third = (item.id for item in items)

        await service.mark_sent(batch.secure_token, first, now=NOW)
        _, items = await service.get_batch(batch.secure_token, now=NOW)
        assert find_next_pending(items) == 1

        await service.mark_skipped(batch.secure_token, second, now=NOW)
        loaded, items = await service.get_batch(batch.secure_token, now=NOW)
        assert find_next_pending(items) == 2
        assert loaded.status == BatchStatus.ACTIVE

        await service.mark_sent(batch.secure_token, third, now=NOW)
        loaded, items = await service.get_batch(batch.secure_token, now=NOW)

        assert loaded.status == BatchStatus.COMPLETED
        assert [item.status for item in items] == [ItemStatus.SENT, ItemStatus.SKIPPED, ItemStatus.SENT]
        assert find_next_pending(items) is None


async def _change_row_behind_session(session, item_id, status, sent_at=None) -> OutreachItem:
    """
    Change an item's row directly, as when a second tab acts first, and
    return the still-pending copy the session holds.
    """
    stale = await session.get(OutreachItem, item_id)
    values = {"status": status}
    if sent_at:
        values["sent_at"] = sent_at
    await session.exec(
        update(OutreachItem).where(OutreachItem.id == item_id).values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    assert stale.status == ItemStatus.PENDING
    return stale


@pytest.mark.asyncio
class TestConcurrentTransitions:
    """The conditional update decides when two requests race on one item."""

    async def test_send_after_other_tab_sent_is_a_no_op(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING, ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)
        item_id, contact_id = items[0].id, items[0].contact_id
        earlier = NOW - timedelta(minutes=1)

        stale = await _change_row_behind_session(session, item_id, ItemStatus.SENT, sent_at=earlier)
        with patch.object(service.item_repo, "get", AsyncMock(return_value=stale)):
            item = await service.mark_sent(batch.secure_token, item_id, now=NOW)

        assert item.status == ItemStatus.SENT
        assert item.sent_at == earlier
        assert await CommunicationHistoryRepository(session).get_by_contact(contact_id) == []

    async def test_send_after_other_tab_skipped_is_rejected(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING, ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)
        item_id, contact_id = items[0].id, items[0].contact_id

        stale = await _change_row_behind_session(session, item_id, ItemStatus.SKIPPED)
        with patch.object(service.item_repo, "get", AsyncMock(return_value=stale)):
            with pytest.raises(InvalidStateError) as error:
                await service.mark_sent(batch.secure_token, item_id, now=NOW)

        assert error.value.status_code == 409
        assert "current status: 'skipped'" in error.value.message
        assert await CommunicationHistoryRepository(session).get_by_contact(contact_id) == []

    async def test_skip_after_other_tab_sent_is_rejected(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING, ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)
        item_id = items[0].id

        stale = await _change_row_behind_session(session, item_id, ItemStatus.SENT, sent_at=NOW)
        with patch.object(service.item_repo, "get", AsyncMock(return_value=stale)):
            with pytest.raises(InvalidStateError) as error:
                await service.mark_skipped(batch.secure_token, item_id, now=NOW)

        assert "current status: 'sent'" in error.value.message
        item = await session.get(OutreachItem, item_id)
        await session.refresh(item)
        assert item.status == ItemStatus.SENT

    async def test_edit_after_other_tab_skipped_is_rejected(self, session, make_batch):
        batch = await make_batch([ItemStatus.PENDING])
        service = BatchService(session)
        _, items = await service.get_batch(batch.secure_token, now=NOW)
        item_id = items[0].id

        stale = await _change_row_behind_session(session, item_id, ItemStatus.SKIPPED)
        with patch.object(service.item_repo, "get", AsyncMock(return_value=stale)):
            with pytest.raises(InvalidStateError):
                await service.update_item(batch.secure_token, item_id, subject="Late edit", now=NOW)

        item = await session.get(OutreachItem, item_id)
        await session.refresh(item)
        assert item.status == ItemStatus.SKIPPED
        assert item.edited_content is None

"""
Batch generator - one bounded batch of pre-written emails per user per day.

Idempotent per (user, date): the first call creates the batch, later calls
return it. Concurrent callers are serialized by the partial unique index on
live batches; the loser rolls back and returns the winner's batch.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional, List, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel.ext.asyncio.session import AsyncSession

from daily_outreach.config import settings
from daily_outreach.core.dates import utcnow, get_timezone, local_date, local_midnight_utc
from daily_outreach.core.security import generate_secure_token
from daily_outreach.models.outreach import OutreachBatch, OutreachItem
from daily_outreach.models.preferences import OutreachPreferences
from daily_outreach.repositories.outreach_repo import OutreachBatchRepository, OutreachItemRepository
from daily_outreach.repositories.contact_repo import ContactRepository
from daily_outreach.repositories.preferences_repo import OutreachPreferencesRepository
from daily_outreach.repositories.user_repo import ProfileRepository
from daily_outreach.services.email_composer import EmailComposer, get_email_composer

logger = logging.getLogger(__name__)


class GenerationOutcome:
    CREATED = "created"
    EXISTING = "existing"
    SUPPRESSED = "suppressed"  # disabled, on vacation or no active campaign
    NO_CANDIDATES = "no_candidates"


@dataclass
class GenerationResult:
    outcome: str
    batch: Optional[OutreachBatch] = None
    items: List[OutreachItem] = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def has_batch(self) -> bool:
        return self.batch is not None


def batch_expires_at(batch_date: date, tz) -> datetime:
    """End of the day after `batch_date` (by default) in the user's timezone."""
    last_day = batch_date + timedelta(days=settings.OUTREACH_BATCH_EXPIRY_DAYS)
    return local_midnight_utc(last_day + timedelta(days=1), tz)


def suppression_reason(preferences: Optional[OutreachPreferences], batch_date: date) -> Optional[str]:
    """Why no batch should be generated for this day, or None."""
    if not preferences or not preferences.enabled:
        return "Daily outreach is disabled"
    if preferences.is_on_vacation(batch_date):
        return "Vacation mode is active"
    if not preferences.has_active_campaign:
        return "No active campaign: set a product, sender profile and customer profile"
    return None


class BatchGenerator:
    """Builds daily batches from the user's best uncontacted contacts."""

    def __init__(self, session: AsyncSession, composer: Optional[EmailComposer] = None):
        self.session = session
        self.batch_repo = OutreachBatchRepository(session)
        self.item_repo = OutreachItemRepository(session)
        self.contact_repo = ContactRepository(session)
        self.preferences_repo = OutreachPreferencesRepository(session)
        self.profile_repo = ProfileRepository(session)
        self.composer = composer or get_email_composer()

    async def get_or_create_batch(
        self,
        user_id: uuid.UUID,
        batch_date: Optional[date] = None,
        now: Optional[datetime] = None
    ) -> GenerationResult:
        """
        Return the live batch for the day, or generate one.
        `batch_date` defaults to today in the user's timezone.
        """
        now = now or utcnow()
        preferences = await self.preferences_repo.get_for_user(user_id)
        tz = get_timezone(preferences.timezone if preferences else None)
        batch_date = batch_date or local_date(now, tz)

        existing = await self.batch_repo.get_live_for_date(user_id, batch_date)
        if existing:
            items = await self.item_repo.list_for_batch(existing.id)
            return GenerationResult(GenerationOutcome.EXISTING, existing, items)

        return await self._generate(user_id, batch_date, now, preferences, tz)

    async def regenerate_batch(
        self,
        user_id: uuid.UUID,
        batch_date: Optional[date] = None,
        now: Optional[datetime] = None
    ) -> GenerationResult:
        """
        Replace the day's live batch with a fresh one.
        The old batch stays live when no replacement can be generated.
        """
        now = now or utcnow()
        preferences = await self.preferences_repo.get_for_user(user_id)
        tz = get_timezone(preferences.timezone if preferences else None)
        batch_date = batch_date or local_date(now, tz)

        live = await self.batch_repo.get_live_for_date(user_id, batch_date)
        result = await self._generate(user_id, batch_date, now, preferences, tz, replacing=live)
        if live and result.outcome == GenerationOutcome.CREATED:
            logger.info(f"Superseded batch {live.id} for user {user_id} on {batch_date}")
        return result

    async def _generate(
        self,
        user_id: uuid.UUID,
        batch_date: date,
        now: datetime,
        preferences: Optional[OutreachPreferences],
        tz,
        replacing: Optional[OutreachBatch] = None
    ) -> GenerationResult:
        reason = suppression_reason(preferences, batch_date)
        if reason:
            logger.info(f"Batch generation suppressed for user {user_id} on {batch_date}: {reason}")
            return GenerationResult(GenerationOutcome.SUPPRESSED, reason=reason)

        product, sender, customer = await self.profile_repo.get_campaign(preferences)
        if not (product and sender and customer):
            reason = "Active campaign profiles could not be found"
            logger.warning(f"Batch generation suppressed for user {user_id}: {reason}")
            return GenerationResult(GenerationOutcome.SUPPRESSED, reason=reason)

        since = batch_date - timedelta(days=settings.OUTREACH_CONTACT_LOOKBACK_DAYS)
        candidates = await self.contact_repo.find_eligible(
            user_id, since, now,
            limit=preferences.min_contacts_required,
            replacing_batch_id=replacing.id if replacing else None
        )
        if not candidates:
            logger.info(f"No eligible contacts for user {user_id} on {batch_date}")
            return GenerationResult(
                GenerationOutcome.NO_CANDIDATES,
                reason="No contacts available for outreach"
            )

        items = []
        for contact, company in candidates:
            email = await self.composer.compose(contact, company, sender, product, customer)
            items.append(OutreachItem(
                contact_id=contact.id,
                company_id=company.id,
                email_subject=email.subject,
                email_body=email.body,
                email_tone=email.tone
            ))

        batch = OutreachBatch(
            user_id=user_id,
            batch_date=batch_date,
            secure_token=generate_secure_token(),
            created_at=now,
            expires_at=batch_expires_at(batch_date, tz)
        )

        try:
            batch = await self.batch_repo.create_with_items(batch, items, replacing=replacing)
        except IntegrityError:
            await self.session.rollback()
            winner = await self.batch_repo.get_live_for_date(user_id, batch_date)
            if not winner:
                raise
            logger.info(f"Concurrent generation for user {user_id} on {batch_date}, using batch {winner.id}")
            items = await self.item_repo.list_for_batch(winner.id)
            return GenerationResult(GenerationOutcome.EXISTING, winner, items)

        items = await self.item_repo.list_for_batch(batch.id)
        logger.info(f"Created batch {batch.id} for user {user_id} on {batch_date} with {len(items)} items")
        return GenerationResult(GenerationOutcome.CREATED, batch, items)

    async def count_available_contacts(
        self,
        user_id: uuid.UUID,
        now: Optional[datetime] = None,
        timezone: Optional[str] = None
    ) -> Tuple[int, int]:
        """Eligible pool size today as (contacts, companies)."""
        now = now or utcnow()
        today = local_date(now, get_timezone(timezone))
        since = today - timedelta(days=settings.OUTREACH_CONTACT_LOOKBACK_DAYS)
        return await self.contact_repo.count_eligible(user_id, since, now)

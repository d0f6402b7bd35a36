"""
Streak and statistics aggregator for the outreach dashboard.
Everything here is derived from sent items on read; nothing is stored.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Iterable, Set

from sqlmodel.ext.asyncio.session import AsyncSession

from daily_outreach.config import settings
from daily_outreach.core.dates import (
    utcnow, get_timezone, local_date, local_midnight_utc, week_start, month_start, weekday_numbers
)
from daily_outreach.models.outreach import ItemStatus
from daily_outreach.repositories.stats_repo import OutreachStatsRepository
from daily_outreach.repositories.outreach_repo import OutreachBatchRepository, OutreachItemRepository
from daily_outreach.repositories.contact_repo import ContactRepository
from daily_outreach.repositories.preferences_repo import OutreachPreferencesRepository

logger = logging.getLogger(__name__)


@dataclass
class TodaysBatch:
    id: uuid.UUID
    token: str
    status: str
    created_at: datetime
    item_count: int
    pending_count: int


@dataclass
class StreakStats:
    current_streak: int = 0
    longest_streak: int = 0
    weekly_goal: int = 0
    weekly_progress: int = 0
    emails_sent_today: int = 0
    emails_sent_this_week: int = 0
    emails_sent_this_month: int = 0
    emails_sent_all_time: int = 0
    companies_contacted_this_week: int = 0
    companies_contacted_this_month: int = 0
    companies_contacted_all_time: int = 0
    available_contacts: int = 0
    available_companies: int = 0
    todays_batch: Optional[TodaysBatch] = None


def compute_current_streak(send_days: Set[date], today: date) -> int:
    """
    Consecutive send days ending today.
    Today not having a send yet does not break the streak; it counts
    back from yesterday instead.
    """
    day = today if today in send_days else today - timedelta(days=1)
    streak = 0
    while day in send_days:
        streak += 1
        day -= timedelta(days=1)
    return streak


def compute_longest_streak(send_days: Iterable[date]) -> int:
    longest = 0
    run = 0
    previous = None
    for day in sorted(set(send_days)):
        if previous is not None and day - previous == timedelta(days=1):
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        previous = day
    return longest


class StreakService:
    """Read-only statistics over a user's outreach history."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.stats_repo = OutreachStatsRepository(session)
        self.batch_repo = OutreachBatchRepository(session)
        self.item_repo = OutreachItemRepository(session)
        self.contact_repo = ContactRepository(session)
        self.preferences_repo = OutreachPreferencesRepository(session)

    async def compute_stats(self, user_id: uuid.UUID, now: Optional[datetime] = None) -> StreakStats:
        """Streaks, windowed send counts and today's batch for the dashboard."""
        now = now or utcnow()
        preferences = await self.preferences_repo.get_for_user(user_id)
        tz = get_timezone(preferences.timezone if preferences else None)
        schedule_days = preferences.schedule_days if preferences else settings.OUTREACH_DEFAULT_SCHEDULE_DAYS

        today = local_date(now, tz)
        this_week = week_start(today)
        this_month = month_start(today)

        stats = StreakStats(weekly_goal=len(weekday_numbers(schedule_days)))

        # Counts per window, filtered in the database
        stats.emails_sent_today, _ = await self.stats_repo.sent_counts(
            user_id, local_midnight_utc(today, tz)
        )
        stats.emails_sent_this_week, stats.companies_contacted_this_week = await self.stats_repo.sent_counts(
            user_id, local_midnight_utc(this_week, tz)
        )
        stats.emails_sent_this_month, stats.companies_contacted_this_month = await self.stats_repo.sent_counts(
            user_id, local_midnight_utc(this_month, tz)
        )
        stats.emails_sent_all_time, stats.companies_contacted_all_time = await self.stats_repo.sent_counts(user_id)

        # Streaks need the local calendar day of every send
        send_days = set()
        for first, last in await self.stats_repo.sent_day_bounds(user_id):
            send_days.add(local_date(first, tz))
            send_days.add(local_date(last, tz))
        stats.current_streak = compute_current_streak(send_days, today)
        stats.longest_streak = compute_longest_streak(send_days)
        stats.weekly_progress = len([day for day in send_days if this_week <= day <= today])

        since = today - timedelta(days=settings.OUTREACH_CONTACT_LOOKBACK_DAYS)
        stats.available_contacts, stats.available_companies = await self.contact_repo.count_eligible(
            user_id, since, now
        )

        batch = await self.batch_repo.get_live_for_date(user_id, today)
        if batch:
            items = await self.item_repo.list_for_batch(batch.id)
            stats.todays_batch = TodaysBatch(
                id=batch.id,
                token=batch.secure_token,
                status=batch.status,
                created_at=batch.created_at,
                item_count=len(items),
                pending_count=len([item for item in items if item.status == ItemStatus.PENDING])
            )

        logger.debug(f"Stats for user {user_id}: streak {stats.current_streak}, sent {stats.emails_sent_all_time}")
        return stats

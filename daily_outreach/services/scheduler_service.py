"""
Outreach job scheduler.

Each user with outreach enabled has one persisted job row. An external cron
calls `run_due_jobs`, which generates the day's batch for every due job and
emails the user a link to it. There are no in-process timers, so running the
tick twice is harmless: the generator returns the existing batch.
"""
import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlmodel.ext.asyncio.session import AsyncSession

from daily_outreach.config import settings
from daily_outreach.core.dates import (
    utcnow, get_timezone, local_date, local_time_utc, weekday_numbers, parse_schedule_time
)
from daily_outreach.core.exceptions import NotificationError
from daily_outreach.models.job import OutreachJob, JobStatus, JobLogStatus
from daily_outreach.models.outreach import OutreachBatch
from daily_outreach.models.preferences import OutreachPreferences
from daily_outreach.models.user import User
from daily_outreach.repositories.job_repo import OutreachJobRepository, OutreachJobLogRepository
from daily_outreach.repositories.outreach_repo import OutreachBatchRepository
from daily_outreach.repositories.preferences_repo import OutreachPreferencesRepository
from daily_outreach.services.batch_generator import BatchGenerator, GenerationOutcome
from daily_outreach.services.batch_service import BatchService
from daily_outreach.services.email_composer import EmailComposer
from daily_outreach.services.email_service import EmailService, get_email_service

logger = logging.getLogger(__name__)

# Shown by previews and test emails before the user has a batch
SAMPLE_TOKEN = "preview-token"
SAMPLE_PROSPECTS = (
    {"name": "Jordan Sample", "company": "Example Co", "role": "Head of Sales"},
    {"name": "Riley Sample", "company": "Sample Industries", "role": "VP Marketing"},
)


def calculate_next_run(preferences: Optional[OutreachPreferences], now: Optional[datetime] = None) -> datetime:
    """
    Next scheduled local time on a scheduled weekday, as naive UTC.
    Looks up to 8 days ahead so today's slot, if already past, rolls over
    to the same weekday next week.
    """
    now = now or utcnow()
    tz = get_timezone(preferences.timezone if preferences else None)

    schedule_time = preferences.schedule_time if preferences else None
    try:
        hour, minute = parse_schedule_time(schedule_time)
    except ValueError:
        logger.warning(f"Invalid schedule time '{schedule_time}', using {settings.OUTREACH_DEFAULT_SCHEDULE_TIME}")
        hour, minute = parse_schedule_time(settings.OUTREACH_DEFAULT_SCHEDULE_TIME)

    days = weekday_numbers(preferences.schedule_days if preferences else None)
    if not days:
        days = weekday_numbers(settings.OUTREACH_DEFAULT_SCHEDULE_DAYS)

    today = local_date(now, tz)
    for offset in range(8):
        day = today + timedelta(days=offset)
        if day.weekday() not in days:
            continue
        run_at = local_time_utc(day, hour, minute, tz)
        if run_at > now:
            return run_at

    logger.warning("Could not find a scheduled day, running again in one day")
    return now + timedelta(days=1)


class OutreachScheduler:
    """Creates, advances and executes per-user outreach jobs."""

    def __init__(
        self,
        session: AsyncSession,
        composer: Optional[EmailComposer] = None,
        email_service: Optional[EmailService] = None
    ):
        self.session = session
        self.job_repo = OutreachJobRepository(session)
        self.log_repo = OutreachJobLogRepository(session)
        self.batch_repo = OutreachBatchRepository(session)
        self.preferences_repo = OutreachPreferencesRepository(session)
        self.generator = BatchGenerator(session, composer)
        self.batch_service = BatchService(session)
        self.email_service = email_service or get_email_service()

    # Job management
    async def ensure_job(
        self,
        user_id: uuid.UUID,
        preferences: OutreachPreferences,
        now: Optional[datetime] = None
    ) -> OutreachJob:
        """Create the user's job, or reschedule it from the current preferences."""
        now = now or utcnow()
        next_run = calculate_next_run(preferences, now)

        job = await self.job_repo.get_by_user(user_id)
        if not job:
            job = await self.job_repo.create({
                "user_id": user_id,
                "next_run_at": next_run,
                "status": JobStatus.SCHEDULED
            })
            logger.info(f"New outreach job created for user {user_id}, next run {next_run}")
            return job

        job.next_run_at = next_run
        if job.status != JobStatus.RUNNING:
            job.status = JobStatus.SCHEDULED
            job.retry_count = 0
            job.next_retry_at = None
        job = await self.job_repo.save(job)
        logger.info(f"Outreach schedule updated for user {user_id}, next run {next_run}")
        return job

    async def disable_job(self, user_id: uuid.UUID) -> Optional[OutreachJob]:
        """Pause the user's job. The row and its logs are kept."""
        job = await self.job_repo.get_by_user(user_id)
        if not job:
            return None
        job.status = JobStatus.DISABLED
        job = await self.job_repo.save(job)
        logger.info(f"Disabled outreach job for user {user_id}")
        return job

    async def sync_job(self, user_id: uuid.UUID, preferences: OutreachPreferences) -> Optional[OutreachJob]:
        """Bring the job in line with the enabled flag."""
        if preferences.enabled:
            return await self.ensure_job(user_id, preferences)
        return await self.disable_job(user_id)

    async def get_job_status(self, user_id: uuid.UUID, now: Optional[datetime] = None) -> dict:
        now = now or utcnow()
        job = await self.job_repo.get_by_user(user_id)
        if not job:
            return {"exists": False}

        minutes = int((job.next_run_at - now).total_seconds() // 60)
        logs = await self.log_repo.get_by_job(job.id, limit=5)
        return {
            "exists": True,
            "status": job.status,
            "next_run_at": job.next_run_at,
            "next_run_in_minutes": max(minutes, 0),
            "last_run_at": job.last_run_at,
            "last_message": job.last_error,
            "retry_count": job.retry_count,
            "recent_runs": [
                {
                    "executed_at": log.executed_at,
                    "status": log.status,
                    "batch_id": log.batch_id,
                    "contacts_processed": log.contacts_processed,
                    "error_message": log.error_message,
                }
                for log in logs
            ],
        }

    # Notifications
    async def _notification_content(
        self,
        batch: Optional[OutreachBatch],
        items: list
    ) -> Tuple[str, List[dict]]:
        """(secure token, prospects) for a batch, or a sample when there is none."""
        if not batch:
            return SAMPLE_TOKEN, [dict(prospect) for prospect in SAMPLE_PROSPECTS]

        described = await self.batch_service.describe_items(batch, items)
        prospects = [
            {
                "name": row["contact"].name if row["contact"] else "Unknown contact",
                "company": row["company"].name if row["company"] else "Unknown company",
                "role": row["contact"].role if row["contact"] else None,
            }
            for row in described
        ]
        return batch.secure_token, prospects

    async def send_batch_notification(self, user: User, batch: Optional[OutreachBatch], items: list) -> bool:
        """Email the user the secure link to a batch."""
        token, prospects = await self._notification_content(batch, items)
        return await self.email_service.send_contacts_ready_email(
            user.email, token, prospects, settings.APP_URL, user.full_name
        )

    async def latest_batch(self, user_id: uuid.UUID) -> Tuple[Optional[OutreachBatch], list]:
        """The user's newest batch with its items, or (None, [])."""
        batch = await self.batch_repo.get_latest_for_user(user_id)
        if not batch:
            return None, []
        return batch, await self.batch_service.item_repo.list_for_batch(batch.id)

    async def preview_batch_notification(self, user: User) -> str:
        """HTML of the "contacts ready" email for the newest batch."""
        batch, items = await self.latest_batch(user.id)
        token, prospects = await self._notification_content(batch, items)
        _, _, html = self.email_service.build_contacts_ready_email(
            token, prospects, settings.APP_URL, user.full_name
        )
        return html

    async def send_test_notification(self, user: User) -> bool:
        """Send the "contacts ready" email for the newest batch right away."""
        batch, items = await self.latest_batch(user.id)
        sent = await self.send_batch_notification(user, batch, items)
        logger.info(f"Test notification to {user.email}: {'sent' if sent else 'failed'}")
        return sent

    async def _record_nudge(self, preferences: OutreachPreferences, now: datetime) -> None:
        preferences.last_nudge_sent = now
        if not preferences.nudge_streak_started_at:
            preferences.nudge_streak_started_at = now
        await self.preferences_repo.save(preferences)

    # Execution
    async def recover_stuck_jobs(self, now: Optional[datetime] = None) -> int:
        """Put jobs left `running` by a crashed tick back on the schedule."""
        now = now or utcnow()
        threshold = now - timedelta(minutes=settings.OUTREACH_STALE_JOB_MINUTES)
        stuck = await self.job_repo.get_stuck(threshold)
        for job in stuck:
            logger.warning(f"Recovering stuck job {job.id} for user {job.user_id}")
            job.status = JobStatus.SCHEDULED
            job.last_error = f"Job recovered - was stuck since {job.updated_at}"
            await self.job_repo.save(job)
        return len(stuck)

    async def run_due_jobs(self, now: Optional[datetime] = None) -> dict:
        """One cron tick: recover stuck jobs, then execute due jobs in order."""
        now = now or utcnow()
        summary = {"recovered": await self.recover_stuck_jobs(now), "processed": 0}

        jobs = await self.job_repo.get_due(now, settings.OUTREACH_MAX_RETRIES, settings.OUTREACH_JOB_BATCH_SIZE)
        if jobs:
            logger.info(f"Processing {len(jobs)} due outreach jobs")

        for job in jobs:
            status = await self.execute_job(job, now)
            summary["processed"] += 1
            summary[status] = summary.get(status, 0) + 1

        return summary

    async def execute_job(self, job: OutreachJob, now: Optional[datetime] = None) -> str:
        """Run one job and write its audit log. Returns the log status."""
        now = now or utcnow()
        started = time.monotonic()

        job.status = JobStatus.RUNNING
        job.last_error = f"Job started at {now.isoformat()}"
        job = await self.job_repo.save(job)

        try:
            status, batch_id, processed, message = await self._process_user(job, now)
        except Exception as e:
            logger.error(f"Outreach job failed for user {job.user_id}: {e}")
            await self.session.rollback()
            await self.session.refresh(job)
            return await self._handle_failure(job, now, e, started)

        if job.status != JobStatus.DISABLED:
            preferences = await self.preferences_repo.get_for_user(job.user_id)
            job.status = JobStatus.SCHEDULED
            job.next_run_at = calculate_next_run(preferences, now)
        job.last_run_at = now
        job.last_error = message
        job.retry_count = 0
        job.next_retry_at = None
        await self.job_repo.save(job)

        await self.log_repo.create({
            "job_id": job.id,
            "user_id": job.user_id,
            "executed_at": now,
            "status": status,
            "batch_id": batch_id,
            "processing_time_ms": int((time.monotonic() - started) * 1000),
            "contacts_processed": processed
        })
        logger.info(f"Outreach job for user {job.user_id}: {status} ({message})")
        return status

    async def _handle_failure(self, job: OutreachJob, now: datetime, error: Exception, started: float) -> str:
        retry_count = (job.retry_count or 0) + 1
        should_retry = retry_count < settings.OUTREACH_MAX_RETRIES

        if should_retry:
            delays = settings.OUTREACH_RETRY_DELAYS
            delay = delays[min(retry_count - 1, len(delays) - 1)]
            job.status = JobStatus.FAILED
            job.retry_count = retry_count
            job.next_retry_at = now + timedelta(seconds=delay)
            job.last_error = str(error) or error.__class__.__name__
            log_status = JobLogStatus.FAILED
            logger.info(f"Job for user {job.user_id} will retry ({retry_count}/{settings.OUTREACH_MAX_RETRIES}) at {job.next_retry_at}")
        else:
            # Give up on this run; the next scheduled day starts fresh
            preferences = await self.preferences_repo.get_for_user(job.user_id)
            job.status = JobStatus.SCHEDULED
            job.retry_count = 0
            job.next_retry_at = None
            job.next_run_at = calculate_next_run(preferences, now)
            job.last_error = f"Failed after {settings.OUTREACH_MAX_RETRIES} retries: {error}"
            log_status = JobLogStatus.FAILED_PERMANENT
            logger.error(f"Job for user {job.user_id} exhausted its retries")

        await self.job_repo.save(job)
        await self.log_repo.create({
            "job_id": job.id,
            "user_id": job.user_id,
            "executed_at": now,
            "status": log_status,
            "processing_time_ms": int((time.monotonic() - started) * 1000),
            "error_message": str(error)
        })
        return log_status

    async def _process_user(
        self,
        job: OutreachJob,
        now: datetime
    ) -> Tuple[str, Optional[uuid.UUID], int, str]:
        """(log status, batch id, contacts processed, status message)"""
        user_id = job.user_id
        user = await self.session.get(User, user_id)
        if not user:
            raise ValueError(f"User {user_id} not found")

        preferences = await self.preferences_repo.get_for_user(user_id)
        if not preferences or not preferences.enabled:
            await self.disable_job(user_id)
            return JobLogStatus.SKIPPED, None, 0, "Outreach disabled"

        today = local_date(now, get_timezone(preferences.timezone))
        if preferences.is_on_vacation(today):
            return JobLogStatus.SKIPPED, None, 0, f"On vacation until {preferences.vacation_end_date}"

        if preferences.nudge_streak_started_at:
            streak_days = (now - preferences.nudge_streak_started_at).days
            if streak_days >= settings.OUTREACH_NUDGE_AUTO_DISABLE_DAYS:
                preferences.enabled = False
                preferences.auto_disabled_at = now
                preferences.nudge_streak_started_at = None
                await self.preferences_repo.save(preferences)
                await self.disable_job(user_id)
                logger.warning(f"User {user_id} auto-disabled after {streak_days} days of nudges without engagement")
                return JobLogStatus.SKIPPED, None, 0, f"Auto-disabled after {streak_days} days without engagement"

        if not preferences.has_active_campaign:
            return JobLogStatus.SKIPPED, None, 0, "No active campaign"

        existing = await self.batch_repo.get_live_for_date(user_id, today)
        if existing and not job.retry_count:
            return JobLogStatus.SKIPPED, existing.id, 0, f"Batch {existing.id} already exists for {today}"

        # A retry after a failed notification re-sends the existing batch
        available, _ = await self.generator.count_available_contacts(user_id, now, preferences.timezone)
        if not existing and available < preferences.min_contacts_required:
            sent = await self.email_service.send_need_more_contacts_email(
                user.email, available, preferences.min_contacts_required, settings.APP_URL, user.full_name
            )
            if not sent:
                raise NotificationError(user.email)
            await self._record_nudge(preferences, now)
            return (
                JobLogStatus.SKIPPED, None, 0,
                f"Insufficient contacts ({available}/{preferences.min_contacts_required}), nudge sent"
            )

        result = await self.generator.get_or_create_batch(user_id, today, now)
        if not result.has_batch:
            return JobLogStatus.SKIPPED, None, 0, result.reason or result.outcome

        if not await self.send_batch_notification(user, result.batch, result.items):
            raise NotificationError(user.email)
        await self._record_nudge(preferences, now)

        verb = "Generated" if result.outcome == GenerationOutcome.CREATED else "Reused"
        return (
            JobLogStatus.SUCCESS, result.batch.id, len(result.items),
            f"{verb} batch {result.batch.id} with {len(result.items)} contacts"
        )

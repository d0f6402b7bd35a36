"""
Preferences service - outreach schedule, campaign and vacation settings.
"""
import uuid
import logging
from typing import Optional

from sqlmodel.ext.asyncio.session import AsyncSession

from daily_outreach.core.dates import is_valid_timezone, parse_schedule_time, weekday_numbers
from daily_outreach.core.exceptions import raise_validation_error
from daily_outreach.models.preferences import OutreachPreferences
from daily_outreach.models.profile import StrategicProfile, SenderProfile, CustomerProfile
from daily_outreach.repositories.preferences_repo import OutreachPreferencesRepository
from daily_outreach.schemas.outreach import PreferencesUpdate, VacationUpdate
from daily_outreach.services.email_service import EmailService
from daily_outreach.services.scheduler_service import OutreachScheduler

logger = logging.getLogger(__name__)

_PROFILE_FIELDS = {
    "active_product_id": StrategicProfile,
    "active_sender_profile_id": SenderProfile,
    "active_customer_profile_id": CustomerProfile,
}


class PreferencesService:
    """Service for outreach preferences."""

    def __init__(self, session: AsyncSession, email_service: Optional[EmailService] = None):
        self.session = session
        self.preferences_repo = OutreachPreferencesRepository(session)
        self.scheduler = OutreachScheduler(session, email_service=email_service)

    async def get_preferences(self, user_id: uuid.UUID) -> OutreachPreferences:
        """Stored preferences, or unsaved defaults when the user has none."""
        preferences = await self.preferences_repo.get_for_user(user_id)
        if preferences:
            return preferences
        return OutreachPreferences(user_id=user_id)

    async def update_preferences(self, user_id: uuid.UUID, data: PreferencesUpdate) -> OutreachPreferences:
        """Validate and save preferences, then create, reschedule or pause the job."""
        values = data.model_dump(exclude_unset=True)

        if "timezone" in values and not is_valid_timezone(values["timezone"] or ""):
            raise_validation_error("Unknown timezone", "timezone")

        if "schedule_time" in values:
            try:
                parse_schedule_time(values["schedule_time"] or "")
            except ValueError:
                raise_validation_error("Expected HH:MM", "schedule_time")

        if "schedule_days" in values:
            days = values["schedule_days"] or []
            if not days or len(weekday_numbers(days)) != len(days):
                raise_validation_error("Expected weekday names like 'mon' or 'monday'", "schedule_days")

        if "min_contacts_required" in values:
            if values["min_contacts_required"] is None or values["min_contacts_required"] < 1:
                raise_validation_error("Must be at least 1", "min_contacts_required")

        for field, model in _PROFILE_FIELDS.items():
            profile_id = values.get(field)
            if profile_id:
                profile = await self.session.get(model, profile_id)
                if not profile or profile.user_id != user_id:
                    raise_validation_error("Profile not found", field)

        # Re-enabling clears the auto-disable state
        if values.get("enabled"):
            values["auto_disabled_at"] = None
            values["nudge_streak_started_at"] = None

        preferences = await self.preferences_repo.upsert(user_id, values)
        await self.scheduler.sync_job(user_id, preferences)
        logger.info(f"Outreach preferences updated for user {user_id}")
        return preferences

    async def update_vacation(self, user_id: uuid.UUID, data: VacationUpdate) -> OutreachPreferences:
        """Set or clear the inclusive vacation window."""
        if data.vacation_mode:
            if not data.vacation_start_date or not data.vacation_end_date:
                raise_validation_error("Start and end dates are required", "vacation")
            if data.vacation_start_date > data.vacation_end_date:
                raise_validation_error("Start date must not be after end date", "vacation")

        preferences = await self.preferences_repo.upsert(user_id, {
            "vacation_mode": data.vacation_mode,
            "vacation_start_date": data.vacation_start_date if data.vacation_mode else None,
            "vacation_end_date": data.vacation_end_date if data.vacation_mode else None,
        })
        logger.info(f"Vacation mode {'on' if data.vacation_mode else 'off'} for user {user_id}")
        return preferences

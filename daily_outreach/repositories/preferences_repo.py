"""
Outreach preferences repository.
"""
import uuid
from typing import Optional

from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy import update

from daily_outreach.models.preferences import OutreachPreferences
from daily_outreach.repositories.base import BaseRepository


class OutreachPreferencesRepository(BaseRepository[OutreachPreferences]):
    """Repository for OutreachPreferences operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(OutreachPreferences, session)

    async def get_for_user(self, user_id: uuid.UUID) -> Optional[OutreachPreferences]:
        return await self.get(user_id)

    async def upsert(self, user_id: uuid.UUID, values: dict) -> OutreachPreferences:
        """Update the user's preferences, creating the row on first save."""
        preferences = await self.get(user_id)
        if not preferences:
            return await self.create({"user_id": user_id, **values})
        return await self.update(user_id, values)

    async def clear_nudge_streak(self, user_id: uuid.UUID) -> None:
        """Reset the unanswered-nudge counter after engagement. Caller commits."""
        query = update(OutreachPreferences).where(
            OutreachPreferences.user_id == user_id,
            OutreachPreferences.nudge_streak_started_at.is_not(None)
        ).values(nudge_streak_started_at=None)
        await self.session.exec(query)

"""
User and campaign profile repositories.
"""
import uuid
from typing import Optional, Tuple

from sqlmodel.ext.asyncio.session import AsyncSession

from daily_outreach.models.user import User
from daily_outreach.models.profile import StrategicProfile, SenderProfile, CustomerProfile
from daily_outreach.models.preferences import OutreachPreferences
from daily_outreach.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Repository for User operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(User, session)


class ProfileRepository:
    """Lookups for the product, sender and customer profiles of a campaign."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _owned(self, model, profile_id: Optional[uuid.UUID], user_id: uuid.UUID):
        if not profile_id:
            return None
        profile = await self.session.get(model, profile_id)
        if not profile or profile.user_id != user_id:
            return None
        return profile

    async def get_sender(self, user_id: uuid.UUID, sender_id: Optional[uuid.UUID]) -> Optional[SenderProfile]:
        return await self._owned(SenderProfile, sender_id, user_id)

    async def get_campaign(
        self,
        preferences: OutreachPreferences
    ) -> Tuple[Optional[StrategicProfile], Optional[SenderProfile], Optional[CustomerProfile]]:
        """Active (product, sender, customer) of a user's preferences."""
        user_id = preferences.user_id
        product = await self._owned(StrategicProfile, preferences.active_product_id, user_id)
        sender = await self._owned(SenderProfile, preferences.active_sender_profile_id, user_id)
        customer = await self._owned(CustomerProfile, preferences.active_customer_profile_id, user_id)
        return product, sender, customer

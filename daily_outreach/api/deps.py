"""
API dependencies - shared across all routes.
"""
import uuid

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlmodel.ext.asyncio.session import AsyncSession

from daily_outreach.database import get_session
from daily_outreach.config import settings
from daily_outreach.core.security import verify_access_token
from daily_outreach.core.exceptions import raise_unauthorized
from daily_outreach.models.user import User
from daily_outreach.repositories.user_repo import UserRepository
from daily_outreach.services.email_composer import EmailComposer, get_email_composer
from daily_outreach.services.email_service import EmailService, get_email_service


# Tokens are issued by the auth service; this API only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_PREFIX}/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_session)
) -> User:
    """Get current authenticated user from JWT token."""
    payload = verify_access_token(token)
    if not payload:
        raise_unauthorized("Could not validate credentials")

    user_id = payload.get("user_id")
    if not user_id:
        raise_unauthorized("Could not validate credentials")

    try:
        user_uuid = uuid.UUID(user_id)
    except ValueError:
        raise_unauthorized("Could not validate credentials")

    user_repo = UserRepository(session)
    user = await user_repo.get(user_uuid)

    if not user:
        raise_unauthorized("User not found")

    if not user.is_active:
        raise_unauthorized("User account is deactivated")

    return user


def get_composer() -> EmailComposer:
    """Email composer used for batch generation."""
    return get_email_composer()


def get_notifier() -> EmailService:
    """Email service used for notification emails."""
    return get_email_service()

"""
Daily outreach API routes.

Batch routes are addressed by the secure token from the notification email
and need no login. Dashboard routes use the bearer token.
"""
import uuid
from typing import Optional
from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import HTMLResponse
from sqlmodel.ext.asyncio.session import AsyncSession

from daily_outreach.config import settings
from daily_outreach.database import get_session
from daily_outreach.core.exceptions import raise_forbidden
from daily_outreach.services.batch_service import BatchService, find_next_pending
from daily_outreach.services.batch_generator import BatchGenerator, GenerationOutcome
from daily_outreach.services.streak_service import StreakService
from daily_outreach.services.preferences_service import PreferencesService
from daily_outreach.services.scheduler_service import OutreachScheduler
from daily_outreach.services.email_composer import EmailComposer
from daily_outreach.services.email_service import EmailService
from daily_outreach.schemas.common import ErrorResponse
from daily_outreach.schemas.outreach import (
    BatchResponse, BatchDetailResponse, OutreachItemResponse, ItemUpdate,
    ContactSummary, CompanySummary,
    TriggerRequest, TriggerResponse, SendTestEmailResponse, StreakStatsResponse,
    PreferencesResponse, PreferencesUpdate, VacationUpdate, JobStatusResponse
)
from daily_outreach.api.deps import get_current_user, get_composer, get_notifier
from daily_outreach.models.user import User

router = APIRouter(prefix="/api/daily-outreach", tags=["daily-outreach"])

_TOKEN_ERRORS = {
    404: {"model": ErrorResponse, "description": "Link never existed"},
    409: {"model": ErrorResponse, "description": "Item is not pending"},
    410: {"model": ErrorResponse, "description": "Link has expired"},
}


def _item_response(row: dict) -> OutreachItemResponse:
    response = OutreachItemResponse.model_validate(row["item"])
    response.subject = row["subject"]
    response.body = row["body"]
    if row["contact"]:
        response.contact = ContactSummary.model_validate(row["contact"])
    if row["company"]:
        response.company = CompanySummary.model_validate(row["company"])
    return response


# Batch endpoints (secure token)
@router.get("/batch/{token}", response_model=BatchDetailResponse, responses=_TOKEN_ERRORS)
async def get_batch(
    token: str,
    session: AsyncSession = Depends(get_session)
):
    """Get a batch and its items for the walk-through."""
    batch_service = BatchService(session)
    batch, items = await batch_service.get_batch(token)
    rows = await batch_service.describe_items(batch, items)
    return BatchDetailResponse(
        batch=BatchResponse.model_validate(batch),
        items=[_item_response(row) for row in rows],
        next_pending_index=find_next_pending(items)
    )


@router.put("/batch/{token}/item/{item_id}", response_model=OutreachItemResponse, responses=_TOKEN_ERRORS)
async def update_item(
    token: str,
    item_id: uuid.UUID,
    item_data: ItemUpdate,
    session: AsyncSession = Depends(get_session)
):
    """Edit the subject and/or body of a pending item."""
    batch_service = BatchService(session)
    item = await batch_service.update_item(
        token,
        item_id,
        subject=item_data.email_subject,
        body=item_data.email_body
    )
    return _item_response(await batch_service.describe_item(item))


@router.post("/batch/{token}/item/{item_id}/sent", response_model=OutreachItemResponse, responses=_TOKEN_ERRORS)
async def mark_item_sent(
    token: str,
    item_id: uuid.UUID,
    check_completion: bool = Query(True, alias="checkCompletion"),
    session: AsyncSession = Depends(get_session)
):
    """Mark an item as sent. Repeating the call is harmless."""
    batch_service = BatchService(session)
    item = await batch_service.mark_sent(token, item_id, check_completion=check_completion)
    return _item_response(await batch_service.describe_item(item))


@router.post("/batch/{token}/item/{item_id}/skip", response_model=OutreachItemResponse, responses=_TOKEN_ERRORS)
async def mark_item_skipped(
    token: str,
    item_id: uuid.UUID,
    check_completion: bool = Query(True, alias="checkCompletion"),
    session: AsyncSession = Depends(get_session)
):
    """Skip an item."""
    batch_service = BatchService(session)
    item = await batch_service.mark_skipped(token, item_id, check_completion=check_completion)
    return _item_response(await batch_service.describe_item(item))


# Dashboard endpoints
@router.get("/streak-stats", response_model=StreakStatsResponse)
async def get_streak_stats(
    response: Response,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """Streaks, send counts and today's batch."""
    streak_service = StreakService(session)
    stats = await streak_service.compute_stats(current_user.id)
    response.headers["Cache-Control"] = f"private, max-age={settings.STATS_CACHE_SECONDS}"
    return StreakStatsResponse.model_validate(stats)


@router.post("/trigger", response_model=TriggerResponse)
async def trigger_batch(
    request: Optional[TriggerRequest] = None,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    composer: EmailComposer = Depends(get_composer),
    notifier: EmailService = Depends(get_notifier)
):
    """Generate today's batch now instead of waiting for the schedule."""
    if not settings.ALLOW_MANUAL_TRIGGER:
        raise_forbidden("Manual generation is disabled")

    request = request or TriggerRequest()
    generator = BatchGenerator(session, composer)
    if request.regenerate:
        result = await generator.regenerate_batch(current_user.id)
    else:
        result = await generator.get_or_create_batch(current_user.id)

    if not result.has_batch:
        return TriggerResponse(success=False, outcome=result.outcome, message=result.reason)

    message = "Batch created" if result.outcome == GenerationOutcome.CREATED else "Batch already exists for today"
    if request.notify:
        scheduler = OutreachScheduler(session, composer, notifier)
        if not await scheduler.send_batch_notification(current_user, result.batch, result.items):
            message = f"{message}; the notification email could not be sent"

    return TriggerResponse(
        success=True,
        outcome=result.outcome,
        message=message,
        batch_id=result.batch.id,
        secure_token=result.batch.secure_token,
        item_count=len(result.items)
    )


@router.get("/preview", response_class=HTMLResponse)
async def preview_notification(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    notifier: EmailService = Depends(get_notifier)
):
    """HTML of the "contacts ready" email for the newest batch."""
    scheduler = OutreachScheduler(session, email_service=notifier)
    html = await scheduler.preview_batch_notification(current_user)
    return HTMLResponse(content=html)


@router.post("/send-test-email", response_model=SendTestEmailResponse)
async def send_test_email(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    notifier: EmailService = Depends(get_notifier)
):
    """Send the "contacts ready" email to the current user now."""
    scheduler = OutreachScheduler(session, email_service=notifier)
    sent = await scheduler.send_test_notification(current_user)
    if not sent:
        return SendTestEmailResponse(
            success=False,
            message="Failed to send test email. Check the SMTP configuration."
        )
    return SendTestEmailResponse(success=True, message=f"Test email sent to {current_user.email}")


@router.get("/preferences", response_model=PreferencesResponse)
async def get_preferences(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session)
):
    """Get outreach preferences (defaults if never saved)."""
    preferences_service = PreferencesService(session)
    preferences = await preferences_service.get_preferences(current_user.id)
    return PreferencesResponse.model_validate(preferences)


@router.put("/preferences", response_model=PreferencesResponse)
async def update_preferences(
    preferences_data: PreferencesUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    notifier: EmailService = Depends(get_notifier)
):
    """Update outreach preferences and the schedule."""
    preferences_service = PreferencesService(session, notifier)
    preferences = await preferences_service.update_preferences(current_user.id, preferences_data)
    return PreferencesResponse.model_validate(preferences)


@router.put("/vacation", response_model=PreferencesResponse)
async def update_vacation(
    vacation_data: VacationUpdate,
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    notifier: EmailService = Depends(get_notifier)
):
    """Turn vacation mode on or off."""
    preferences_service = PreferencesService(session, notifier)
    preferences = await preferences_service.update_vacation(current_user.id, vacation_data)
    return PreferencesResponse.model_validate(preferences)


@router.get("/job-status", response_model=JobStatusResponse)
async def get_job_status(
    current_user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    notifier: EmailService = Depends(get_notifier)
):
    """State of the user's scheduled job."""
    scheduler = OutreachScheduler(session, email_service=notifier)
    return await scheduler.get_job_status(current_user.id)

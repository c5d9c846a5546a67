"""Scheduled notification API endpoints."""

from fastapi import APIRouter, HTTPException, status

from notifier.api.deps import AppSettings, CronAuth, DBSession, Router
from notifier.models.notification import NotificationCreate, NotificationResponse
from notifier.models.user import UserProfile
from notifier.services.scheduling import schedule_notification
from notifier.workers.due_notifications import process_due

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.post("", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
def schedule_notification_endpoint(
    session: DBSession,
    data: NotificationCreate,
) -> NotificationResponse:
    """Schedule a notification for future delivery."""
    if session.get(UserProfile, data.recipient_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Recipient not found",
        )
    notification = schedule_notification(
        session,
        recipient_id=data.recipient_id,
        kind=data.kind,
        scheduled_for=data.scheduled_for,
        payload=data.payload,
        channel=data.channel,
        urgency=data.urgency,
        habit_id=data.habit_id,
    )
    return NotificationResponse.model_validate(notification)


@router.post("/process-due", dependencies=[CronAuth])
def process_due_endpoint(
    session: DBSession,
    settings: AppSettings,
    channel_router: Router,
) -> dict:
    """Deliver every due notification (cron trigger)."""
    result = process_due(session, settings, channel_router)
    return result.to_dict()

"""Habit completion and streak API endpoints."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from notifier.api.deps import AppSettings, DBSession, Router
from notifier.errors import NotFoundError
from notifier.models.habit import CompletionCreate, StreakAdvance
from notifier.services.milestones import Celebration, MilestoneDetector
from notifier.services.streaks import record_completion

router = APIRouter(prefix="/api/habits", tags=["Habits"])


def _celebration_dict(celebration: Celebration | None) -> dict | None:
    if celebration is None:
        return None
    return {
        "id": str(celebration.celebration_id),
        "milestone": celebration.milestone,
        "streak_epoch": celebration.streak_epoch,
        "message": celebration.message,
        "notification_sent": celebration.notification_sent,
        "channel": celebration.channel.value if celebration.channel else None,
    }


@router.post("/{habit_id}/completions", status_code=status.HTTP_201_CREATED)
def record_completion_endpoint(
    session: DBSession,
    settings: AppSettings,
    channel_router: Router,
    habit_id: UUID,
    data: CompletionCreate,
) -> dict:
    """Record a completion and report the resulting streak."""
    detector = MilestoneDetector(channel_router, settings.MILESTONES)
    try:
        result = record_completion(
            session,
            detector,
            habit_id,
            data.completed_on,
            default_timezone=settings.DEFAULT_TIMEZONE,
        )
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Habit not found",
        )
    return {
        "habit_id": str(result.habit_id),
        "completed_on": result.completed_on.isoformat(),
        "created": result.created,
        "streak": result.streak,
        "celebration": _celebration_dict(result.celebration),
    }


@router.post("/{habit_id}/streak")
def streak_advance_endpoint(
    session: DBSession,
    settings: AppSettings,
    channel_router: Router,
    habit_id: UUID,
    data: StreakAdvance,
) -> dict:
    """Report a new streak value to the milestone detector."""
    detector = MilestoneDetector(channel_router, settings.MILESTONES)
    try:
        celebration = detector.on_streak_advance(session, habit_id, data.new_value)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Habit not found",
        )
    return {"celebration": _celebration_dict(celebration)}

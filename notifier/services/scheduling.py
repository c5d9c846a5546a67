"""Upstream triggers that create ScheduledNotification records."""

import logging
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlmodel import Session, select

from notifier.clock import resolve_zone, to_local, to_utc_naive, utc_now
from notifier.config import Settings
from notifier.models.habit import Habit
from notifier.models.notification import (
    Channel,
    NotificationKind,
    NotificationStatus,
    ScheduledNotification,
    Urgency,
)
from notifier.models.user import UserProfile

logger = logging.getLogger(__name__)


def parse_reminder_time(value: str) -> tuple[int, int]:
    """Parse a local ``HH:MM`` reminder time."""
    hour_text, _, minute_text = value.strip().partition(":")
    hour, minute = int(hour_text), int(minute_text or 0)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid reminder time: {value!r}")
    return hour, minute


def schedule_notification(
    session: Session,
    recipient_id: UUID,
    kind: NotificationKind,
    scheduled_for: datetime,
    payload: dict[str, Any] | None = None,
    channel: Channel | None = None,
    urgency: Urgency = Urgency.NORMAL,
    habit_id: UUID | None = None,
) -> ScheduledNotification:
    """Persist a pending notification due at ``scheduled_for`` (naive UTC)."""
    notification = ScheduledNotification(
        recipient_id=recipient_id,
        kind=kind,
        scheduled_for=scheduled_for,
        payload=payload or {},
        channel=channel,
        urgency=urgency,
        habit_id=habit_id,
    )
    session.add(notification)
    session.commit()
    session.refresh(notification)

    logger.info(
        f"Scheduled {kind.value} notification {notification.id}",
        extra={"recipient_id": str(recipient_id), "scheduled_for": scheduled_for.isoformat()},
    )
    return notification


def next_reminder_instant(reminder_time: str, timezone: str | None, now: datetime, default_timezone: str = "UTC") -> datetime:
    """Next local occurrence of ``reminder_time`` after ``now``, as naive UTC."""
    hour, minute = parse_reminder_time(reminder_time)
    zone = resolve_zone(timezone, default_timezone)
    local_now = to_local(now, zone)
    candidate = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate <= local_now:
        candidate = candidate + timedelta(days=1)
    return to_utc_naive(candidate)


def schedule_habit_reminders(
    session: Session,
    settings: Settings,
    now: datetime | None = None,
) -> list[ScheduledNotification]:
    """Create the next habit_reminder for every active habit with a reminder time.

    Habits that already have a pending reminder are left alone, so the sweep
    can run as often as the caller likes.
    """
    now = now or utc_now()
    habits = session.exec(
        select(Habit).where(
            (Habit.is_active == True) & (Habit.reminder_time != None)
        )
    ).all()

    created = []
    for habit in habits:
        pending = session.exec(
            select(ScheduledNotification).where(
                (ScheduledNotification.habit_id == habit.id)
                & (ScheduledNotification.kind == NotificationKind.HABIT_REMINDER)
                & (ScheduledNotification.status == NotificationStatus.PENDING)
            )
        ).first()
        if pending is not None:
            continue

        profile = session.get(UserProfile, habit.user_id)
        if profile is None:
            continue
        try:
            due = next_reminder_instant(
                habit.reminder_time, profile.timezone, now, settings.DEFAULT_TIMEZONE
            )
        except ValueError:
            logger.warning(
                f"Habit {habit.id} has an invalid reminder time",
                extra={"reminder_time": habit.reminder_time},
            )
            continue

        notification = ScheduledNotification(
            recipient_id=habit.user_id,
            kind=NotificationKind.HABIT_REMINDER,
            scheduled_for=due,
            channel=habit.reminder_channel,
            habit_id=habit.id,
            payload={
                "title": "Habit reminder",
                "body": f"Time for \"{habit.title}\", {profile.first_name}. Keep the streak alive!",
                "habit_id": str(habit.id),
            },
        )
        session.add(notification)
        created.append(notification)

    session.commit()
    if created:
        logger.info(f"Scheduled {len(created)} habit reminders")
    return created

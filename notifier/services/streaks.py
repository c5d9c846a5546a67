"""Habit completion log and streak computation."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from notifier.clock import resolve_zone, to_local, utc_now
from notifier.errors import NotFoundError
from notifier.models.habit import Habit, HabitCompletion
from notifier.models.user import UserProfile
from notifier.services.milestones import Celebration, MilestoneDetector

logger = logging.getLogger(__name__)


def streak_run(dates: Iterable[date], today: date) -> tuple[int, date | None]:
    """Length and first day of the run of completed days ending today, or
    yesterday."""
    done = set(dates)
    if today in done:
        cursor = today
    elif today - timedelta(days=1) in done:
        cursor = today - timedelta(days=1)
    else:
        return 0, None

    streak = 0
    while cursor in done:
        streak += 1
        cursor -= timedelta(days=1)
    return streak, cursor + timedelta(days=1)


def compute_streak(dates: Iterable[date], today: date) -> int:
    """Count consecutive completed days ending today, or yesterday."""
    return streak_run(dates, today)[0]


def local_today(session: Session, habit: Habit, now: datetime, default_timezone: str = "UTC") -> date:
    profile = session.get(UserProfile, habit.user_id)
    zone = resolve_zone(profile.timezone if profile else None, default_timezone)
    return to_local(now, zone).date()


def is_completed_on(session: Session, habit_id: UUID, day: date) -> bool:
    return session.exec(
        select(HabitCompletion).where(
            (HabitCompletion.habit_id == habit_id) & (HabitCompletion.completed_on == day)
        )
    ).first() is not None


def _completion_dates(session: Session, habit_id: UUID) -> list[date]:
    return session.exec(
        select(HabitCompletion.completed_on)
        .where(HabitCompletion.habit_id == habit_id)
        .order_by(HabitCompletion.completed_on.desc())
    ).all()


def current_streak(session: Session, habit_id: UUID, today: date) -> int:
    return compute_streak(_completion_dates(session, habit_id), today)


@dataclass
class CompletionResult:
    habit_id: UUID
    completed_on: date
    created: bool
    streak: int
    celebration: Celebration | None = None


def record_completion(
    session: Session,
    detector: MilestoneDetector,
    habit_id: UUID,
    completed_on: date | None = None,
    now: datetime | None = None,
    default_timezone: str = "UTC",
) -> CompletionResult:
    """Store a completion (once per habit and day) and feed the new streak
    to the milestone detector."""
    now = now or utc_now()
    habit = session.get(Habit, habit_id)
    if habit is None:
        raise NotFoundError(f"Habit {habit_id} not found")

    today = local_today(session, habit, now, default_timezone)
    completed_on = completed_on or today

    created = False
    if not is_completed_on(session, habit_id, completed_on):
        session.add(HabitCompletion(habit_id=habit_id, completed_on=completed_on))
        try:
            session.commit()
            created = True
        except IntegrityError:
            session.rollback()

    streak, started_on = streak_run(_completion_dates(session, habit_id), today)
    celebration = detector.on_streak_advance(
        session, habit_id, streak, now, streak_started_on=started_on
    )
    return CompletionResult(habit_id, completed_on, created, streak, celebration)

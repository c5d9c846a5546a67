"""Streak milestone detection with one celebration per milestone per epoch."""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from notifier.clock import utc_now
from notifier.delivery.base import MessageContent
from notifier.errors import NotFoundError
from notifier.models.habit import Habit, StreakCelebration
from notifier.models.notification import Channel, NotificationKind
from notifier.models.user import UserProfile
from notifier.services.audit import record_audit
from notifier.services.routing import ChannelRouter

logger = logging.getLogger(__name__)

DEFAULT_MILESTONES = (7, 14, 21, 30, 60, 90, 100, 180, 365)

MILESTONE_TITLES = {
    7: "One week strong",
    14: "Two weeks in",
    21: "Habit formed",
    30: "A full month",
    60: "Two months of momentum",
    90: "Quarter-year champion",
    100: "Triple digits",
    180: "Half a year",
    365: "One full year",
}


@dataclass
class Celebration:
    celebration_id: UUID
    habit_id: UUID
    milestone: int
    streak_epoch: int
    message: str
    notification_sent: bool = False
    channel: Channel | None = None


def celebration_message(first_name: str, habit_title: str, milestone: int) -> str:
    title = MILESTONE_TITLES.get(milestone, f"{milestone} days")
    return f"{title}, {first_name}! You've kept \"{habit_title}\" going for {milestone} days in a row."


class MilestoneDetector:
    """Decides whether a streak value earns a celebration.

    The dedup key is (habit, milestone, streak epoch). The epoch only moves
    when the streak has really restarted: the run start date from the
    completion log moved forward, or a value-only caller reported 0. A lower
    value without either is a late or replayed report and keeps the epoch,
    so each milestone fires once per run.
    """

    def __init__(
        self,
        router: ChannelRouter | None = None,
        milestones: tuple[int, ...] | list[int] = DEFAULT_MILESTONES,
    ) -> None:
        self.router = router
        self.milestones = frozenset(milestones)

    def _advance_epoch(self, habit: Habit, new_value: int, streak_started_on: date | None) -> bool:
        """Update the habit's run bookkeeping; True when a new run began."""
        reset = False
        if streak_started_on is not None:
            if habit.streak_started_on is not None and streak_started_on > habit.streak_started_on:
                reset = True
            habit.streak_started_on = streak_started_on
            habit.last_streak_value = new_value
        elif new_value == 0:
            reset = habit.last_streak_value > 0
            habit.streak_started_on = None
            habit.last_streak_value = 0
        elif new_value > habit.last_streak_value:
            habit.last_streak_value = new_value

        if reset:
            habit.streak_epoch += 1
        return reset

    def on_streak_advance(
        self,
        session: Session,
        habit_id: UUID,
        new_value: int,
        now: datetime | None = None,
        streak_started_on: date | None = None,
    ) -> Celebration | None:
        """Record the streak value and emit a celebration if one is due.

        ``streak_started_on`` is the first day of the current run when the
        caller computed the streak from the completion log.
        """
        now = now or utc_now()
        habit = session.get(Habit, habit_id)
        if habit is None:
            raise NotFoundError(f"Habit {habit_id} not found")

        previous = habit.last_streak_value
        if self._advance_epoch(habit, new_value, streak_started_on):
            logger.info(
                f"Streak reset for habit {habit.id}, epoch now {habit.streak_epoch}",
                extra={"previous": previous, "new": new_value},
            )
        session.add(habit)
        session.commit()

        if new_value not in self.milestones:
            return None

        existing = session.exec(
            select(StreakCelebration).where(
                (StreakCelebration.habit_id == habit.id)
                & (StreakCelebration.milestone == new_value)
                & (StreakCelebration.streak_epoch == habit.streak_epoch)
            )
        ).first()
        if existing is not None:
            logger.debug(f"Milestone {new_value} already celebrated for habit {habit.id}")
            return None

        profile = session.get(UserProfile, habit.user_id)
        first_name = profile.first_name if profile else "Champion"
        celebration = StreakCelebration(
            habit_id=habit.id,
            user_id=habit.user_id,
            milestone=new_value,
            streak_epoch=habit.streak_epoch,
            message=celebration_message(first_name, habit.title, new_value),
            celebrated_at=now,
        )
        session.add(celebration)
        try:
            session.commit()
        except IntegrityError:
            # A concurrent call recorded the same milestone first
            session.rollback()
            return None
        session.refresh(celebration)

        result = Celebration(
            celebration_id=celebration.id,
            habit_id=habit.id,
            milestone=new_value,
            streak_epoch=celebration.streak_epoch,
            message=celebration.message,
        )

        if self.router is not None and profile is not None and profile.streak_celebrations_enabled:
            dispatch = self.router.dispatch(
                session,
                profile,
                MessageContent(
                    body=celebration.message,
                    title=MILESTONE_TITLES.get(new_value, "Streak milestone"),
                    data={"habit_id": str(habit.id), "milestone": new_value},
                ),
                channel=profile.celebration_channel,
                kind=NotificationKind.MILESTONE,
                entity_id=celebration.id,
                now=now,
            )
            result.notification_sent = dispatch.sent
            result.channel = dispatch.channel
            celebration.notification_sent = dispatch.sent
            celebration.notification_channel = dispatch.channel
            session.add(celebration)

        record_audit(
            session,
            action="streak.celebrated",
            entity_type="habit",
            entity_id=habit.id,
            user_id=habit.user_id,
            details={
                "milestone": new_value,
                "streak_epoch": result.streak_epoch,
                "notification_sent": result.notification_sent,
            },
        )
        session.commit()

        logger.info(
            f"Celebrated {new_value}-day streak for habit {habit.id}",
            extra={"channel": result.channel.value if result.channel else None},
        )
        return result

"""Due-queue scheduler for ScheduledNotification records.

Processes pending notifications whose scheduled time has arrived:
1. Claims each record with a conditional update (safe under overlapping runs)
2. Defers non-urgent sends that land inside the recipient's quiet hours
3. Routes and delivers through the ChannelRouter
4. Marks the record sent, failed or skipped; failures are not retried
"""

import logging
from datetime import datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import update
from sqlmodel import Session, select

from notifier.clock import resolve_zone, to_local, to_utc_naive
from notifier.config import Settings
from notifier.delivery.base import MessageContent
from notifier.models.habit import Habit
from notifier.models.notification import (
    NotificationKind,
    NotificationStatus,
    ScheduledNotification,
    Urgency,
)
from notifier.models.user import UserProfile
from notifier.services.audit import record_audit
from notifier.services.quiet_hours import QuietWindow, is_quiet, next_sendable
from notifier.services.routing import ChannelRouter
from notifier.services.streaks import is_completed_on
from notifier.workers.base import ItemOutcome, WorkerBase, WorkerResult

logger = logging.getLogger(__name__)


class DueNotificationWorker(WorkerBase[ScheduledNotification]):
    """Delivers due ScheduledNotification records.

    Single notifications are attempted once; retry is reserved for bulk
    communication recipients.
    """

    def __init__(
        self,
        settings: Settings,
        router: ChannelRouter,
        batch_size: int | None = None,
    ) -> None:
        super().__init__(
            batch_size=batch_size or settings.WORKER_BATCH_SIZE,
            max_retries=settings.WORKER_MAX_RETRIES,
        )
        self.settings = settings
        self.router = router
        self.claim_lease = timedelta(seconds=settings.CLAIM_LEASE_SECONDS)

    @property
    def worker_name(self) -> str:
        return "DueNotificationWorker"

    def fetch_pending(self, session: Session, now: datetime) -> list[ScheduledNotification]:
        notifications = session.exec(
            select(ScheduledNotification)
            .where(
                (ScheduledNotification.status == NotificationStatus.PENDING)
                & (ScheduledNotification.scheduled_for <= now)
                & (
                    (ScheduledNotification.claimed_at == None)
                    | (ScheduledNotification.claimed_at < now - self.claim_lease)
                )
            )
            .order_by(ScheduledNotification.scheduled_for)
            .limit(self.batch_size)
        ).all()
        return list(notifications)

    def mark_processing(self, session: Session, item: ScheduledNotification, now: datetime) -> bool:
        """Claim the record atomically; only one run can win.

        A claim older than the lease is considered abandoned and may be
        taken over.
        """
        token = uuid4()
        claimed = session.exec(
            update(ScheduledNotification)
            .where(
                (ScheduledNotification.id == item.id)
                & (ScheduledNotification.status == NotificationStatus.PENDING)
                & (
                    (ScheduledNotification.claimed_at == None)
                    | (ScheduledNotification.claimed_at < now - self.claim_lease)
                )
            )
            .values(claim_token=token, claimed_at=now)
        )
        session.commit()
        if claimed.rowcount != 1:
            return False
        session.refresh(item)
        return item.claim_token == token

    def _skip(self, item: ScheduledNotification, reason: str) -> ItemOutcome:
        item.status = NotificationStatus.SKIPPED
        item.last_error = reason
        return ItemOutcome.SKIPPED

    def process_item(self, session: Session, item: ScheduledNotification, now: datetime) -> ItemOutcome:
        profile = session.get(UserProfile, item.recipient_id)
        if profile is None:
            return self._skip(item, "recipient not found")
        if not profile.notifications_enabled:
            return self._skip(item, "notifications disabled")

        zone = resolve_zone(profile.timezone, self.settings.DEFAULT_TIMEZONE)
        local_now = to_local(now, zone)

        if item.kind == NotificationKind.HABIT_REMINDER and item.habit_id:
            habit = session.get(Habit, item.habit_id)
            if habit is None or not habit.is_active:
                return self._skip(item, "habit inactive")
            if is_completed_on(session, habit.id, local_now.date()):
                return self._skip(item, "habit already completed today")

        window = QuietWindow.from_profile(profile)
        if item.urgency != Urgency.HIGH and is_quiet(local_now, window):
            item.scheduled_for = to_utc_naive(next_sendable(local_now, window))
            logger.info(
                f"Notification {item.id} deferred by quiet hours",
                extra={"scheduled_for": item.scheduled_for.isoformat()},
            )
            return ItemOutcome.RESCHEDULED

        dispatch = self.router.dispatch(
            session,
            profile,
            MessageContent.from_payload(item.payload),
            channel=item.channel,
            kind=item.kind,
            urgency=item.urgency,
            entity_id=item.id,
            now=now,
        )
        if dispatch.skip_reason is not None:
            return self._skip(item, dispatch.skip_reason)

        item.delivered_channel = dispatch.channel
        if dispatch.sent:
            item.status = NotificationStatus.SENT
            item.sent_at = now
            item.provider_message_id = dispatch.delivery.provider_message_id
            item.last_error = None
            outcome = ItemOutcome.SENT
        else:
            item.status = NotificationStatus.FAILED
            item.last_error = (dispatch.delivery.error or "delivery failed")[:1000]
            outcome = ItemOutcome.FAILED

        record_audit(
            session,
            action="notification.delivered" if dispatch.sent else "notification.failed",
            entity_type="notification",
            entity_id=item.id,
            user_id=item.recipient_id,
            details={
                "channel": dispatch.channel.value,
                "kind": item.kind.value,
                "error": item.last_error,
            },
        )
        return outcome

    def mark_completed(self, session: Session, item: ScheduledNotification, outcome: ItemOutcome) -> None:
        item.claim_token = None
        item.claimed_at = None
        session.add(item)

    def mark_failed(
        self, session: Session, item: ScheduledNotification, error: str, can_retry: bool
    ) -> None:
        session.refresh(item)
        item.status = NotificationStatus.FAILED
        item.last_error = error
        item.claim_token = None
        item.claimed_at = None
        session.add(item)

    def get_item_id(self, item: ScheduledNotification) -> UUID:
        return item.id

    def should_retry(self, item: ScheduledNotification) -> bool:
        return False


def process_due(
    session: Session,
    settings: Settings,
    router: ChannelRouter,
    now: datetime | None = None,
) -> WorkerResult:
    """Run one due-queue pass and return sent/failed/skipped counts."""
    return DueNotificationWorker(settings, router).run(session, now)

"""Batch communication processor and the sweep that drives it.

One invocation works through a single communication's recipients:
opt-out check, rate limit (blocking until the window resets), delivery,
then the retry engine's verdict. When no recipient is left to attempt the
parent's counters and status are finalized from the recipient table.
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from sqlmodel import Session, select

from notifier.clock import utc_now
from notifier.config import Settings
from notifier.delivery.base import MessageContent
from notifier.delivery.registry import AdapterRegistry
from notifier.errors import NotFoundError
from notifier.models.communication import (
    BulkCommunication,
    CommunicationRecipient,
    CommunicationStatus,
    RecipientStatus,
)
from notifier.models.notification import Channel
from notifier.models.user import UserProfile
from notifier.services.communications import refresh_counters
from notifier.services.rate_limiter import RateLimiter
from notifier.services.retry import RetryPolicy
from notifier.workers.base import ItemOutcome, WorkerBase, WorkerResult, WorkerStatus

logger = logging.getLogger(__name__)

RATE_WINDOW_SECONDS = 60


class CommunicationWorker(WorkerBase[CommunicationRecipient]):
    """Processes one page of recipients for a single BulkCommunication."""

    def __init__(
        self,
        communication_id: UUID,
        settings: Settings,
        registry: AdapterRegistry,
        limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
        batch_size: int | None = None,
    ) -> None:
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        super().__init__(
            batch_size=batch_size or settings.WORKER_BATCH_SIZE,
            max_retries=self.retry_policy.max_attempts,
        )
        self.communication_id = communication_id
        self.settings = settings
        self.registry = registry
        self.limiter = limiter or RateLimiter(RATE_WINDOW_SECONDS)
        self._sleep = sleep
        self._clock = clock
        self._communication: BulkCommunication | None = None

    @property
    def worker_name(self) -> str:
        return "CommunicationWorker"

    def rate_limit_for(self, channel: Channel) -> int:
        if channel in (Channel.SMS, Channel.VOICE):
            return self.settings.SMS_RATE_LIMIT_PER_MINUTE
        return self.settings.EMAIL_RATE_LIMIT_PER_MINUTE

    def fetch_pending(self, session: Session, now: datetime) -> list[CommunicationRecipient]:
        retryable = (CommunicationRecipient.status == RecipientStatus.PENDING) & (
            CommunicationRecipient.attempts < self.max_retries
        )
        due = (CommunicationRecipient.next_attempt_at == None) | (
            CommunicationRecipient.next_attempt_at <= now
        )
        recipients = session.exec(
            select(CommunicationRecipient)
            .where(
                (CommunicationRecipient.communication_id == self.communication_id)
                & retryable
                & due
            )
            .order_by(CommunicationRecipient.created_at)
            .limit(self.batch_size)
        ).all()
        return list(recipients)

    def mark_processing(self, session: Session, item: CommunicationRecipient, now: datetime) -> bool:
        # The batch processor is the only writer of recipient rows
        return self.retry_policy.is_retryable(item, now)

    def _opted_out(self, session: Session, item: CommunicationRecipient) -> str | None:
        if item.user_id is None:
            return None
        profile = session.get(UserProfile, item.user_id)
        if profile is None:
            return None
        if not profile.notifications_enabled:
            return "notifications disabled"
        if self._communication.template_type == "announcement" and not profile.team_announcements_enabled:
            return "opted out of team announcements"
        return None

    def _wait_for_rate_limit(self, session: Session, channel: Channel) -> None:
        """Block until the outbound budget for ``channel`` admits one more send."""
        limit = self.rate_limit_for(channel)
        while True:
            decision = self.limiter.check_and_consume(
                session,
                key=f"bulk:{channel.value}",
                function_name=f"send_{channel.value}",
                limit=limit,
                window_seconds=RATE_WINDOW_SECONDS,
                now=self._clock(),
            )
            if decision.allowed:
                return
            logger.info(
                f"Rate limit exhausted for {channel.value}, sleeping {decision.reset_in_seconds}s",
                extra={"communication_id": str(self.communication_id)},
            )
            self._sleep(decision.reset_in_seconds)

    def process_item(self, session: Session, item: CommunicationRecipient, now: datetime) -> ItemOutcome:
        communication = self._communication
        reason = self._opted_out(session, item)
        if reason is not None:
            item.status = RecipientStatus.SKIPPED
            item.last_error = reason
            return ItemOutcome.SKIPPED

        adapter = self.registry.get(communication.channel)
        if adapter is None or not adapter.is_configured():
            item.status = RecipientStatus.SKIPPED
            item.last_error = f"{communication.channel.value} not configured"
            logger.warning(
                f"Skipping recipient {item.id}: {item.last_error}",
                extra={"communication_id": str(communication.id)},
            )
            return ItemOutcome.SKIPPED

        self._wait_for_rate_limit(session, communication.channel)

        content = MessageContent(
            body=communication.body,
            title=communication.subject,
            subject=communication.subject,
            data={"communication_id": str(communication.id)},
        )
        result = self.retry_policy.attempt(
            item, lambda: adapter.send(item.address, content), self._clock()
        )
        if result.success:
            return ItemOutcome.SENT
        if item.status == RecipientStatus.FAILED:
            return ItemOutcome.FAILED
        return ItemOutcome.RESCHEDULED

    def mark_completed(self, session: Session, item: CommunicationRecipient, outcome: ItemOutcome) -> None:
        session.add(item)

    def mark_failed(
        self, session: Session, item: CommunicationRecipient, error: str, can_retry: bool
    ) -> None:
        session.refresh(item)
        item.attempts += 1
        decision = self.retry_policy.decide(item.attempts, self._clock(), permanent=not can_retry)
        item.status = decision.status
        item.next_attempt_at = decision.next_attempt_at
        item.last_error = error
        session.add(item)

    def get_item_id(self, item: CommunicationRecipient) -> UUID:
        return item.id

    def run(self, session: Session, now: datetime | None = None) -> WorkerResult:
        """Process one page, then finalize the parent if nothing remains."""
        now = now or self._clock()
        communication = session.get(BulkCommunication, self.communication_id)
        if communication is None:
            raise NotFoundError(f"Communication {self.communication_id} not found")

        if communication.status in (CommunicationStatus.SCHEDULED, CommunicationStatus.SENDING):
            if communication.status == CommunicationStatus.SCHEDULED:
                communication.status = CommunicationStatus.SENDING
                communication.started_at = now
                session.add(communication)
                session.commit()
            self._communication = communication
            result = super().run(session, now)
        else:
            result = WorkerResult(status=WorkerStatus.NO_WORK)

        session.refresh(communication)
        final = refresh_counters(session, communication, now)
        session.commit()
        result.metadata["communication_id"] = str(communication.id)
        result.metadata["final_status"] = final.value
        return result


def process_batch(
    session: Session,
    communication_id: UUID,
    settings: Settings,
    registry: AdapterRegistry,
    limiter: RateLimiter | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], datetime] = utc_now,
) -> WorkerResult:
    """Run one page of a communication; ``metadata["final_status"]`` carries
    the parent status afterwards."""
    worker = CommunicationWorker(
        communication_id,
        settings,
        registry,
        limiter=limiter,
        sleep=sleep,
        clock=clock,
    )
    return worker.run(session)


class CommunicationSweep:
    """Runs process_batch for every communication that is due or in flight."""

    def __init__(
        self,
        settings: Settings,
        registry: AdapterRegistry,
        limiter: RateLimiter | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.limiter = limiter or RateLimiter(RATE_WINDOW_SECONDS)
        self._sleep = sleep
        self._clock = clock
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def worker_name(self) -> str:
        return "CommunicationSweep"

    def run(self, session: Session, now: datetime | None = None) -> WorkerResult:
        now = now or self._clock()
        communications = session.exec(
            select(BulkCommunication)
            .where(
                (
                    (BulkCommunication.status == CommunicationStatus.SCHEDULED)
                    & (
                        (BulkCommunication.scheduled_for == None)
                        | (BulkCommunication.scheduled_for <= now)
                    )
                )
                | (BulkCommunication.status == CommunicationStatus.SENDING)
            )
            .order_by(BulkCommunication.created_at)
        ).all()

        total = WorkerResult(status=WorkerStatus.NO_WORK)
        for communication in communications:
            result = process_batch(
                session,
                communication.id,
                self.settings,
                self.registry,
                limiter=self.limiter,
                sleep=self._sleep,
                clock=self._clock,
            )
            for report in result.items:
                total.add(report)
            total.metadata[str(communication.id)] = result.metadata["final_status"]

        total.settle_status()
        if communications:
            self._logger.info(
                f"[{self.worker_name}] Swept {len(communications)} communications",
                extra={"sent": total.processed_count, "failed": total.failed_count},
            )
        return total

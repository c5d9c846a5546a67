"""Retry & backoff engine for bulk communication recipients.

Stateless per call: every piece of retry state lives on the
CommunicationRecipient row, so a cron sweep and an inline batch loop
share the same behaviour.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from notifier.config import Settings
from notifier.delivery.base import DeliveryResult
from notifier.models.communication import CommunicationRecipient, RecipientStatus

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_SECONDS = (60, 300, 900)
MAX_RETRY_ATTEMPTS = 3


@dataclass(frozen=True)
class RetryDecision:
    """Where a recipient goes after a failed attempt."""

    status: RecipientStatus
    next_attempt_at: datetime | None
    attempts: int

    @property
    def terminal(self) -> bool:
        return self.status == RecipientStatus.FAILED


class RetryPolicy:
    """Fixed backoff table with an attempt cap."""

    def __init__(
        self,
        backoff_seconds: Sequence[int] = DEFAULT_BACKOFF_SECONDS,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
    ) -> None:
        if not backoff_seconds:
            raise ValueError("backoff_seconds must not be empty")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.backoff_seconds = list(backoff_seconds)
        self.max_attempts = max_attempts

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(settings.RETRY_BACKOFF_SECONDS, settings.WORKER_MAX_RETRIES)

    def delay_for(self, attempts: int) -> timedelta:
        """Delay after the ``attempts``-th failure, clamped to the last entry."""
        index = min(max(attempts - 1, 0), len(self.backoff_seconds) - 1)
        return timedelta(seconds=self.backoff_seconds[index])

    def decide(self, attempts: int, now: datetime, permanent: bool = False) -> RetryDecision:
        """Decide the next state given the attempt count after a failure."""
        if permanent or attempts >= self.max_attempts:
            return RetryDecision(RecipientStatus.FAILED, None, attempts)
        return RetryDecision(RecipientStatus.PENDING, now + self.delay_for(attempts), attempts)

    def is_retryable(self, recipient: CommunicationRecipient, now: datetime) -> bool:
        """True when the recipient may be attempted at ``now``."""
        if recipient.attempts >= self.max_attempts:
            return False
        if recipient.status != RecipientStatus.PENDING:
            return False
        return recipient.next_attempt_at is None or recipient.next_attempt_at <= now

    def attempt(
        self,
        recipient: CommunicationRecipient,
        send: Callable[[], DeliveryResult],
        now: datetime,
    ) -> DeliveryResult:
        """Run one delivery attempt and apply its outcome to ``recipient``.

        ``attempts`` grows by exactly one whether the send succeeds or not.
        """
        result = send()
        recipient.attempts += 1

        if result.success:
            recipient.status = RecipientStatus.SENT
            recipient.sent_at = now
            recipient.next_attempt_at = None
            recipient.last_error = None
            recipient.provider_message_id = result.provider_message_id
            return result

        decision = self.decide(recipient.attempts, now, permanent=result.permanent)
        recipient.status = decision.status
        recipient.next_attempt_at = decision.next_attempt_at
        recipient.last_error = (result.error or "unknown error")[:1000]

        logger.warning(
            f"Delivery to recipient {recipient.id} failed "
            f"(attempt {recipient.attempts}/{self.max_attempts})",
            extra={
                "recipient_id": str(recipient.id),
                "error": recipient.last_error,
                "permanent": result.permanent,
                "terminal": decision.terminal,
            },
        )
        return result

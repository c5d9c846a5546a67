"""Base worker abstraction for polled, claim-gated processing.

Workers follow this lifecycle per item:
1. fetch_pending() - select a bounded page of eligible items
2. mark_processing() - claim the item so overlapping runs skip it
3. process_item() - do the work and report an ItemOutcome
4. mark_completed() or mark_failed() - settle the item's status

Expected failures (provider rejection, opt-out, quiet hours) become item
outcomes. Database errors propagate to the caller.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from notifier.clock import utc_now

logger = logging.getLogger(__name__)


class WorkerStatus(str, Enum):
    """Status of a worker run."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some items delivered, some failed
    FAILED = "failed"
    NO_WORK = "no_work"


class ItemOutcome(str, Enum):
    """What happened to a single item in a cycle."""

    SENT = "sent"
    SKIPPED = "skipped"
    RESCHEDULED = "rescheduled"
    FAILED = "failed"


@dataclass
class ItemReport:
    item_id: UUID | str
    outcome: ItemOutcome
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"item_id": str(self.item_id), "outcome": self.outcome.value, "error": self.error}


@dataclass
class WorkerResult:
    """Result of a worker processing cycle.

    Attributes:
        status: Overall status of the worker run
        processed_count: Items delivered
        failed_count: Items that failed this cycle
        skipped_count: Items skipped by policy
        rescheduled_count: Items deferred to a later time
        duration_ms: Time taken for the processing cycle
        items: Per-item outcomes
        errors: Error details for failed items
        metadata: Additional worker-specific data
    """

    status: WorkerStatus
    processed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0
    rescheduled_count: int = 0
    duration_ms: float = 0.0
    items: list[ItemReport] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def sent(self) -> int:
        return self.processed_count

    @property
    def failed(self) -> int:
        return self.failed_count

    @property
    def skipped(self) -> int:
        return self.skipped_count

    def add(self, report: ItemReport) -> None:
        self.items.append(report)
        if report.outcome == ItemOutcome.SENT:
            self.processed_count += 1
        elif report.outcome == ItemOutcome.FAILED:
            self.failed_count += 1
            self.errors.append({"item_id": str(report.item_id), "error": report.error})
        elif report.outcome == ItemOutcome.SKIPPED:
            self.skipped_count += 1
        else:
            self.rescheduled_count += 1

    def settle_status(self) -> None:
        if self.failed_count == 0 and self.processed_count > 0:
            self.status = WorkerStatus.SUCCESS
        elif self.processed_count > 0 and self.failed_count > 0:
            self.status = WorkerStatus.PARTIAL
        elif self.failed_count > 0:
            self.status = WorkerStatus.FAILED
        elif self.items:
            self.status = WorkerStatus.SUCCESS
        else:
            self.status = WorkerStatus.NO_WORK

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and HTTP responses."""
        return {
            "status": self.status.value,
            "sent": self.processed_count,
            "failed": self.failed_count,
            "skipped": self.skipped_count,
            "rescheduled": self.rescheduled_count,
            "duration_ms": self.duration_ms,
            "items": [item.to_dict() for item in self.items],
            "errors": self.errors,
            "metadata": self.metadata,
        }


# Generic type for work items
T = TypeVar("T")


class WorkerBase(ABC, Generic[T]):
    """Abstract base class for background workers.

    Subclasses must implement all abstract methods.
    """

    def __init__(self, batch_size: int = 50, max_retries: int = 3) -> None:
        self.batch_size = batch_size
        self.max_retries = max_retries
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    @abstractmethod
    def worker_name(self) -> str:
        """Return the worker name for logging."""
        pass

    @abstractmethod
    def fetch_pending(self, session: Session, now: datetime) -> list[T]:
        """Fetch up to batch_size eligible items."""
        pass

    @abstractmethod
    def mark_processing(self, session: Session, item: T, now: datetime) -> bool:
        """Claim an item; False if another run already owns it."""
        pass

    @abstractmethod
    def process_item(self, session: Session, item: T, now: datetime) -> ItemOutcome:
        """Process a single item and report what happened to it."""
        pass

    @abstractmethod
    def mark_completed(self, session: Session, item: T, outcome: ItemOutcome) -> None:
        """Release the claim after a non-exceptional outcome."""
        pass

    @abstractmethod
    def mark_failed(
        self, session: Session, item: T, error: str, can_retry: bool
    ) -> None:
        """Record an unexpected per-item error."""
        pass

    @abstractmethod
    def get_item_id(self, item: T) -> UUID:
        pass

    def item_error(self, item: T) -> str | None:
        """Error text to report for a FAILED outcome."""
        return getattr(item, "last_error", None)

    def should_retry(self, item: T) -> bool:
        """Default implementation checks attempts against max_retries."""
        if hasattr(item, "attempts"):
            return item.attempts < self.max_retries
        return False

    def run(self, session: Session, now: datetime | None = None) -> WorkerResult:
        """Execute one processing cycle.

        Args:
            session: Database session
            now: Pinned clock for the whole cycle (defaults to utc_now())

        Returns:
            WorkerResult with per-item outcomes

        Raises:
            SQLAlchemyError: the store is unreachable or a commit fails
        """
        now = now or utc_now()
        start_time = utc_now()
        result = WorkerResult(status=WorkerStatus.NO_WORK)

        self._logger.info(
            f"[{self.worker_name}] Starting processing cycle",
            extra={"batch_size": self.batch_size},
        )

        items = self.fetch_pending(session, now)
        if not items:
            self._logger.debug(f"[{self.worker_name}] No pending items")
            result.duration_ms = self._elapsed_ms(start_time)
            return result

        self._logger.info(f"[{self.worker_name}] Found {len(items)} items to process")

        for item in items:
            item_id = self.get_item_id(item)

            if not self.mark_processing(session, item, now):
                self._logger.debug(
                    f"[{self.worker_name}] Item {item_id} claimed by another run"
                )
                continue

            try:
                outcome = self.process_item(session, item, now)
                self.mark_completed(session, item, outcome)
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                raise
            except Exception as e:
                session.rollback()
                error_msg = str(e)[:500]
                can_retry = self.should_retry(item)
                self.mark_failed(session, item, error_msg, can_retry)
                session.commit()

                result.add(ItemReport(item_id, ItemOutcome.FAILED, error_msg))
                self._logger.error(
                    f"[{self.worker_name}] Failed to process item {item_id}",
                    extra={"item_id": str(item_id), "error": error_msg, "can_retry": can_retry},
                    exc_info=True,
                )
                continue

            error = self.item_error(item) if outcome == ItemOutcome.FAILED else None
            result.add(ItemReport(item_id, outcome, error))
            self._logger.info(
                f"[{self.worker_name}] Item {item_id} {outcome.value}",
                extra={"item_id": str(item_id), "outcome": outcome.value},
            )

        result.settle_status()
        result.duration_ms = self._elapsed_ms(start_time)
        self._logger.info(f"[{self.worker_name}] Cycle complete", extra=result.to_dict())
        return result

    def _elapsed_ms(self, start: datetime) -> float:
        """Calculate elapsed time in milliseconds."""
        return (utc_now() - start).total_seconds() * 1000

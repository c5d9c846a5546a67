"""Worker runner: the cron-like entry point for background processing.

Provides easy-to-use entry points for running workers:
- run_worker_once(): Single processing cycle
- run_worker_loop(): Continuous processing with interval

Each cycle schedules the next habit reminders, drains the due queue,
advances in-flight bulk communications and re-runs failed webhook events.
"""

import logging
import signal
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlmodel import Session

from notifier.clock import utc_now
from notifier.config import Settings, get_settings
from notifier.db.session import engine as default_engine
from notifier.delivery.registry import AdapterRegistry
from notifier.services.communications import email_event_handlers
from notifier.services.payment_effects import PAYMENT_HANDLERS
from notifier.services.routing import ChannelRouter
from notifier.services.scheduling import schedule_habit_reminders
from notifier.services.webhooks import EmailWebhookIngestor, PaymentWebhookIngestor
from notifier.workers.base import ItemOutcome, ItemReport, WorkerResult, WorkerStatus
from notifier.workers.communications import CommunicationSweep
from notifier.workers.due_notifications import DueNotificationWorker

logger = logging.getLogger(__name__)


class ReminderScheduler:
    """Creates the next pending habit reminder for each habit."""

    worker_name = "ReminderScheduler"

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def run(self, session: Session, now: datetime | None = None) -> WorkerResult:
        created = schedule_habit_reminders(session, self.settings, now)
        result = WorkerResult(status=WorkerStatus.NO_WORK)
        result.metadata["scheduled"] = len(created)
        if created:
            result.status = WorkerStatus.SUCCESS
        return result


class WebhookRetrier:
    """Re-runs business effects for webhook events left in ``failed``."""

    worker_name = "WebhookRetrier"

    def __init__(self, settings: Settings, batch_size: int) -> None:
        self.batch_size = batch_size
        self.ingestors = [
            PaymentWebhookIngestor(settings, PAYMENT_HANDLERS),
            EmailWebhookIngestor(settings, email_event_handlers()),
        ]

    def run(self, session: Session, now: datetime | None = None) -> WorkerResult:
        result = WorkerResult(status=WorkerStatus.NO_WORK)
        for ingestor in self.ingestors:
            for ack in ingestor.retry_failed_events(session, self.batch_size, now):
                outcome = ItemOutcome.SENT if ack.processed else ItemOutcome.FAILED
                result.items.append(ItemReport(ack.event_id, outcome, ack.error))
                if ack.processed:
                    result.processed_count += 1
                else:
                    result.failed_count += 1
                    result.errors.append({"event_id": ack.event_id, "error": ack.error})
        result.settle_status()
        return result


@dataclass
class RunnerResult:
    """Result of a complete worker runner cycle.

    Attributes:
        started_at: When the run started
        completed_at: When the run completed
        workers_run: Number of workers executed
        total_processed: Total items delivered across all workers
        total_failed: Total items failed across all workers
        worker_results: Individual results per worker
        errors: Top-level errors during run
    """

    started_at: datetime
    completed_at: datetime | None = None
    workers_run: int = 0
    total_processed: int = 0
    total_failed: int = 0
    worker_results: dict[str, WorkerResult] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": (
                (self.completed_at - self.started_at).total_seconds() * 1000
                if self.completed_at
                else None
            ),
            "workers_run": self.workers_run,
            "total_processed": self.total_processed,
            "total_failed": self.total_failed,
            "worker_results": {
                name: result.to_dict()
                for name, result in self.worker_results.items()
            },
            "errors": self.errors,
        }


class WorkerRunner:
    """Orchestrates the background workers in a fixed order.

    Usage:
        runner = WorkerRunner()
        result = runner.run_once()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        registry: AdapterRegistry | None = None,
        batch_size: int | None = None,
        engine=None,
    ) -> None:
        self.settings = settings or get_settings()
        self.batch_size = batch_size or self.settings.WORKER_BATCH_SIZE
        self.registry = registry or AdapterRegistry.from_settings(self.settings)
        self._engine = engine or default_engine
        router = ChannelRouter(self.registry)

        self._workers = [
            ReminderScheduler(self.settings),
            DueNotificationWorker(self.settings, router, batch_size=self.batch_size),
            CommunicationSweep(self.settings, self.registry),
            WebhookRetrier(self.settings, self.batch_size),
        ]

        self._logger = logging.getLogger(self.__class__.__name__)
        self._shutdown_requested = False

    def run_once(self, session: Session | None = None, now: datetime | None = None) -> RunnerResult:
        """Execute one complete processing cycle.

        A worker that raises (e.g. the database is unreachable) is recorded
        in ``errors``; the remaining workers still run.
        """
        result = RunnerResult(started_at=utc_now())
        self._logger.info("Starting worker run", extra={"batch_size": self.batch_size})

        own_session = session is None
        if own_session:
            session = Session(self._engine)

        try:
            for worker in self._workers:
                try:
                    worker_result = worker.run(session, now)
                    result.worker_results[worker.worker_name] = worker_result
                    result.workers_run += 1
                    result.total_processed += worker_result.processed_count
                    result.total_failed += worker_result.failed_count
                except Exception as e:
                    session.rollback()
                    error_msg = f"{worker.worker_name} failed: {str(e)}"
                    result.errors.append(error_msg)
                    self._logger.error(
                        error_msg,
                        extra={"worker": worker.worker_name},
                        exc_info=True,
                    )
        finally:
            if own_session:
                session.close()

        result.completed_at = utc_now()
        self._logger.info("Worker run completed", extra=result.to_dict())
        return result

    def run_loop(
        self,
        interval_seconds: int | None = None,
        max_iterations: int | None = None,
    ) -> None:
        """Run workers continuously until shutdown or max_iterations."""
        interval = interval_seconds or self.settings.WORKER_POLL_INTERVAL_SECONDS
        iterations = 0

        self._setup_signal_handlers()
        self._logger.info(
            "Starting worker loop",
            extra={"interval_seconds": interval, "max_iterations": max_iterations},
        )

        try:
            while not self._shutdown_requested:
                if max_iterations is not None and iterations >= max_iterations:
                    self._logger.info(f"Reached max iterations ({max_iterations}), stopping")
                    break

                result = self.run_once()
                iterations += 1
                self._logger.info(
                    f"Iteration {iterations} complete",
                    extra={"processed": result.total_processed, "failed": result.total_failed},
                )

                if not self._shutdown_requested:
                    self._logger.debug(f"Sleeping for {interval} seconds")
                    time.sleep(interval)

        except KeyboardInterrupt:
            self._logger.info("Keyboard interrupt received, shutting down")

        self._logger.info("Worker loop stopped", extra={"total_iterations": iterations})

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def handle_signal(signum, frame):
            self._logger.info(f"Received signal {signum}, requesting shutdown")
            self._shutdown_requested = True

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the loop."""
        self._shutdown_requested = True


def run_worker_once(batch_size: int | None = None) -> RunnerResult:
    """Run all workers once and return results.

    Example:
        >>> from notifier.workers import run_worker_once
        >>> result = run_worker_once()
        >>> print(f"Processed: {result.total_processed}")
    """
    runner = WorkerRunner(batch_size=batch_size)
    return runner.run_once()


def run_worker_loop(
    interval_seconds: int | None = None,
    max_iterations: int | None = None,
    batch_size: int | None = None,
) -> None:
    """Run workers continuously in a loop until interrupted."""
    runner = WorkerRunner(batch_size=batch_size)
    runner.run_loop(interval_seconds=interval_seconds, max_iterations=max_iterations)


def configure_worker_logging(level: int = logging.INFO) -> None:
    """Configure logging for worker processes."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("notifier").setLevel(level)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

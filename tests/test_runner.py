"""Tests for the worker runner and the shared WorkerResult bookkeeping."""

from datetime import datetime, timedelta
from unittest.mock import Mock

from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from notifier.models.notification import (
    Channel,
    NotificationKind,
    NotificationStatus,
    ScheduledNotification,
)
from notifier.workers.base import ItemOutcome, ItemReport, WorkerResult, WorkerStatus
from notifier.workers.runner import RunnerResult, WorkerRunner

NOON = datetime(2026, 3, 10, 12, 0, 0)


# ============================================================================
# WorkerResult Tests
# ============================================================================

class TestWorkerResult:
    """Tests for WorkerResult."""

    def test_defaults(self):
        """A fresh result has no work and zero counts."""
        result = WorkerResult(status=WorkerStatus.NO_WORK)

        assert result.sent == 0
        assert result.failed == 0
        assert result.items == []

    def test_add_tallies_outcomes(self):
        """add() counts each outcome and records failure errors."""
        result = WorkerResult(status=WorkerStatus.NO_WORK)
        result.add(ItemReport("a", ItemOutcome.SENT))
        result.add(ItemReport("b", ItemOutcome.FAILED, "HTTP 503"))
        result.add(ItemReport("c", ItemOutcome.SKIPPED))
        result.add(ItemReport("d", ItemOutcome.RESCHEDULED))
        result.settle_status()

        assert (result.sent, result.failed, result.skipped, result.rescheduled_count) == (1, 1, 1, 1)
        assert result.errors == [{"item_id": "b", "error": "HTTP 503"}]
        assert result.status == WorkerStatus.PARTIAL

    def test_only_skips_is_success(self):
        """A cycle that only skipped items still did work."""
        result = WorkerResult(status=WorkerStatus.NO_WORK)
        result.add(ItemReport("a", ItemOutcome.SKIPPED))
        result.settle_status()

        assert result.status == WorkerStatus.SUCCESS

    def test_to_dict(self):
        """to_dict serializes items and status values."""
        result = WorkerResult(status=WorkerStatus.NO_WORK)
        result.add(ItemReport("a", ItemOutcome.SENT))
        result.settle_status()

        d = result.to_dict()

        assert d["status"] == "success"
        assert d["sent"] == 1
        assert d["items"] == [{"item_id": "a", "outcome": "sent", "error": None}]


# ============================================================================
# WorkerRunner Tests
# ============================================================================

class TestWorkerRunner:
    """Tests for WorkerRunner."""

    def test_runner_initializes_workers(self, settings, registry, db_engine):
        """WorkerRunner initializes all workers in order."""
        runner = WorkerRunner(settings, registry, engine=db_engine)

        assert [w.worker_name for w in runner._workers] == [
            "ReminderScheduler",
            "DueNotificationWorker",
            "CommunicationSweep",
            "WebhookRetrier",
        ]

    def test_run_once_drives_every_worker(
        self, settings, registry, db_engine, db_session: Session, profile, habit, adapters
    ):
        """One cycle schedules reminders and delivers due notifications."""
        due = ScheduledNotification(
            recipient_id=profile.id,
            channel=Channel.SMS,
            scheduled_for=NOON - timedelta(minutes=5),
            payload={"body": "Due"},
        )
        db_session.add(due)
        db_session.commit()

        runner = WorkerRunner(settings, registry, engine=db_engine)
        result = runner.run_once(db_session, now=NOON)

        assert result.errors == []
        assert result.workers_run == 4
        assert result.total_processed == 1
        assert result.worker_results["ReminderScheduler"].metadata["scheduled"] == 1
        db_session.refresh(due)
        assert due.status == NotificationStatus.SENT

        reminder = db_session.exec(
            select(ScheduledNotification).where(
                ScheduledNotification.kind == NotificationKind.HABIT_REMINDER
            )
        ).one()
        assert reminder.scheduled_for == datetime(2026, 3, 11, 8, 0, 0)
        assert reminder.status == NotificationStatus.PENDING

    def test_failing_worker_does_not_stop_cycle(self, settings, registry, db_engine, db_session: Session):
        """A worker that raises is recorded and the rest still run."""
        runner = WorkerRunner(settings, registry, engine=db_engine)
        for worker in runner._workers:
            worker.run = Mock(return_value=WorkerResult(status=WorkerStatus.NO_WORK))
        runner._workers[1].run = Mock(side_effect=OperationalError("SELECT 1", {}, Exception("down")))

        result = runner.run_once(db_session, now=NOON)

        assert result.workers_run == 3
        assert len(result.errors) == 1
        assert result.errors[0].startswith("DueNotificationWorker failed")
        assert result.completed_at is not None

    def test_runner_result_to_dict(self):
        """RunnerResult aggregates worker counts."""
        result = RunnerResult(started_at=NOON, completed_at=NOON + timedelta(seconds=2))
        result.total_processed = 15
        result.total_failed = 3
        result.workers_run = 4

        d = result.to_dict()

        assert d["total_processed"] == 15
        assert d["total_failed"] == 3
        assert d["duration_ms"] == 2000

    def test_request_shutdown_sets_flag(self, settings, registry, db_engine):
        """request_shutdown sets shutdown flag."""
        runner = WorkerRunner(settings, registry, engine=db_engine)
        assert runner._shutdown_requested is False

        runner.request_shutdown()
        assert runner._shutdown_requested is True

    def test_run_loop_stops_at_max_iterations(self, settings, registry, db_engine):
        """run_loop with max_iterations=0 never runs a cycle."""
        runner = WorkerRunner(settings, registry, engine=db_engine)
        runner.run_once = Mock()

        runner.run_loop(interval_seconds=1, max_iterations=0)

        runner.run_once.assert_not_called()

"""Background workers for the notification engine.

Workers:
- due_notifications.py: due-queue scheduler for ScheduledNotification
- communications.py: batch processor and sweep for bulk communications
- runner.py: orchestration and CLI entry points
"""

from notifier.workers.base import ItemOutcome, WorkerBase, WorkerResult, WorkerStatus
from notifier.workers.communications import CommunicationSweep, CommunicationWorker, process_batch
from notifier.workers.due_notifications import DueNotificationWorker, process_due
from notifier.workers.runner import (
    WorkerRunner,
    configure_worker_logging,
    run_worker_loop,
    run_worker_once,
)

__all__ = [
    "ItemOutcome",
    "WorkerBase",
    "WorkerResult",
    "WorkerStatus",
    "CommunicationSweep",
    "CommunicationWorker",
    "process_batch",
    "DueNotificationWorker",
    "process_due",
    "WorkerRunner",
    "configure_worker_logging",
    "run_worker_loop",
    "run_worker_once",
]

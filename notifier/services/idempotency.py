"""Idempotency ledger for externally delivered events."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session

from notifier.clock import utc_now
from notifier.models.webhook_event import ProcessingStatus, WebhookEvent

logger = logging.getLogger(__name__)


class IdempotencyLedger:
    """Gates business effects to at most one successful application per id.

    ``claim`` is the only way into ``processing``: either the atomic insert
    of a new row, or the conditional failed -> processing update of a row
    whose earlier attempt failed.
    """

    def claim(
        self,
        session: Session,
        event_id: str,
        event_type: str,
        source: str,
        payload: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Try to take ownership of ``event_id``; False means duplicate."""
        now = now or utc_now()
        dialect = session.get_bind().dialect.name
        insert = pg_insert if dialect == "postgresql" else sqlite_insert

        table = WebhookEvent.__table__
        stmt = (
            insert(table)
            .values(
                event_id=event_id,
                source=source,
                event_type=event_type,
                processing_status=ProcessingStatus.PROCESSING,
                attempts=1,
                payload=payload,
                created_at=now,
            )
            .on_conflict_do_nothing(index_elements=[table.c.event_id])
            .returning(table.c.event_id)
        )
        inserted = session.exec(stmt).first()
        if inserted is not None:
            session.commit()
            return True

        reclaimed = session.exec(
            update(WebhookEvent)
            .where(
                (WebhookEvent.event_id == event_id)
                & (WebhookEvent.processing_status == ProcessingStatus.FAILED)
            )
            .values(
                processing_status=ProcessingStatus.PROCESSING,
                attempts=WebhookEvent.attempts + 1,
                error_message=None,
            )
        )
        session.commit()
        if reclaimed.rowcount == 1:
            logger.info(f"Re-claimed failed event {event_id}")
            return True

        logger.info(f"Duplicate event {event_id} ignored")
        return False

    def complete(self, session: Session, event_id: str, now: datetime | None = None) -> None:
        event = session.get(WebhookEvent, event_id)
        event.processing_status = ProcessingStatus.COMPLETED
        event.processed_at = now or utc_now()
        event.error_message = None
        session.add(event)
        session.commit()

    def fail(
        self,
        session: Session,
        event_id: str,
        error: str,
        now: datetime | None = None,
    ) -> None:
        event = session.get(WebhookEvent, event_id)
        event.processing_status = ProcessingStatus.FAILED
        event.processed_at = now or utc_now()
        event.error_message = error[:1000]
        session.add(event)
        session.commit()

    def status(self, session: Session, event_id: str) -> ProcessingStatus | None:
        event = session.get(WebhookEvent, event_id)
        return event.processing_status if event else None

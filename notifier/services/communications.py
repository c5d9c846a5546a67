"""Bulk communication bookkeeping: creation, aggregate status, feedback."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session, select

from notifier.clock import utc_now
from notifier.models.communication import (
    BulkCommunication,
    CommunicationRecipient,
    CommunicationStatus,
    DeliveryState,
    RecipientStatus,
)
from notifier.models.notification import Channel

logger = logging.getLogger(__name__)

# Funnel order; a later state never moves back to an earlier one
FUNNEL_RANK = {
    None: 0,
    DeliveryState.DELIVERED: 1,
    DeliveryState.OPENED: 2,
    DeliveryState.CLICKED: 3,
}
OVERRIDING_STATES = {DeliveryState.BOUNCED, DeliveryState.COMPLAINED}

EMAIL_EVENT_STATES = {
    "email.delivered": DeliveryState.DELIVERED,
    "email.opened": DeliveryState.OPENED,
    "email.clicked": DeliveryState.CLICKED,
    "email.bounced": DeliveryState.BOUNCED,
    "email.complained": DeliveryState.COMPLAINED,
}


@dataclass
class RecipientCounts:
    total: int = 0
    pending: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    delivered: int = 0
    bounced: int = 0

    @property
    def outstanding(self) -> int:
        """Recipients that may still be attempted; failed is terminal."""
        return self.pending


def create_communication(
    session: Session,
    subject: str,
    body: str,
    recipients: list[dict[str, Any]],
    channel: Channel = Channel.EMAIL,
    template_type: str = "announcement",
    scheduled_for: datetime | None = None,
    sender_id: UUID | None = None,
) -> BulkCommunication:
    """Create a scheduled communication and one pending row per recipient.

    Duplicate addresses are collapsed to a single recipient.
    """
    communication = BulkCommunication(
        subject=subject,
        body=body,
        channel=channel,
        template_type=template_type,
        scheduled_for=scheduled_for or utc_now(),
        sender_id=sender_id,
    )
    session.add(communication)
    session.flush()

    seen = set()
    for entry in recipients:
        address = entry["address"].strip()
        if not address or address.lower() in seen:
            continue
        seen.add(address.lower())
        session.add(
            CommunicationRecipient(
                communication_id=communication.id,
                user_id=entry.get("user_id"),
                address=address,
            )
        )
    communication.total_recipients = len(seen)
    session.add(communication)
    session.commit()
    session.refresh(communication)

    logger.info(
        f"Created communication {communication.id}",
        extra={"recipients": communication.total_recipients, "channel": channel.value},
    )
    return communication


def recipient_counts(session: Session, communication_id: UUID) -> RecipientCounts:
    """Tally recipient rows; the table is the single source of truth."""
    counts = RecipientCounts()
    rows = session.exec(
        select(
            CommunicationRecipient.status,
            CommunicationRecipient.delivery_state,
            func.count(),
        )
        .where(CommunicationRecipient.communication_id == communication_id)
        .group_by(
            CommunicationRecipient.status,
            CommunicationRecipient.delivery_state,
        )
    ).all()

    for status, delivery_state, n in rows:
        counts.total += n
        if status == RecipientStatus.PENDING:
            counts.pending += n
        elif status == RecipientStatus.SENT:
            counts.sent += n
        elif status == RecipientStatus.SKIPPED:
            counts.skipped += n
        elif status == RecipientStatus.FAILED:
            counts.failed += n

        if delivery_state in (DeliveryState.DELIVERED, DeliveryState.OPENED, DeliveryState.CLICKED):
            counts.delivered += n
        elif delivery_state == DeliveryState.BOUNCED:
            counts.bounced += n
    return counts


def derive_communication_status(counts: RecipientCounts) -> CommunicationStatus | None:
    """Aggregate status from recipient counts, or None while work remains.

    failed: nothing succeeded and something failed. partial: both.
    sent: otherwise, including an all-skipped communication.
    """
    if counts.outstanding > 0:
        return None
    if counts.failed > 0 and counts.sent == 0:
        return CommunicationStatus.FAILED
    if counts.failed > 0:
        return CommunicationStatus.PARTIAL
    return CommunicationStatus.SENT


def refresh_counters(
    session: Session,
    communication: BulkCommunication,
    now: datetime | None = None,
) -> CommunicationStatus:
    """Recompute counters from recipient rows and settle the status if done."""
    counts = recipient_counts(session, communication.id)
    communication.total_recipients = counts.total
    communication.sent_count = counts.sent
    communication.failed_count = counts.failed
    communication.skipped_count = counts.skipped
    communication.delivered_count = counts.delivered
    communication.bounced_count = counts.bounced

    final = derive_communication_status(counts)
    if final is None:
        communication.status = CommunicationStatus.SENDING
    else:
        if communication.status != final:
            logger.info(f"Communication {communication.id} finalized as {final.value}")
        communication.status = final
        communication.completed_at = communication.completed_at or now or utc_now()
    session.add(communication)
    return communication.status


def record_email_event(
    session: Session,
    provider_message_id: str,
    event_type: str,
) -> CommunicationRecipient | None:
    """Apply email provider feedback to the matching recipient.

    Funnel states only move forward; bounced and complained always win.
    """
    state = EMAIL_EVENT_STATES.get(event_type)
    if state is None:
        logger.debug(f"Ignoring email event {event_type}")
        return None

    recipient = session.exec(
        select(CommunicationRecipient).where(
            CommunicationRecipient.provider_message_id == provider_message_id
        )
    ).first()
    if recipient is None:
        logger.info(f"No recipient for provider message {provider_message_id}")
        return None

    current = recipient.delivery_state
    if state in OVERRIDING_STATES:
        recipient.delivery_state = state
    elif current not in OVERRIDING_STATES and FUNNEL_RANK[state] > FUNNEL_RANK.get(current, 0):
        recipient.delivery_state = state
    session.add(recipient)
    session.flush()

    communication = session.get(BulkCommunication, recipient.communication_id)
    if communication is not None:
        counts = recipient_counts(session, communication.id)
        communication.delivered_count = counts.delivered
        communication.bounced_count = counts.bounced
        session.add(communication)
    return recipient


def email_event_handlers() -> dict[str, Any]:
    """Webhook handlers, one per email event type, feeding record_email_event."""

    def make(event_type: str):
        def handle(session: Session, data: dict[str, Any]) -> None:
            message_id = data.get("email_id") or data.get("id")
            if message_id:
                record_email_event(session, message_id, event_type)

        return handle

    return {event_type: make(event_type) for event_type in EMAIL_EVENT_STATES}

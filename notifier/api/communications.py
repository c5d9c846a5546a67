"""Bulk communication API endpoints."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from sqlmodel import select

from notifier.api.deps import AppSettings, CronAuth, DBSession, Registry
from notifier.errors import NotFoundError
from notifier.models.communication import (
    BulkCommunication,
    CommunicationCreate,
    CommunicationRecipient,
    CommunicationResponse,
    RecipientResponse,
)
from notifier.services.communications import create_communication
from notifier.workers.communications import process_batch

router = APIRouter(prefix="/api/communications", tags=["Communications"])


def _response(session, communication: BulkCommunication) -> CommunicationResponse:
    recipients = session.exec(
        select(CommunicationRecipient)
        .where(CommunicationRecipient.communication_id == communication.id)
        .order_by(CommunicationRecipient.created_at)
    ).all()
    response = CommunicationResponse.model_validate(communication)
    response.recipients = [RecipientResponse.model_validate(r) for r in recipients]
    return response


@router.post("", response_model=CommunicationResponse, status_code=status.HTTP_201_CREATED)
def create_communication_endpoint(
    session: DBSession,
    data: CommunicationCreate,
) -> CommunicationResponse:
    """Create a bulk communication and its recipients."""
    if not data.recipients:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="At least one recipient is required",
        )
    communication = create_communication(
        session,
        subject=data.subject,
        body=data.body,
        recipients=[r.model_dump() for r in data.recipients],
        channel=data.channel,
        template_type=data.template_type,
        scheduled_for=data.scheduled_for,
        sender_id=data.sender_id,
    )
    return _response(session, communication)


@router.get("/{communication_id}", response_model=CommunicationResponse)
def get_communication_endpoint(
    session: DBSession,
    communication_id: UUID,
) -> CommunicationResponse:
    """Aggregate status and per-recipient detail."""
    communication = session.get(BulkCommunication, communication_id)
    if communication is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Communication not found",
        )
    return _response(session, communication)


@router.post("/{communication_id}/process", dependencies=[CronAuth])
def process_communication_endpoint(
    session: DBSession,
    settings: AppSettings,
    registry: Registry,
    communication_id: UUID,
) -> dict:
    """Process one page of recipients (cron trigger)."""
    try:
        result = process_batch(session, communication_id, settings, registry)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Communication not found",
        )
    return result.to_dict()

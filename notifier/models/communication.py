"""BulkCommunication and CommunicationRecipient entity models."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from notifier.models.notification import Channel


class CommunicationStatus(str, Enum):
    """Batch job status; terminal values are derived from recipient state."""

    SCHEDULED = "scheduled"
    SENDING = "sending"
    PARTIAL = "partial"
    SENT = "sent"
    FAILED = "failed"


class RecipientStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class DeliveryState(str, Enum):
    """Provider feedback received after a recipient was sent."""

    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    BOUNCED = "bounced"
    COMPLAINED = "complained"


class BulkCommunication(SQLModel, table=True):
    """A bulk send (e.g. a team announcement).

    Counters are recomputed from recipient rows on finalize, never
    incremented in place.
    """

    __tablename__ = "bulk_communications"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    sender_id: UUID | None = Field(default=None, foreign_key="profiles.id")
    subject: str = Field(max_length=300)
    body: str
    template_type: str = Field(default="announcement", max_length=50)
    channel: Channel = Field(default=Channel.EMAIL)
    status: CommunicationStatus = Field(default=CommunicationStatus.SCHEDULED, index=True)
    scheduled_for: datetime | None = Field(default=None, index=True)

    total_recipients: int = Field(default=0)
    sent_count: int = Field(default=0)
    failed_count: int = Field(default=0)
    skipped_count: int = Field(default=0)
    delivered_count: int = Field(default=0)
    bounced_count: int = Field(default=0)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: datetime | None = Field(default=None)
    completed_at: datetime | None = Field(default=None)


class CommunicationRecipient(SQLModel, table=True):
    """One addressee of a bulk communication, carrying all retry state."""

    __tablename__ = "communication_recipients"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    communication_id: UUID = Field(foreign_key="bulk_communications.id", index=True)
    user_id: UUID | None = Field(default=None, foreign_key="profiles.id", index=True)
    address: str = Field(max_length=255)
    status: RecipientStatus = Field(default=RecipientStatus.PENDING, index=True)
    attempts: int = Field(default=0, ge=0)
    next_attempt_at: datetime | None = Field(default=None, index=True)
    last_error: str | None = Field(default=None, max_length=1000)
    sent_at: datetime | None = Field(default=None)
    provider_message_id: str | None = Field(default=None, max_length=255, index=True)
    delivery_state: DeliveryState | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class RecipientInput(SQLModel):
    address: str = Field(max_length=255)
    user_id: UUID | None = None


class CommunicationCreate(SQLModel):
    """Schema for creating a bulk communication."""

    subject: str = Field(max_length=300)
    body: str
    template_type: str = "announcement"
    channel: Channel = Channel.EMAIL
    scheduled_for: datetime | None = None
    sender_id: UUID | None = None
    recipients: list[RecipientInput]


class RecipientResponse(SQLModel):
    id: UUID
    address: str
    status: RecipientStatus
    attempts: int
    next_attempt_at: datetime | None
    last_error: str | None
    delivery_state: DeliveryState | None

    model_config = {"from_attributes": True}


class CommunicationResponse(SQLModel):
    """Schema for communication detail response."""

    id: UUID
    subject: str
    channel: Channel
    status: CommunicationStatus
    total_recipients: int
    sent_count: int
    failed_count: int
    skipped_count: int
    delivered_count: int
    bounced_count: int
    created_at: datetime
    completed_at: datetime | None
    recipients: list[RecipientResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}

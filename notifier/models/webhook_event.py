"""WebhookEvent entity model (idempotency ledger)."""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlmodel import Column, Field, SQLModel

from notifier.models.types import JSONVariant


class ProcessingStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class WebhookEvent(SQLModel, table=True):
    """One row per externally delivered event id.

    The verified payload is kept so failed rows can be re-run out of band.
    """

    __tablename__ = "webhook_events"

    event_id: str = Field(primary_key=True, max_length=255)
    source: str = Field(default="stripe", max_length=30, index=True)
    event_type: str = Field(max_length=100, index=True)
    processing_status: ProcessingStatus = Field(
        default=ProcessingStatus.PROCESSING, index=True
    )
    attempts: int = Field(default=1)
    payload: dict[str, Any] | None = Field(default=None, sa_column=Column(JSONVariant))
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    processed_at: datetime | None = Field(default=None)
    error_message: str | None = Field(default=None, max_length=1000)

"""ScheduledNotification entity model."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlmodel import Column, Field, SQLModel

from notifier.models.types import JSONVariant


class Channel(str, Enum):
    """Delivery channels, one adapter each."""

    SMS = "sms"
    VOICE = "voice"
    PUSH = "push"
    EMAIL = "email"


class NotificationKind(str, Enum):
    """What triggered a scheduled notification."""

    HABIT_REMINDER = "habit_reminder"
    MILESTONE = "milestone"
    PACE_WARNING = "pace_warning"
    WEEKLY_REVIEW = "weekly_review"
    MORNING_BRIEFING = "morning_briefing"
    CUSTOM = "custom"


class NotificationStatus(str, Enum):
    """Lifecycle of a scheduled notification.

    PENDING moves to exactly one of the terminal states.
    """

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class Urgency(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class ScheduledNotification(SQLModel, table=True):
    """A unit of future delivery work consumed by the due-queue scheduler."""

    __tablename__ = "scheduled_notifications"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    recipient_id: UUID = Field(foreign_key="profiles.id", index=True)
    kind: NotificationKind = Field(default=NotificationKind.CUSTOM)
    channel: Channel | None = Field(default=None)
    urgency: Urgency = Field(default=Urgency.NORMAL)
    scheduled_for: datetime = Field(index=True)
    status: NotificationStatus = Field(default=NotificationStatus.PENDING, index=True)
    payload: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSONVariant))
    habit_id: UUID | None = Field(default=None, foreign_key="habits.id", index=True)

    # Claim columns close the select-then-update race between overlapping runs
    claim_token: UUID | None = Field(default=None)
    claimed_at: datetime | None = Field(default=None)

    delivered_channel: Channel | None = Field(default=None)
    provider_message_id: str | None = Field(default=None, max_length=255)
    last_error: str | None = Field(default=None, max_length=1000)
    sent_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class NotificationCreate(SQLModel):
    """Schema for scheduling a notification."""

    recipient_id: UUID
    kind: NotificationKind = NotificationKind.CUSTOM
    scheduled_for: datetime
    channel: Channel | None = None
    urgency: Urgency = Urgency.NORMAL
    payload: dict[str, Any] = Field(default_factory=dict)
    habit_id: UUID | None = None


class NotificationResponse(SQLModel):
    """Schema for notification response."""

    id: UUID
    recipient_id: UUID
    kind: NotificationKind
    channel: Channel | None
    urgency: Urgency
    scheduled_for: datetime
    status: NotificationStatus
    payload: dict[str, Any]
    delivered_channel: Channel | None
    last_error: str | None
    sent_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}

"""AuditLog entity model for engine activity records."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlmodel import Column, Field, SQLModel

from notifier.models.types import JSONVariant


class AuditLog(SQLModel, table=True):
    """Audit log database model for immutable activity records."""

    __tablename__ = "audit_logs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID | None = Field(default=None, index=True)
    action: str = Field(max_length=50, index=True)
    entity_type: str = Field(max_length=50, index=True)
    entity_id: str | None = Field(default=None, max_length=255, index=True)
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSONVariant))
    timestamp: datetime = Field(default_factory=datetime.utcnow, index=True)

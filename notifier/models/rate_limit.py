"""RateLimitWindow entity model."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class RateLimitWindow(SQLModel, table=True):
    """Fixed-window counter keyed by (client_key, function_name)."""

    __tablename__ = "rate_limit_windows"
    __table_args__ = (UniqueConstraint("client_key", "function_name"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    client_key: str = Field(max_length=255)
    function_name: str = Field(max_length=100)
    window_start: datetime
    window_expires_at: datetime
    count: int = Field(default=0)

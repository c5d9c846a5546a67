"""PrintOrder entity model."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    SUBMITTED = "submitted"
    SHIPPED = "shipped"


class PrintOrder(SQLModel, table=True):
    """Print-on-demand order paid through the payment processor."""

    __tablename__ = "print_orders"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="profiles.id", index=True)
    status: OrderStatus = Field(default=OrderStatus.PENDING, index=True)
    paid_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=datetime.utcnow)

"""UserProfile and DeviceRegistration entity models."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from notifier.models.notification import Channel


class UserProfile(SQLModel, table=True):
    """Per-user contact data and communication preferences.

    Only the fields the notification engine reads or writes live here.
    """

    __tablename__ = "profiles"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    full_name: str | None = Field(default=None, max_length=200)
    email: str | None = Field(default=None, max_length=255, index=True)
    phone_number: str | None = Field(default=None, max_length=32)
    phone_verified: bool = Field(default=False)
    timezone: str | None = Field(default=None, max_length=64)

    # Quiet hours in local 0-23 hours; both null means no quiet window
    quiet_start_hour: int | None = Field(default=None, ge=0, le=23)
    quiet_end_hour: int | None = Field(default=None, ge=0, le=23)

    preferred_channel: Channel | None = Field(default=None)
    notifications_enabled: bool = Field(default=True)
    team_announcements_enabled: bool = Field(default=True)
    streak_celebrations_enabled: bool = Field(default=True)
    celebration_channel: Channel | None = Field(default=None)

    # Billing state mutated by payment webhooks
    subscription_tier: str = Field(default="FREE", max_length=20)
    subscription_status: str | None = Field(default=None, max_length=30)
    credits: int = Field(default=0)
    stripe_customer_id: str | None = Field(default=None, max_length=255, index=True)
    stripe_subscription_id: str | None = Field(default=None, max_length=255)

    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def first_name(self) -> str:
        if self.full_name:
            return self.full_name.split(" ")[0]
        return "Champion"


class DeviceRegistration(SQLModel, table=True):
    """A push-capable device token registered by a user."""

    __tablename__ = "device_registrations"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="profiles.id", index=True)
    device_token: str = Field(max_length=255, unique=True)
    platform: str = Field(default="ios", max_length=20)
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    last_used_at: datetime | None = Field(default=None)

"""Shared fixtures: in-memory database, settings and fake channel adapters."""

import base64
from datetime import datetime

import pytest
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from notifier.config import Settings
from notifier.delivery.base import DeliveryAdapter, DeliveryResult, MessageContent
from notifier.delivery.registry import AdapterRegistry
from notifier.models.habit import Habit
from notifier.models.notification import Channel
from notifier.models.user import DeviceRegistration, UserProfile
from notifier.services.routing import ChannelRouter

EMAIL_SECRET = "whsec_" + base64.b64encode(b"email-webhook-secret").decode()


class FakeAdapter(DeliveryAdapter):
    """Adapter that records sends and replays scripted results."""

    def __init__(self, channel: Channel, results=None, configured: bool = True) -> None:
        super().__init__(client=None)
        self.channel = channel
        self.results = list(results or [])
        self.configured = configured
        self.sent: list[tuple[str, MessageContent]] = []

    def is_configured(self) -> bool:
        return self.configured

    def _send(self, address: str, content: MessageContent) -> DeliveryResult:
        self.sent.append((address, content))
        if self.results:
            return self.results.pop(0)
        return DeliveryResult(success=True, provider_message_id=f"{self.channel.value}-{len(self.sent)}")


class FakeClock:
    """Controllable clock; sleeping advances it."""

    def __init__(self, now: datetime) -> None:
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def sleep(self, seconds: float) -> None:
        from datetime import timedelta

        self.sleeps.append(seconds)
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def db_engine():
    """Create an in-memory database with every table."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Import all models to register them
    import notifier.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def db_session(db_engine):
    """Create a test database session."""
    with Session(db_engine) as session:
        yield session


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="sqlite://",
        CRON_SECRET="cron-secret",
        STRIPE_WEBHOOK_SECRET="whsec_stripe_test",
        EMAIL_WEBHOOK_SECRET=EMAIL_SECRET,
        WORKER_BATCH_SIZE=50,
        WORKER_MAX_RETRIES=3,
        RETRY_BACKOFF_SECONDS=[60, 300, 900],
        EMAIL_RATE_LIMIT_PER_MINUTE=100,
        SMS_RATE_LIMIT_PER_MINUTE=10,
        DEFAULT_TIMEZONE="UTC",
    )


@pytest.fixture
def adapters() -> dict[Channel, FakeAdapter]:
    return {channel: FakeAdapter(channel) for channel in Channel}


@pytest.fixture
def registry(adapters) -> AdapterRegistry:
    return AdapterRegistry(list(adapters.values()))


@pytest.fixture
def router(registry) -> ChannelRouter:
    return ChannelRouter(registry)


@pytest.fixture
def profile(db_session: Session) -> UserProfile:
    """A reachable user on every channel, in UTC, without quiet hours."""
    user = UserProfile(
        full_name="Ada Lovelace",
        email="ada@example.com",
        phone_number="+15550001111",
        phone_verified=True,
        timezone="UTC",
    )
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def device(db_session: Session, profile: UserProfile) -> DeviceRegistration:
    registration = DeviceRegistration(user_id=profile.id, device_token="a" * 64)
    db_session.add(registration)
    db_session.commit()
    db_session.refresh(registration)
    return registration


@pytest.fixture
def habit(db_session: Session, profile: UserProfile) -> Habit:
    item = Habit(user_id=profile.id, title="Morning run", reminder_time="08:00")
    db_session.add(item)
    db_session.commit()
    db_session.refresh(item)
    return item

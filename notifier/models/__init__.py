"""SQLModel entities for the notification engine."""

from notifier.models.audit_log import AuditLog
from notifier.models.communication import (
    BulkCommunication,
    CommunicationRecipient,
    CommunicationStatus,
    DeliveryState,
    RecipientStatus,
)
from notifier.models.habit import Habit, HabitCompletion, StreakCelebration
from notifier.models.notification import (
    Channel,
    NotificationKind,
    NotificationStatus,
    ScheduledNotification,
    Urgency,
)
from notifier.models.order import OrderStatus, PrintOrder
from notifier.models.rate_limit import RateLimitWindow
from notifier.models.user import DeviceRegistration, UserProfile
from notifier.models.webhook_event import ProcessingStatus, WebhookEvent

__all__ = [
    "AuditLog",
    "BulkCommunication",
    "CommunicationRecipient",
    "CommunicationStatus",
    "DeliveryState",
    "RecipientStatus",
    "Habit",
    "HabitCompletion",
    "StreakCelebration",
    "Channel",
    "NotificationKind",
    "NotificationStatus",
    "ScheduledNotification",
    "Urgency",
    "OrderStatus",
    "PrintOrder",
    "RateLimitWindow",
    "DeviceRegistration",
    "UserProfile",
    "ProcessingStatus",
    "WebhookEvent",
]

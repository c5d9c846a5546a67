"""Channel delivery adapters."""

from notifier.delivery.base import DeliveryAdapter, DeliveryResult, MessageContent
from notifier.delivery.email import EmailAdapter
from notifier.delivery.push import PushAdapter
from notifier.delivery.registry import AdapterRegistry
from notifier.delivery.sms import SmsAdapter, VoiceAdapter

__all__ = [
    "AdapterRegistry",
    "DeliveryAdapter",
    "DeliveryResult",
    "MessageContent",
    "EmailAdapter",
    "PushAdapter",
    "SmsAdapter",
    "VoiceAdapter",
]

"""Lookup table from Channel to its DeliveryAdapter."""

import logging

import httpx

from notifier.config import Settings
from notifier.delivery.base import DeliveryAdapter
from notifier.delivery.email import EmailAdapter
from notifier.delivery.push import PushAdapter
from notifier.delivery.sms import SmsAdapter, VoiceAdapter
from notifier.models.notification import Channel

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Holds one adapter per channel.

    Adding a channel means registering another adapter; callers only ever
    look adapters up by ``Channel``.
    """

    def __init__(self, adapters: list[DeliveryAdapter] | None = None) -> None:
        self._adapters: dict[Channel, DeliveryAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: DeliveryAdapter) -> None:
        self._adapters[adapter.channel] = adapter

    def get(self, channel: Channel) -> DeliveryAdapter | None:
        return self._adapters.get(channel)

    def is_available(self, channel: Channel) -> bool:
        adapter = self.get(channel)
        return adapter is not None and adapter.is_configured()

    def close(self) -> None:
        for adapter in self._adapters.values():
            adapter.close()

    @classmethod
    def from_settings(
        cls, settings: Settings, client: httpx.Client | None = None
    ) -> "AdapterRegistry":
        registry = cls([
            SmsAdapter(settings, client),
            VoiceAdapter(settings, client),
            PushAdapter(settings, client),
            EmailAdapter(settings, client),
        ])
        for channel, adapter in registry._adapters.items():
            if not adapter.is_configured():
                logger.warning(
                    f"Channel {channel.value} disabled: credentials not configured"
                )
        return registry

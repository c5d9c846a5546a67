"""Uniform send interface implemented once per delivery channel."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from notifier.models.notification import Channel

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(10.0, connect=5.0)

# Provider statuses worth retrying even though they are 4xx
RETRYABLE_CLIENT_STATUSES = {408, 429}


@dataclass
class MessageContent:
    """Channel-agnostic content handed to an adapter."""

    body: str
    title: str | None = None
    subject: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any] | None) -> "MessageContent":
        payload = payload or {}
        extra = {
            k: v
            for k, v in payload.items()
            if k not in ("body", "message", "title", "subject")
        }
        return cls(
            body=payload.get("body") or payload.get("message") or "",
            title=payload.get("title"),
            subject=payload.get("subject") or payload.get("title"),
            data=extra,
        )


@dataclass
class DeliveryResult:
    """Outcome of one send call.

    ``skipped`` means the adapter never contacted the provider (channel not
    configured). ``permanent`` failures must not be retried.
    """

    success: bool
    provider_message_id: str | None = None
    error: str | None = None
    permanent: bool = False
    skipped: bool = False
    status_code: int | None = None

    @classmethod
    def not_configured(cls, channel: Channel) -> "DeliveryResult":
        return cls(success=False, skipped=True, error=f"{channel.value} not configured")


class DeliveryAdapter(ABC):
    """Base class for channel adapters.

    Subclasses implement ``is_configured`` and ``_send``; ``send`` handles
    the unconfigured case and transport errors uniformly.
    """

    channel: Channel

    def __init__(self, client: httpx.Client | None = None) -> None:
        self._client = client
        self._logger = logging.getLogger(self.__class__.__name__)

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def _build_client(self) -> httpx.Client:
        return httpx.Client(timeout=DEFAULT_TIMEOUT)

    @abstractmethod
    def is_configured(self) -> bool:
        """Return True when provider credentials are present."""
        pass

    @abstractmethod
    def _send(self, address: str, content: MessageContent) -> DeliveryResult:
        pass

    def send(self, address: str, content: MessageContent) -> DeliveryResult:
        """Deliver ``content`` to ``address`` on this channel."""
        if not self.is_configured():
            self._logger.warning(
                f"{self.channel.value} adapter not configured, skipping send",
                extra={"channel": self.channel.value},
            )
            return DeliveryResult.not_configured(self.channel)

        try:
            return self._send(address, content)
        except httpx.TimeoutException as e:
            return DeliveryResult(success=False, error=f"timeout: {e}")
        except httpx.TransportError as e:
            return DeliveryResult(success=False, error=f"transport error: {e}")

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


def failure_from_response(response: httpx.Response, permanent: bool | None = None) -> DeliveryResult:
    """Build a failed DeliveryResult, classifying the HTTP status.

    4xx other than 408/429 is permanent; everything else is transient.
    """
    status = response.status_code
    if permanent is None:
        permanent = 400 <= status < 500 and status not in RETRYABLE_CLIENT_STATUSES
    return DeliveryResult(
        success=False,
        error=f"HTTP {status}: {response.text[:300]}",
        permanent=permanent,
        status_code=status,
    )

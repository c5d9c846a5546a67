"""Email adapter backed by the Resend REST API."""

from html import escape

import httpx

from notifier.config import Settings
from notifier.delivery.base import (
    DeliveryAdapter,
    DeliveryResult,
    MessageContent,
    failure_from_response,
)
from notifier.models.notification import Channel

RESEND_API_URL = "https://api.resend.com/emails"


class EmailAdapter(DeliveryAdapter):
    channel = Channel.EMAIL

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        super().__init__(client)
        self.api_key = settings.RESEND_API_KEY
        self.sender = settings.EMAIL_FROM

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _send(self, address: str, content: MessageContent) -> DeliveryResult:
        html = content.data.get("html") or "".join(
            f"<p>{escape(line)}</p>" for line in content.body.split("\n") if line
        )
        response = self.client.post(
            RESEND_API_URL,
            json={
                "from": self.sender,
                "to": [address],
                "subject": content.subject or "A note from Visionary",
                "html": html,
                "text": content.body,
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        if response.status_code >= 300:
            return failure_from_response(response)

        return DeliveryResult(
            success=True,
            provider_message_id=response.json().get("id"),
            status_code=response.status_code,
        )

"""SMS and voice adapters backed by the Twilio REST API."""

from xml.sax.saxutils import escape

import httpx

from notifier.config import Settings
from notifier.delivery.base import (
    DeliveryAdapter,
    DeliveryResult,
    MessageContent,
    failure_from_response,
)
from notifier.models.notification import Channel

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class TwilioAdapter(DeliveryAdapter):
    """Shared credentials and request plumbing for Twilio channels."""

    resource: str

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        super().__init__(client)
        self.account_sid = settings.TWILIO_ACCOUNT_SID
        self.auth_token = settings.TWILIO_AUTH_TOKEN
        self.from_number = settings.TWILIO_PHONE_NUMBER

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    def _form(self, address: str, content: MessageContent) -> dict[str, str]:
        raise NotImplementedError

    def _send(self, address: str, content: MessageContent) -> DeliveryResult:
        url = f"{TWILIO_API_BASE}/Accounts/{self.account_sid}/{self.resource}.json"
        response = self.client.post(
            url,
            data=self._form(address, content),
            auth=(self.account_sid, self.auth_token),
        )
        if response.status_code >= 300:
            return failure_from_response(response)

        body = response.json()
        return DeliveryResult(
            success=True,
            provider_message_id=body.get("sid"),
            status_code=response.status_code,
        )


class SmsAdapter(TwilioAdapter):
    channel = Channel.SMS
    resource = "Messages"

    def _form(self, address: str, content: MessageContent) -> dict[str, str]:
        return {"To": address, "From": self.from_number, "Body": content.body}


class VoiceAdapter(TwilioAdapter):
    """Places a call that reads the message body aloud."""

    channel = Channel.VOICE
    resource = "Calls"

    def _form(self, address: str, content: MessageContent) -> dict[str, str]:
        twiml = (
            '<Response><Say voice="alice">'
            f"{escape(content.body)}"
            "</Say></Response>"
        )
        return {"To": address, "From": self.from_number, "Twiml": twiml}

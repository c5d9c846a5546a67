"""Push adapter speaking the APNs HTTP/2 provider API."""

import time

import httpx
from jose import jwt

from notifier.config import Settings
from notifier.delivery.base import (
    DEFAULT_TIMEOUT,
    DeliveryAdapter,
    DeliveryResult,
    MessageContent,
    failure_from_response,
)
from notifier.models.notification import Channel

APNS_HOSTS = {
    "production": "https://api.push.apple.com",
    "development": "https://api.sandbox.push.apple.com",
}

# APNs rejects provider tokens older than an hour
TOKEN_TTL_SECONDS = 50 * 60

UNREGISTERED_REASONS = {"BadDeviceToken", "Unregistered", "DeviceTokenNotForTopic"}


class PushAdapter(DeliveryAdapter):
    """Sends alert pushes to a single device token."""

    channel = Channel.PUSH

    def __init__(
        self,
        settings: Settings,
        client: httpx.Client | None = None,
        clock=time.time,
    ) -> None:
        super().__init__(client)
        self.key_id = settings.APNS_KEY_ID
        self.team_id = settings.APNS_TEAM_ID
        # Keys pasted into env files often carry literal \n sequences
        self.private_key = settings.APNS_PRIVATE_KEY.replace("\\n", "\n")
        self.bundle_id = settings.APNS_BUNDLE_ID
        self.host = APNS_HOSTS.get(settings.APNS_ENVIRONMENT, APNS_HOSTS["development"])
        self._clock = clock
        self._token: str | None = None
        self._token_issued_at = 0.0

    def _build_client(self) -> httpx.Client:
        return httpx.Client(http2=True, timeout=DEFAULT_TIMEOUT)

    def is_configured(self) -> bool:
        return bool(self.key_id and self.team_id and self.private_key)

    def provider_token(self) -> str:
        """Return a cached ES256 provider token, re-signing when stale."""
        now = self._clock()
        if self._token is None or now - self._token_issued_at >= TOKEN_TTL_SECONDS:
            self._token = jwt.encode(
                {"iss": self.team_id, "iat": int(now)},
                self.private_key,
                algorithm="ES256",
                headers={"kid": self.key_id},
            )
            self._token_issued_at = now
        return self._token

    def _send(self, address: str, content: MessageContent) -> DeliveryResult:
        alert = {"title": content.title or "Visionary", "body": content.body}
        payload = {"aps": {"alert": alert, "sound": "default"}, **content.data}

        response = self.client.post(
            f"{self.host}/3/device/{address}",
            json=payload,
            headers={
                "authorization": f"bearer {self.provider_token()}",
                "apns-topic": self.bundle_id,
                "apns-push-type": "alert",
                "apns-priority": "10",
            },
        )

        if response.status_code == 200:
            return DeliveryResult(
                success=True,
                provider_message_id=response.headers.get("apns-id"),
                status_code=200,
            )

        reason = None
        try:
            reason = response.json().get("reason")
        except ValueError:
            pass

        if response.status_code == 410 or reason in UNREGISTERED_REASONS:
            result = failure_from_response(response, permanent=True)
        else:
            result = failure_from_response(response)
        if reason:
            result.error = f"APNs {response.status_code}: {reason}"
        return result

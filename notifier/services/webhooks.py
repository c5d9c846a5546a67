"""Webhook ingestion: signature verification plus exactly-once effects.

Once a signature verifies, ingestion always acknowledges success, even if
the business effect failed. Failed events stay in the ledger as ``failed``
and are re-run by ``retry_failed_events``.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from notifier.clock import utc_now
from notifier.config import Settings
from notifier.errors import WebhookPayloadError, WebhookSignatureError
from notifier.models.webhook_event import ProcessingStatus, WebhookEvent
from notifier.services.audit import record_audit
from notifier.services.idempotency import IdempotencyLedger

logger = logging.getLogger(__name__)

EventHandler = Callable[[Session, dict[str, Any]], None]


# -----------------------------------------------------------------------------
# Signature verification
# -----------------------------------------------------------------------------


def _check_tolerance(timestamp: int, tolerance: int, now_ts: float | None) -> None:
    now_ts = time.time() if now_ts is None else now_ts
    if tolerance and abs(now_ts - timestamp) > tolerance:
        raise WebhookSignatureError("Timestamp outside the tolerance window")


def verify_stripe_signature(
    raw_body: bytes,
    header: str | None,
    secret: str,
    tolerance: int = 300,
    now_ts: float | None = None,
) -> None:
    """Verify a ``t=<unix>,v1=<hex>`` header over ``"{t}.{body}"``.

    Raises WebhookSignatureError on any mismatch.
    """
    if not secret:
        raise WebhookSignatureError("Webhook secret not configured")
    if not header:
        raise WebhookSignatureError("Missing signature header")

    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not signatures:
        raise WebhookSignatureError("Malformed signature header")
    try:
        ts = int(timestamp)
    except ValueError as e:
        raise WebhookSignatureError("Malformed signature timestamp") from e

    signed = f"{timestamp}.".encode() + raw_body
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise WebhookSignatureError("Signature mismatch")

    _check_tolerance(ts, tolerance, now_ts)


def sign_stripe_payload(raw_body: bytes, secret: str, timestamp: int) -> str:
    """Produce a header accepted by verify_stripe_signature."""
    signed = f"{timestamp}.".encode() + raw_body
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _svix_key(secret: str) -> bytes:
    if secret.startswith("whsec_"):
        return base64.b64decode(secret[len("whsec_"):])
    return secret.encode()


def verify_svix_signature(
    raw_body: bytes,
    message_id: str | None,
    timestamp: str | None,
    header: str | None,
    secret: str,
    tolerance: int = 300,
    now_ts: float | None = None,
) -> None:
    """Verify space-separated ``v1,<base64>`` signatures over ``"{id}.{ts}.{body}"``."""
    if not secret:
        raise WebhookSignatureError("Webhook secret not configured")
    if not (message_id and timestamp and header):
        raise WebhookSignatureError("Missing signature headers")
    try:
        ts = int(timestamp)
    except ValueError as e:
        raise WebhookSignatureError("Malformed signature timestamp") from e

    signed = f"{message_id}.{timestamp}.".encode() + raw_body
    expected = base64.b64encode(
        hmac.new(_svix_key(secret), signed, hashlib.sha256).digest()
    ).decode()

    candidates = []
    for part in header.split(" "):
        version, _, sig = part.partition(",")
        if version == "v1" and sig:
            candidates.append(sig)
    if not candidates:
        raise WebhookSignatureError("Malformed signature header")
    if not any(hmac.compare_digest(expected, sig) for sig in candidates):
        raise WebhookSignatureError("Signature mismatch")

    _check_tolerance(ts, tolerance, now_ts)


def sign_svix_payload(raw_body: bytes, secret: str, message_id: str, timestamp: int) -> str:
    signed = f"{message_id}.{timestamp}.".encode() + raw_body
    digest = hmac.new(_svix_key(secret), signed, hashlib.sha256).digest()
    return f"v1,{base64.b64encode(digest).decode()}"


# -----------------------------------------------------------------------------
# Ingestion
# -----------------------------------------------------------------------------


@dataclass
class Ack:
    """Acknowledgement returned to the upstream sender."""

    event_id: str
    event_type: str
    received: bool = True
    duplicate: bool = False
    processed: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "received": self.received,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "duplicate": self.duplicate,
            "processed": self.processed,
        }


@dataclass
class ParsedEvent:
    event_id: str
    event_type: str
    data: dict[str, Any]


class WebhookIngestor(ABC):
    """Verify, dedupe and apply one webhook source's events.

    Subclasses supply ``verify`` and ``parse``; business effects come from
    the ``handlers`` table keyed by event type.
    """

    source = "webhook"

    def __init__(
        self,
        settings: Settings,
        handlers: Mapping[str, EventHandler],
        ledger: IdempotencyLedger | None = None,
    ) -> None:
        self.settings = settings
        self.handlers = dict(handlers)
        self.ledger = ledger or IdempotencyLedger()
        self._logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def verify(self, raw_body: bytes, headers: Mapping[str, str], now_ts: float | None) -> None:
        """Raise WebhookSignatureError unless the payload is authentic."""
        pass

    @abstractmethod
    def parse(self, raw_body: bytes, headers: Mapping[str, str]) -> ParsedEvent:
        """Extract the event identity and payload."""
        pass

    @staticmethod
    def _load_json(raw_body: bytes) -> dict[str, Any]:
        try:
            body = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            raise WebhookPayloadError(f"Invalid JSON body: {e}") from e
        if not isinstance(body, dict):
            raise WebhookPayloadError("Webhook body must be a JSON object")
        return body

    def ingest(
        self,
        session: Session,
        raw_body: bytes,
        headers: Mapping[str, str],
        now: datetime | None = None,
    ) -> Ack:
        """Verify the signature, then apply the event at most once.

        Raises WebhookSignatureError or WebhookPayloadError before any state
        is touched; never raises for business-effect failures.
        """
        now = now or utc_now()
        headers = {k.lower(): v for k, v in headers.items()}
        self.verify(raw_body, headers, None)
        event = self.parse(raw_body, headers)

        claimed = self.ledger.claim(
            session,
            event.event_id,
            event.event_type,
            self.source,
            payload=event.data,
            now=now,
        )
        if not claimed:
            return Ack(event.event_id, event.event_type, duplicate=True)

        error = self._apply(session, event, now)
        return Ack(event.event_id, event.event_type, processed=error is None, error=error)

    def _apply(self, session: Session, event: ParsedEvent, now: datetime) -> str | None:
        handler = self.handlers.get(event.event_type)
        try:
            if handler is None:
                self._logger.info(f"Unhandled event type {event.event_type}")
            else:
                handler(session, event.data)
            record_audit(
                session,
                action="webhook.processed",
                entity_type=f"{self.source}_event",
                entity_id=event.event_id,
                details={"event_type": event.event_type},
            )
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            raise
        except Exception as e:
            session.rollback()
            error = str(e)[:500]
            self._logger.error(
                f"Failed to process {self.source} event {event.event_id}",
                extra={"event_type": event.event_type, "error": error},
                exc_info=True,
            )
            self.ledger.fail(session, event.event_id, error, now)
            record_audit(
                session,
                action="webhook.failed",
                entity_type=f"{self.source}_event",
                entity_id=event.event_id,
                details={"event_type": event.event_type, "error": error},
            )
            session.commit()
            return error

        self.ledger.complete(session, event.event_id, now)
        self._logger.info(
            f"Processed {self.source} event {event.event_id}",
            extra={"event_type": event.event_type},
        )
        return None

    def retry_failed_events(
        self, session: Session, limit: int = 50, now: datetime | None = None
    ) -> list[Ack]:
        """Re-run business effects for this source's failed ledger rows."""
        now = now or utc_now()
        failed = session.exec(
            select(WebhookEvent)
            .where(
                (WebhookEvent.source == self.source)
                & (WebhookEvent.processing_status == ProcessingStatus.FAILED)
            )
            .order_by(WebhookEvent.created_at)
            .limit(limit)
        ).all()

        acks = []
        for row in failed:
            event = ParsedEvent(row.event_id, row.event_type, row.payload or {})
            if not self.ledger.claim(session, event.event_id, event.event_type, self.source, now=now):
                continue
            error = self._apply(session, event, now)
            acks.append(
                Ack(event.event_id, event.event_type, processed=error is None, error=error)
            )
        return acks


class PaymentWebhookIngestor(WebhookIngestor):
    """Payment processor events signed with a ``Stripe-Signature`` header."""

    source = "stripe"

    def verify(self, raw_body, headers, now_ts):
        verify_stripe_signature(
            raw_body,
            headers.get("stripe-signature"),
            self.settings.STRIPE_WEBHOOK_SECRET,
            self.settings.WEBHOOK_TOLERANCE_SECONDS,
            now_ts,
        )

    def parse(self, raw_body, headers):
        body = self._load_json(raw_body)
        event_id = body.get("id")
        event_type = body.get("type")
        if not event_id or not event_type:
            raise WebhookPayloadError("Event is missing id or type")
        obj = (body.get("data") or {}).get("object") or {}
        return ParsedEvent(event_id, event_type, obj)


class EmailWebhookIngestor(WebhookIngestor):
    """Email provider delivery feedback signed Svix-style."""

    source = "email"

    def verify(self, raw_body, headers, now_ts):
        verify_svix_signature(
            raw_body,
            headers.get("svix-id"),
            headers.get("svix-timestamp"),
            headers.get("svix-signature"),
            self.settings.EMAIL_WEBHOOK_SECRET,
            self.settings.WEBHOOK_TOLERANCE_SECONDS,
            now_ts,
        )

    def parse(self, raw_body, headers):
        body = self._load_json(raw_body)
        event_type = body.get("type")
        if not event_type:
            raise WebhookPayloadError("Event is missing type")
        return ParsedEvent(headers["svix-id"], event_type, body.get("data") or {})

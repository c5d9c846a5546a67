"""Tests for webhook signatures, the idempotency ledger and payment effects."""

import json
import time
from uuid import uuid4

import pytest
from sqlmodel import Session, select

from notifier.errors import WebhookPayloadError, WebhookSignatureError
from notifier.models.audit_log import AuditLog
from notifier.models.communication import (
    BulkCommunication,
    CommunicationRecipient,
    DeliveryState,
    RecipientStatus,
)
from notifier.models.order import OrderStatus, PrintOrder
from notifier.models.user import UserProfile
from notifier.models.webhook_event import ProcessingStatus, WebhookEvent
from notifier.services.communications import email_event_handlers
from notifier.services.idempotency import IdempotencyLedger
from notifier.services.payment_effects import PAYMENT_HANDLERS
from notifier.services.webhooks import (
    EmailWebhookIngestor,
    PaymentWebhookIngestor,
    WebhookIngestor,
    sign_stripe_payload,
    sign_svix_payload,
    verify_stripe_signature,
    verify_svix_signature,
)

from tests.conftest import EMAIL_SECRET

STRIPE_SECRET = "whsec_stripe_test"


def stripe_event(event_id: str, event_type: str, obj: dict) -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}}).encode()


def stripe_headers(body: bytes) -> dict[str, str]:
    return {"Stripe-Signature": sign_stripe_payload(body, STRIPE_SECRET, int(time.time()))}


def credit_pack(user_id) -> dict:
    return {"mode": "payment", "metadata": {"userId": str(user_id)}}


# ============================================================================
# Signature verification
# ============================================================================

class TestStripeSignature:
    """Tests for verify_stripe_signature."""

    def test_valid_signature(self):
        body = b'{"id": "evt_1"}'
        header = sign_stripe_payload(body, STRIPE_SECRET, 1_700_000_000)
        verify_stripe_signature(body, header, STRIPE_SECRET, 300, now_ts=1_700_000_100)

    def test_tampered_body_rejected(self):
        header = sign_stripe_payload(b'{"id": "evt_1"}', STRIPE_SECRET, 1_700_000_000)
        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(b'{"id": "evt_2"}', header, STRIPE_SECRET, 300, now_ts=1_700_000_000)

    def test_stale_timestamp_rejected(self):
        body = b"{}"
        header = sign_stripe_payload(body, STRIPE_SECRET, 1_700_000_000)
        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(body, header, STRIPE_SECRET, 300, now_ts=1_700_001_000)

    @pytest.mark.parametrize("header", [None, "", "garbage", "t=abc,v1=00", "v1=deadbeef"])
    def test_malformed_header_rejected(self, header):
        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(b"{}", header, STRIPE_SECRET, 300, now_ts=0)

    def test_missing_secret_rejected(self):
        body = b"{}"
        header = sign_stripe_payload(body, STRIPE_SECRET, 1_700_000_000)
        with pytest.raises(WebhookSignatureError):
            verify_stripe_signature(body, header, "", 300, now_ts=1_700_000_000)


class TestSvixSignature:
    """Tests for verify_svix_signature."""

    def test_valid_signature_among_several(self):
        body = b'{"type": "email.delivered"}'
        good = sign_svix_payload(body, EMAIL_SECRET, "msg_1", 1_700_000_000)
        header = f"v1,bm90LXRoZS1zaWduYXR1cmU= {good}"
        verify_svix_signature(body, "msg_1", "1700000000", header, EMAIL_SECRET, 300, now_ts=1_700_000_000)

    def test_wrong_message_id_rejected(self):
        body = b"{}"
        header = sign_svix_payload(body, EMAIL_SECRET, "msg_1", 1_700_000_000)
        with pytest.raises(WebhookSignatureError):
            verify_svix_signature(body, "msg_2", "1700000000", header, EMAIL_SECRET, 300, now_ts=1_700_000_000)


# ============================================================================
# Idempotency ledger
# ============================================================================

class TestIdempotencyLedger:
    """Tests for IdempotencyLedger."""

    def test_first_claim_wins(self, db_session: Session):
        ledger = IdempotencyLedger()
        assert ledger.claim(db_session, "evt_1", "x", "stripe") is True
        assert ledger.claim(db_session, "evt_1", "x", "stripe") is False
        assert ledger.status(db_session, "evt_1") == ProcessingStatus.PROCESSING

    def test_completed_is_not_reclaimed(self, db_session: Session):
        ledger = IdempotencyLedger()
        ledger.claim(db_session, "evt_1", "x", "stripe")
        ledger.complete(db_session, "evt_1")
        assert ledger.claim(db_session, "evt_1", "x", "stripe") is False

    def test_failed_is_reclaimed_once(self, db_session: Session):
        ledger = IdempotencyLedger()
        ledger.claim(db_session, "evt_1", "x", "stripe")
        ledger.fail(db_session, "evt_1", "boom")

        assert ledger.claim(db_session, "evt_1", "x", "stripe") is True
        assert ledger.claim(db_session, "evt_1", "x", "stripe") is False

        event = db_session.get(WebhookEvent, "evt_1")
        db_session.refresh(event)
        assert event.attempts == 2
        assert event.error_message is None


# ============================================================================
# Payment webhook ingestion
# ============================================================================

class TestPaymentWebhookIngestor:
    """Tests for PaymentWebhookIngestor."""

    def test_base_ingestor_is_abstract(self, settings):
        with pytest.raises(TypeError):
            WebhookIngestor(settings, {})

        class SignatureOnly(WebhookIngestor):
            def verify(self, raw_body, headers, now_ts):
                pass

        with pytest.raises(TypeError):
            SignatureOnly(settings, {})

    def test_duplicate_delivery_applies_effect_once(self, db_session: Session, settings, profile):
        ingestor = PaymentWebhookIngestor(settings, PAYMENT_HANDLERS)
        body = stripe_event("evt_credit", "checkout.session.completed", credit_pack(profile.id))

        first = ingestor.ingest(db_session, body, stripe_headers(body))
        second = ingestor.ingest(db_session, body, stripe_headers(body))

        assert first.processed is True and first.duplicate is False
        assert second.duplicate is True and second.received is True
        db_session.refresh(profile)
        assert profile.credits == 50
        assert db_session.get(WebhookEvent, "evt_credit").processing_status == ProcessingStatus.COMPLETED

    def test_bad_signature_touches_nothing(self, db_session: Session, settings, profile):
        ingestor = PaymentWebhookIngestor(settings, PAYMENT_HANDLERS)
        body = stripe_event("evt_bad", "checkout.session.completed", credit_pack(profile.id))

        with pytest.raises(WebhookSignatureError):
            ingestor.ingest(db_session, body, {"Stripe-Signature": "t=1,v1=00"})

        assert db_session.exec(select(WebhookEvent)).all() == []
        db_session.refresh(profile)
        assert profile.credits == 0

    def test_invalid_json_after_valid_signature(self, db_session: Session, settings):
        ingestor = PaymentWebhookIngestor(settings, PAYMENT_HANDLERS)
        body = b"not json"
        with pytest.raises(WebhookPayloadError):
            ingestor.ingest(db_session, body, stripe_headers(body))

    def test_subscription_checkout_sets_tier_and_credits(self, db_session: Session, settings, profile):
        ingestor = PaymentWebhookIngestor(settings, PAYMENT_HANDLERS)
        body = stripe_event("evt_sub", "checkout.session.completed", {
            "mode": "subscription",
            "customer": "cus_123",
            "subscription": "sub_123",
            "metadata": {"user_id": str(profile.id), "tier": "elite"},
        })

        ingestor.ingest(db_session, body, stripe_headers(body))

        db_session.refresh(profile)
        assert profile.subscription_tier == "ELITE"
        assert profile.credits == 1000
        assert profile.stripe_customer_id == "cus_123"

    def test_order_marked_paid_unless_settled(self, db_session: Session, settings, profile):
        pending = PrintOrder(user_id=profile.id)
        shipped = PrintOrder(user_id=profile.id, status=OrderStatus.SHIPPED)
        db_session.add_all([pending, shipped])
        db_session.commit()
        ingestor = PaymentWebhookIngestor(settings, PAYMENT_HANDLERS)

        for event_id, order in (("evt_o1", pending), ("evt_o2", shipped)):
            body = stripe_event(event_id, "checkout.session.completed", {
                "mode": "payment", "metadata": {"orderId": str(order.id)},
            })
            ingestor.ingest(db_session, body, stripe_headers(body))

        db_session.refresh(pending)
        db_session.refresh(shipped)
        assert pending.status == OrderStatus.PAID
        assert pending.paid_at is not None
        assert shipped.status == OrderStatus.SHIPPED

    def test_subscription_deleted_downgrades(self, db_session: Session, settings, profile):
        profile.subscription_tier = "PRO"
        profile.stripe_customer_id = "cus_9"
        db_session.add(profile)
        db_session.commit()
        ingestor = PaymentWebhookIngestor(settings, PAYMENT_HANDLERS)
        body = stripe_event("evt_del", "customer.subscription.deleted", {"customer": "cus_9"})

        ingestor.ingest(db_session, body, stripe_headers(body))

        db_session.refresh(profile)
        assert profile.subscription_tier == "FREE"

    def test_failed_effect_still_acknowledged_and_recorded(self, db_session: Session, settings):
        ingestor = PaymentWebhookIngestor(settings, PAYMENT_HANDLERS)
        body = stripe_event("evt_orphan", "checkout.session.completed", credit_pack(uuid4()))

        ack = ingestor.ingest(db_session, body, stripe_headers(body))

        assert ack.received is True
        assert ack.processed is False
        event = db_session.get(WebhookEvent, "evt_orphan")
        assert event.processing_status == ProcessingStatus.FAILED
        assert "not found" in event.error_message
        actions = [a.action for a in db_session.exec(select(AuditLog)).all()]
        assert "webhook.failed" in actions

    def test_retry_failed_events_reapplies(self, db_session: Session, settings):
        ingestor = PaymentWebhookIngestor(settings, PAYMENT_HANDLERS)
        user_id = uuid4()
        body = stripe_event("evt_late", "checkout.session.completed", credit_pack(user_id))
        ingestor.ingest(db_session, body, stripe_headers(body))

        # The profile shows up later (e.g. signup finished after payment)
        db_session.add(UserProfile(id=user_id, email="late@example.com"))
        db_session.commit()

        acks = ingestor.retry_failed_events(db_session)

        assert [a.processed for a in acks] == [True]
        assert db_session.get(UserProfile, user_id).credits == 50
        assert db_session.get(WebhookEvent, "evt_late").processing_status == ProcessingStatus.COMPLETED
        assert ingestor.retry_failed_events(db_session) == []

    def test_unknown_event_type_is_completed(self, db_session: Session, settings):
        ingestor = PaymentWebhookIngestor(settings, PAYMENT_HANDLERS)
        body = stripe_event("evt_other", "charge.refunded", {})

        ack = ingestor.ingest(db_session, body, stripe_headers(body))

        assert ack.processed is True
        assert db_session.get(WebhookEvent, "evt_other").processing_status == ProcessingStatus.COMPLETED


class TestEmailWebhookIngestor:
    """Tests for email delivery feedback ingestion."""

    def _headers(self, body: bytes, message_id: str) -> dict[str, str]:
        ts = int(time.time())
        return {
            "svix-id": message_id,
            "svix-timestamp": str(ts),
            "svix-signature": sign_svix_payload(body, EMAIL_SECRET, message_id, ts),
        }

    def test_feedback_updates_recipient_and_counters(self, db_session: Session, settings):
        communication = BulkCommunication(subject="Hi", body="Hello team")
        db_session.add(communication)
        db_session.flush()
        recipient = CommunicationRecipient(
            communication_id=communication.id,
            address="a@example.com",
            status=RecipientStatus.SENT,
            attempts=1,
            provider_message_id="re_123",
        )
        db_session.add(recipient)
        db_session.commit()

        ingestor = EmailWebhookIngestor(settings, email_event_handlers())
        for i, event_type in enumerate(["email.opened", "email.delivered"]):
            body = json.dumps({"type": event_type, "data": {"email_id": "re_123"}}).encode()
            ingestor.ingest(db_session, body, self._headers(body, f"msg_{i}"))

        db_session.refresh(recipient)
        db_session.refresh(communication)
        assert recipient.delivery_state == DeliveryState.OPENED
        assert communication.delivered_count == 1

        body = json.dumps({"type": "email.bounced", "data": {"email_id": "re_123"}}).encode()
        ingestor.ingest(db_session, body, self._headers(body, "msg_b"))
        db_session.refresh(recipient)
        db_session.refresh(communication)
        assert recipient.delivery_state == DeliveryState.BOUNCED
        assert communication.bounced_count == 1
        assert communication.delivered_count == 0

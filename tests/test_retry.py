"""Tests for the retry & backoff engine."""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from notifier.delivery.base import DeliveryResult
from notifier.models.communication import CommunicationRecipient, RecipientStatus
from notifier.services.retry import RetryPolicy

NOW = datetime(2026, 3, 10, 12, 0, 0)


def make_recipient() -> CommunicationRecipient:
    return CommunicationRecipient(communication_id=uuid4(), address="a@example.com")


def fail(permanent: bool = False):
    return lambda: DeliveryResult(success=False, error="HTTP 503", permanent=permanent)


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_delay_follows_table_and_clamps(self):
        policy = RetryPolicy([60, 300, 900], max_attempts=10)
        assert policy.delay_for(1) == timedelta(seconds=60)
        assert policy.delay_for(2) == timedelta(seconds=300)
        assert policy.delay_for(3) == timedelta(seconds=900)
        assert policy.delay_for(7) == timedelta(seconds=900)

    def test_rejects_empty_schedule(self):
        with pytest.raises(ValueError):
            RetryPolicy([])

    def test_success_increments_attempts(self):
        policy = RetryPolicy()
        recipient = make_recipient()

        result = policy.attempt(
            recipient, lambda: DeliveryResult(success=True, provider_message_id="m1"), NOW
        )

        assert result.success
        assert recipient.attempts == 1
        assert recipient.status == RecipientStatus.SENT
        assert recipient.provider_message_id == "m1"
        assert recipient.sent_at == NOW

    def test_repeated_failures_follow_schedule_then_terminal(self):
        policy = RetryPolicy([60, 300, 900], max_attempts=3)
        recipient = make_recipient()

        policy.attempt(recipient, fail(), NOW)
        assert recipient.status == RecipientStatus.PENDING
        assert recipient.next_attempt_at == NOW + timedelta(seconds=60)

        policy.attempt(recipient, fail(), NOW)
        assert recipient.status == RecipientStatus.PENDING
        assert recipient.next_attempt_at == NOW + timedelta(seconds=300)

        policy.attempt(recipient, fail(), NOW)
        assert recipient.attempts == 3
        assert recipient.status == RecipientStatus.FAILED
        assert recipient.next_attempt_at is None
        assert policy.is_retryable(recipient, NOW + timedelta(days=1)) is False

    def test_permanent_failure_is_terminal_immediately(self):
        policy = RetryPolicy()
        recipient = make_recipient()

        policy.attempt(recipient, fail(permanent=True), NOW)

        assert recipient.attempts == 1
        assert recipient.status == RecipientStatus.FAILED
        assert policy.is_retryable(recipient, NOW + timedelta(days=1)) is False

    def test_not_retryable_before_next_attempt(self):
        policy = RetryPolicy()
        recipient = make_recipient()
        policy.attempt(recipient, fail(), NOW)

        assert policy.is_retryable(recipient, NOW + timedelta(seconds=30)) is False
        assert policy.is_retryable(recipient, NOW + timedelta(seconds=60)) is True

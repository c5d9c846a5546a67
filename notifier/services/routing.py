"""Channel router: pick a concrete channel and deliver through its adapter."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlmodel import Session, select

from notifier.clock import utc_now
from notifier.delivery.base import DeliveryResult, MessageContent
from notifier.delivery.registry import AdapterRegistry
from notifier.models.notification import Channel, NotificationKind, Urgency
from notifier.models.user import DeviceRegistration, UserProfile
from notifier.services.audit import record_audit

logger = logging.getLogger(__name__)

# Type-based overrides, consulted after an explicit channel
KIND_OVERRIDES = {
    NotificationKind.MORNING_BRIEFING: Channel.VOICE,
    NotificationKind.WEEKLY_REVIEW: Channel.EMAIL,
}
URGENCY_OVERRIDES = {Urgency.HIGH: Channel.SMS}

DEFAULT_CHANNEL = Channel.PUSH


@dataclass
class RouteDecision:
    """Chosen channel plus the candidates rejected on the way."""

    channel: Channel | None
    candidates: list[Channel]
    fallbacks: list[dict[str, str]] = field(default_factory=list)
    skip_reason: str | None = None


@dataclass
class Dispatch:
    """Result of routing and sending one message."""

    channel: Channel | None
    delivery: DeliveryResult | None = None
    skip_reason: str | None = None

    @property
    def sent(self) -> bool:
        return self.delivery is not None and self.delivery.success


class ChannelRouter:
    """Resolves a channel by precedence and falls back when it cannot be used.

    Precedence: explicit channel, urgency/kind override, the recipient's
    preference, then push. A candidate is unusable when the recipient lacks
    the address it needs or its adapter is not configured; every such
    fallback is logged and audited.
    """

    def __init__(self, registry: AdapterRegistry) -> None:
        self.registry = registry

    def candidates(
        self,
        profile: UserProfile,
        channel: Channel | None = None,
        kind: NotificationKind = NotificationKind.CUSTOM,
        urgency: Urgency = Urgency.NORMAL,
    ) -> list[Channel]:
        ordered = [
            channel,
            URGENCY_OVERRIDES.get(urgency),
            KIND_OVERRIDES.get(kind),
            profile.preferred_channel,
            DEFAULT_CHANNEL,
        ]
        result: list[Channel] = []
        for candidate in ordered:
            if candidate is not None and candidate not in result:
                result.append(candidate)
        return result

    def _active_devices(self, session: Session, user_id: UUID) -> list[DeviceRegistration]:
        return list(
            session.exec(
                select(DeviceRegistration)
                .where(
                    (DeviceRegistration.user_id == user_id)
                    & (DeviceRegistration.is_active == True)
                )
                .order_by(DeviceRegistration.created_at)
            ).all()
        )

    def _missing_prerequisite(
        self, session: Session, profile: UserProfile, channel: Channel
    ) -> str | None:
        if channel in (Channel.SMS, Channel.VOICE):
            if not profile.phone_number or not profile.phone_verified:
                return "no_verified_phone"
        elif channel == Channel.EMAIL:
            if not profile.email:
                return "no_email"
        elif channel == Channel.PUSH:
            if not self._active_devices(session, profile.id):
                return "no_active_device"
        if not self.registry.is_available(channel):
            return "not_configured"
        return None

    def route(
        self,
        session: Session,
        profile: UserProfile,
        channel: Channel | None = None,
        kind: NotificationKind = NotificationKind.CUSTOM,
        urgency: Urgency = Urgency.NORMAL,
        entity_id: UUID | str | None = None,
    ) -> RouteDecision:
        """Return the first usable channel in precedence order."""
        ordered = self.candidates(profile, channel, kind, urgency)
        decision = RouteDecision(channel=None, candidates=ordered)

        for candidate in ordered:
            reason = self._missing_prerequisite(session, profile, candidate)
            if reason is None:
                decision.channel = candidate
                break
            decision.fallbacks.append({"channel": candidate.value, "reason": reason})

        if decision.fallbacks:
            logger.warning(
                f"Channel fallback for profile {profile.id}: "
                + ", ".join(f"{f['channel']} ({f['reason']})" for f in decision.fallbacks),
                extra={
                    "profile_id": str(profile.id),
                    "chosen": decision.channel.value if decision.channel else None,
                },
            )
            record_audit(
                session,
                action="notification.channel_fallback",
                entity_type="notification",
                entity_id=entity_id,
                user_id=profile.id,
                details={
                    "fallbacks": decision.fallbacks,
                    "chosen": decision.channel.value if decision.channel else None,
                },
            )

        if decision.channel is None:
            reasons = {f["reason"] for f in decision.fallbacks}
            decision.skip_reason = (
                "channel not configured" if "not_configured" in reasons
                else "no deliverable channel"
            )
        return decision

    def address_for(self, session: Session, profile: UserProfile, channel: Channel) -> list[str]:
        """Addresses to send to on ``channel``; push fans out to every device."""
        if channel in (Channel.SMS, Channel.VOICE):
            return [profile.phone_number]
        if channel == Channel.EMAIL:
            return [profile.email]
        return [d.device_token for d in self._active_devices(session, profile.id)]

    def send(
        self,
        session: Session,
        profile: UserProfile,
        channel: Channel,
        content: MessageContent,
        now: datetime | None = None,
    ) -> DeliveryResult:
        """Send on a resolved channel.

        Push succeeds if any device accepts; devices the provider reports as
        unregistered are deactivated.
        """
        now = now or utc_now()
        adapter = self.registry.get(channel)
        if channel != Channel.PUSH:
            return adapter.send(self.address_for(session, profile, channel)[0], content)

        results = []
        for device in self._active_devices(session, profile.id):
            result = adapter.send(device.device_token, content)
            results.append(result)
            if result.success:
                device.last_used_at = now
                session.add(device)
            elif result.permanent:
                device.is_active = False
                session.add(device)
                logger.warning(
                    f"Deactivated device {device.id} after permanent push failure",
                    extra={"device_id": str(device.id), "error": result.error},
                )
                record_audit(
                    session,
                    action="device.deactivated",
                    entity_type="device_registration",
                    entity_id=device.id,
                    user_id=profile.id,
                    details={"error": result.error},
                )

        for result in results:
            if result.success:
                return result
        if not results:
            return DeliveryResult(success=False, error="no active device", permanent=True)
        return DeliveryResult(
            success=False,
            error="; ".join(r.error or "unknown error" for r in results)[:1000],
            permanent=all(r.permanent for r in results),
            skipped=all(r.skipped for r in results),
        )

    def dispatch(
        self,
        session: Session,
        profile: UserProfile,
        content: MessageContent,
        channel: Channel | None = None,
        kind: NotificationKind = NotificationKind.CUSTOM,
        urgency: Urgency = Urgency.NORMAL,
        entity_id: UUID | str | None = None,
        now: datetime | None = None,
    ) -> Dispatch:
        """Route then send; an unroutable message is a skip, not a failure."""
        decision = self.route(session, profile, channel, kind, urgency, entity_id)
        if decision.channel is None:
            return Dispatch(channel=None, skip_reason=decision.skip_reason)

        delivery = self.send(session, profile, decision.channel, content, now)
        if delivery.skipped:
            return Dispatch(channel=decision.channel, delivery=delivery, skip_reason=delivery.error)
        return Dispatch(channel=decision.channel, delivery=delivery)

"""Business effects applied for verified payment processor events."""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlmodel import Session, select

from notifier.clock import utc_now
from notifier.errors import NotFoundError, WebhookPayloadError
from notifier.models.order import OrderStatus, PrintOrder
from notifier.models.user import UserProfile

logger = logging.getLogger(__name__)

TIER_CREDITS = {"PRO": 500, "ELITE": 1000}
CREDIT_PACK_SIZE = 50

# Orders in these states were already handled by an earlier delivery
SETTLED_ORDER_STATUSES = {OrderStatus.PAID, OrderStatus.SUBMITTED, OrderStatus.SHIPPED}


def _metadata_value(obj: dict[str, Any], *keys: str) -> str | None:
    metadata = obj.get("metadata") or {}
    for key in keys:
        if metadata.get(key):
            return metadata[key]
    return None


def _profile_for_metadata(session: Session, obj: dict[str, Any]) -> UserProfile:
    raw = _metadata_value(obj, "userId", "user_id")
    if not raw:
        raise WebhookPayloadError("Missing user id in session metadata")
    try:
        user_id = UUID(raw)
    except ValueError as e:
        raise WebhookPayloadError(f"Invalid user id {raw!r}") from e

    profile = session.get(UserProfile, user_id)
    if profile is None:
        raise NotFoundError(f"Profile {user_id} not found")
    return profile


def _profile_for_customer(session: Session, obj: dict[str, Any]) -> UserProfile | None:
    customer = obj.get("customer")
    if not customer:
        return None
    return session.exec(
        select(UserProfile).where(UserProfile.stripe_customer_id == customer)
    ).first()


def handle_checkout_completed(session: Session, obj: dict[str, Any]) -> None:
    """Apply a completed checkout: subscription, credit pack or print order."""
    mode = obj.get("mode")
    order_id = _metadata_value(obj, "orderId", "order_id")

    if mode == "subscription":
        profile = _profile_for_metadata(session, obj)
        tier = (_metadata_value(obj, "tier") or "PRO").upper()
        profile.subscription_tier = tier
        profile.subscription_status = "active"
        profile.credits = TIER_CREDITS.get(tier, TIER_CREDITS["PRO"])
        profile.stripe_customer_id = obj.get("customer") or profile.stripe_customer_id
        profile.stripe_subscription_id = obj.get("subscription") or profile.stripe_subscription_id
        session.add(profile)
        logger.info(f"Upgraded profile {profile.id} to {tier}")

    elif mode == "payment" and order_id:
        try:
            order = session.get(PrintOrder, UUID(order_id))
        except ValueError as e:
            raise WebhookPayloadError(f"Invalid order id {order_id!r}") from e
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        if order.status in SETTLED_ORDER_STATUSES:
            logger.info(f"Order {order.id} already processed (status: {order.status.value})")
            return
        order.status = OrderStatus.PAID
        order.paid_at = utc_now()
        session.add(order)

    elif mode == "payment":
        profile = _profile_for_metadata(session, obj)
        # Atomic increment; concurrent credit grants must not overwrite each other
        session.exec(
            update(UserProfile)
            .where(UserProfile.id == profile.id)
            .values(credits=UserProfile.credits + CREDIT_PACK_SIZE)
        )
        session.expire(profile)
        logger.info(f"Added {CREDIT_PACK_SIZE} credits to profile {profile.id}")

    else:
        logger.info(f"Ignoring checkout session with mode {mode!r}")


def handle_subscription_updated(session: Session, obj: dict[str, Any]) -> None:
    profile = _profile_for_customer(session, obj)
    if profile is None:
        logger.warning(f"No profile for customer {obj.get('customer')}")
        return
    profile.subscription_status = obj.get("status")
    session.add(profile)


def handle_subscription_deleted(session: Session, obj: dict[str, Any]) -> None:
    profile = _profile_for_customer(session, obj)
    if profile is None:
        logger.warning(f"No profile for customer {obj.get('customer')}")
        return
    profile.subscription_tier = "FREE"
    profile.subscription_status = "canceled"
    profile.stripe_subscription_id = None
    session.add(profile)
    logger.info(f"Downgraded profile {profile.id} to FREE tier")


def handle_payment_failed(session: Session, obj: dict[str, Any]) -> None:
    profile = _profile_for_customer(session, obj)
    if profile is None:
        logger.warning(f"No profile for customer {obj.get('customer')}")
        return
    profile.subscription_status = "past_due"
    session.add(profile)


PAYMENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_failed": handle_payment_failed,
}

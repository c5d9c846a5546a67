"""Domain services for the notification engine.

Services:
- quiet_hours.py: quiet window evaluation in local time
- routing.py: channel precedence, fallback and delivery
- retry.py: fixed-table backoff for bulk recipients
- rate_limiter.py: fixed-window outbound limits
- idempotency.py / webhooks.py: exactly-once webhook effects
- milestones.py / streaks.py: streak celebrations
- scheduling.py / communications.py: upstream triggers and bulk bookkeeping
"""

from notifier.services.idempotency import IdempotencyLedger
from notifier.services.milestones import Celebration, MilestoneDetector
from notifier.services.quiet_hours import QuietWindow, is_quiet, next_sendable
from notifier.services.rate_limiter import RateLimiter, RateLimitResult
from notifier.services.retry import RetryDecision, RetryPolicy
from notifier.services.routing import ChannelRouter, Dispatch, RouteDecision

__all__ = [
    "IdempotencyLedger",
    "Celebration",
    "MilestoneDetector",
    "QuietWindow",
    "is_quiet",
    "next_sendable",
    "RateLimiter",
    "RateLimitResult",
    "RetryDecision",
    "RetryPolicy",
    "ChannelRouter",
    "Dispatch",
    "RouteDecision",
]

"""Pure translations from Stripe subscription objects to subscription rows."""
# ruff: noqa: UP017

from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from app.models.vendor_payloads import StripeSubscription, coerce_epoch


class BillingProvider(str, Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"


class SubscriptionStatus(str, Enum):
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    PAUSED = "paused"


_PASSTHROUGH_STATUSES = {
    SubscriptionStatus.TRIALING.value,
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.PAST_DUE.value,
    SubscriptionStatus.CANCELED.value,
    SubscriptionStatus.INCOMPLETE.value,
}
_STATUS_ALIASES = {
    "unpaid": SubscriptionStatus.PAST_DUE.value,
    "incomplete_expired": SubscriptionStatus.CANCELED.value,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def map_stripe_status(subscription: StripeSubscription) -> str:
    """Translate a Stripe status into ours; a pause always wins."""
    if subscription.pause_collection is not None:
        return SubscriptionStatus.PAUSED.value
    status = subscription.status
    if status in _PASSTHROUGH_STATUSES:
        return status
    # Unknown statuses pass through so new Stripe values are not lost.
    return _STATUS_ALIASES.get(status, status)


def epoch_to_datetime(value: Any) -> datetime | None:
    """Convert epoch seconds to an aware UTC datetime; invalid input yields None."""
    seconds = coerce_epoch(value)
    if seconds is None:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_metadata_seat_count(metadata: dict[str, str] | None) -> int | None:
    """Return the positive seat count stored in vendor metadata, if any."""
    raw = (metadata or {}).get("seats_count")
    if not raw:
        return None
    try:
        parsed = float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(parsed):
        return None
    seats = int(parsed)
    return seats if seats >= 1 else None


def build_subscription_updates(
    subscription: StripeSubscription,
    *,
    seats_count: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Build the column values a Stripe subscription implies for its merchant row.

    ``seats_count`` is left out of the document when None so callers that do
    not own seat counts (the on-demand reconcile) keep the stored value.
    """
    stamp = now or utcnow()
    pause = subscription.pause_collection
    updates: dict[str, Any] = {
        "billing_provider": BillingProvider.STRIPE.value,
        "provider_customer_id": subscription.customer,
        "provider_subscription_id": subscription.id,
        "status": map_stripe_status(subscription),
        "cancel_at_period_end": bool(
            subscription.cancel_at_period_end or subscription.cancel_at
        ),
        "current_period_start": epoch_to_datetime(subscription.current_period_start),
        "current_period_end": epoch_to_datetime(subscription.current_period_end),
        "trial_start": epoch_to_datetime(subscription.trial_start),
        "trial_end": epoch_to_datetime(subscription.trial_end),
        "canceled_at": epoch_to_datetime(subscription.canceled_at),
        "paused_at": stamp if pause is not None else None,
        "pause_resumes_at": epoch_to_datetime(pause.resumes_at) if pause is not None else None,
        "updated_at": stamp,
    }
    if subscription.plan_id:
        updates["plan_id"] = subscription.plan_id
    if seats_count is not None:
        updates["seats_count"] = seats_count
    return updates
